"""
Configurazione generale dell'ottimizzatore DCA con supporto a file .env.

Ordine di ricerca
-----------------
1. Variabili d'ambiente (override), es. GA_POPULATION_SIZE=60
2. File .env nella root del progetto
3. Valori di default definiti qui sotto
"""

from __future__ import annotations

import os

from dotenv import find_dotenv, load_dotenv

# ----------------------------------------------------------------------
# Carica il file .env se presente
# ----------------------------------------------------------------------
_env_file = find_dotenv(usecwd=True)
if _env_file:
    load_dotenv(_env_file, override=False)  # NON sovrascrive variabili già settate


def _env_int(name: str, default):
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default):
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ----------------------------------------------------------------------
# Logging Mode
# ----------------------------------------------------------------------
# Possible values: "MINIMAL", "NORMAL", "DETAILED"
# MINIMAL: Only generation summaries, champion updates and errors
# NORMAL: Standard operations (evaluation progress, baseline comparison)
# DETAILED: Full debug information (repairs, single backtests)
LOG_VERBOSITY = os.getenv("LOG_VERBOSITY", "NORMAL")

# ----------------------------------------------------------------------
# Dati storici
# ----------------------------------------------------------------------
EXPECTED_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]
DATA_FILE = os.getenv("DCA_DATA_FILE", "data/BTCUSDT-5m.csv")

# ----------------------------------------------------------------------
# Backtest (input fissi, non ottimizzati)
# ----------------------------------------------------------------------
INITIAL_BALANCE = _env_float("DCA_INITIAL_BALANCE", 500.0)
COMMISSION = _env_float("DCA_COMMISSION", 0.0005)          # 0.05% per lato
MIN_ORDER_QTY = _env_float("DCA_MIN_ORDER_QTY", 0.0)        # 0 = nessun arrotondamento
CYCLE_MODE = _env_bool("DCA_CYCLE_MODE", True)              # TP chiude il ciclo e ne apre uno nuovo
USE_TP_LEVELS = _env_bool("DCA_USE_TP_LEVELS", True)       # TP a livelli con uscite parziali
TP_LEVELS = _env_int("DCA_TP_LEVELS", 5)                   # ogni livello vende 1/TP_LEVELS del ciclo
TRACK_REGIMES = _env_bool("DCA_TRACK_REGIMES", False)

# Valori baseline della strategia
BASE_AMOUNT = _env_float("DCA_BASE_AMOUNT", 40.0)
TP_PERCENT = _env_float("DCA_TP_PERCENT", 0.02)
MAX_MULTIPLIER = _env_float("DCA_MAX_MULTIPLIER", 3.0)
PRICE_THRESHOLD = _env_float("DCA_PRICE_THRESHOLD", 0.02)
PRICE_THRESHOLD_MULTIPLIER = _env_float("DCA_PRICE_THRESHOLD_MULTIPLIER", 1.0)
MIN_CONFIDENCE = _env_float("DCA_MIN_CONFIDENCE", 0.6)

# Feature abilitate (nomi separati da virgola nella variabile d'ambiente)
ENABLED_FEATURES = [
    name.strip()
    for name in os.getenv("DCA_ENABLED_FEATURES", "rsi,macd,bb,ema").split(",")
    if name.strip()
]

# ----------------------------------------------------------------------
# Algoritmo genetico
# ----------------------------------------------------------------------
GA_POPULATION_SIZE = _env_int("GA_POPULATION_SIZE", 40)
GA_GENERATIONS = _env_int("GA_GENERATIONS", 25)
GA_MUTATION_RATE = _env_float("GA_MUTATION_RATE", 0.18)
GA_CROSSOVER_RATE = _env_float("GA_CROSSOVER_RATE", 0.8)
GA_ELITE_SIZE = _env_int("GA_ELITE_SIZE", 6)
GA_TOURNAMENT_SIZE = _env_int("GA_TOURNAMENT_SIZE", 3)
GA_MAX_WORKERS = _env_int("GA_MAX_WORKERS", 6)               # backtest paralleli
GA_RANDOM_SEED = _env_int("GA_RANDOM_SEED", None)            # None = non riproducibile
GA_EVAL_TIMEOUT = _env_float("GA_EVAL_TIMEOUT", None)        # secondi per backtest, None = nessun limite
