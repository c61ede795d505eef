"""
Parameter Ranges - Catalogo valori discreti per Algoritmo Genetico

Ogni parametro ottimizzabile ha un insieme ordinato e non vuoto di valori
legali. Le chiavi dei blocchi feature usano la forma "<feature>.<campo>"
(es. "rsi.oversold"), gli scalari fissi il nome semplice ("tp_percent").

Il catalogo è di sola lettura: nessun metodo di mutazione, le estrazioni
casuali usano sempre il generatore passato dal chiamante.
"""

from __future__ import annotations
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple
import random

from dca_optimizer.errors import ConfigurationError


DEFAULT_RANGES: Dict[str, Tuple[Any, ...]] = {
    # ------------------------------------------------------------------
    # Scalari fissi
    # ------------------------------------------------------------------
    "max_multiplier": (1.2, 1.5, 1.8, 2.0, 2.5, 3.0, 3.5, 4.0, 4.5),
    "tp_percent": (0.01, 0.015, 0.02, 0.025, 0.03, 0.035, 0.04, 0.045,
                   0.05, 0.055, 0.06, 0.07, 0.08),
    "base_threshold": (0.008, 0.01, 0.012, 0.015, 0.018, 0.02, 0.025,
                       0.03, 0.035, 0.04, 0.045, 0.05),
    "threshold_multiplier": (1.0, 1.05, 1.1, 1.15, 1.2, 1.25, 1.3, 1.35,
                             1.4, 1.45, 1.5),

    # ------------------------------------------------------------------
    # Oscillatori
    # ------------------------------------------------------------------
    "rsi.period": (10, 12, 14, 16, 18, 20, 22, 25),
    "rsi.oversold": (20, 25, 30, 35, 40),
    "rsi.overbought": (60, 65, 70, 75, 80),

    "macd.fast_period": (8, 10, 12, 14, 16, 18),
    "macd.slow_period": (20, 22, 24, 26, 28, 30, 32, 35),
    "macd.signal_period": (7, 8, 9, 10, 12, 14),

    "mfi.period": (10, 12, 14, 16, 18, 20, 22),
    "mfi.oversold": (15, 20, 25, 30),
    "mfi.overbought": (70, 75, 80, 85),

    "stochrsi.period": (10, 12, 14, 16, 18, 20, 22),
    "stochrsi.oversold": (10, 15, 20, 25),
    "stochrsi.overbought": (75, 80, 85, 90),

    # ------------------------------------------------------------------
    # Bande / medie mobili
    # ------------------------------------------------------------------
    "bb.period": (14, 16, 18, 20, 22, 25, 28, 30),
    "bb.std_dev": (1.5, 1.8, 2.0, 2.2, 2.5, 2.8, 3.0),

    "ema.period": (15, 20, 25, 30, 40, 50, 60, 75, 100),

    "hullma.period": (8, 10, 12, 14, 16, 18, 20, 22, 25, 30),

    "keltner.period": (15, 20, 25, 30, 40, 50),
    "keltner.multiplier": (1.5, 1.8, 2.0, 2.2, 2.5, 3.0, 3.5),

    "obv.trend_threshold": (0.005, 0.008, 0.01, 0.012, 0.015, 0.018,
                            0.02, 0.025, 0.03),

    # ------------------------------------------------------------------
    # Spacing adattivo e TP dinamico
    # ------------------------------------------------------------------
    "volatility_adaptive.volatility_sensitivity": (1.0, 1.2, 1.5, 1.8, 2.0,
                                                   2.5, 3.0, 3.5, 4.0),
    "volatility_adaptive.atr_period": (10, 12, 14, 16, 18, 21, 24, 28),
    "volatility_adaptive.level_multiplier": (1.05, 1.1, 1.15, 1.2, 1.25,
                                             1.3, 1.35, 1.4),

    "dynamic_tp.volatility_multiplier": (0.5, 1.0, 1.5, 2.0, 2.5, 3.0),
    "dynamic_tp.min_tp_percent": (0.005, 0.0075, 0.01, 0.015, 0.02),
    "dynamic_tp.max_tp_percent": (0.03, 0.04, 0.05, 0.06, 0.08, 0.10),
}


class ParameterCatalog:
    """
    Catalogo read-only dei valori legali per ogni parametro

    Args:
        ranges: mapping nome parametro -> sequenza ordinata di valori
    """

    def __init__(self, ranges: Optional[Mapping[str, Sequence[Any]]] = None):
        source = DEFAULT_RANGES if ranges is None else ranges
        self._ranges = MappingProxyType({name: tuple(values) for name, values in source.items()})

    @classmethod
    def default(cls) -> ParameterCatalog:
        return cls(DEFAULT_RANGES)

    def with_overrides(self, overrides: Mapping[str, Sequence[Any]]) -> ParameterCatalog:
        """Nuovo catalogo con alcune voci sostituite (l'originale non cambia)"""
        merged = dict(self._ranges)
        merged.update({name: tuple(values) for name, values in overrides.items()})
        return ParameterCatalog(merged)

    def __contains__(self, name: str) -> bool:
        return name in self._ranges

    def names(self) -> Tuple[str, ...]:
        return tuple(self._ranges)

    def choices(self, name: str) -> Tuple[Any, ...]:
        values = self._ranges.get(name)
        if values is None:
            raise ConfigurationError(f"No catalog entry for parameter '{name}'")
        if not values:
            raise ConfigurationError(f"Catalog entry for parameter '{name}' is empty")
        return values

    def random_choice(self, name: str, rng: random.Random) -> Any:
        return rng.choice(self.choices(name))

    def neighbours(self, name: str, value: Any) -> Tuple[Optional[Any], Optional[Any]]:
        """
        Valori del catalogo immediatamente sotto e sopra `value`

        Returns:
            (below, above), None dove non esiste un valore
        """
        ordered = sorted(set(self.choices(name)))
        below = [v for v in ordered if v < value]
        above = [v for v in ordered if v > value]
        return (below[-1] if below else None, above[0] if above else None)

    def validate(self, names: Iterable[str], pairs: Iterable[Tuple[str, str]] = ()) -> None:
        """
        Verifica che ogni parametro attivo abbia una voce non vuota

        Per le coppie ordinate (lower, upper) l'unione dei due cataloghi deve
        contenere almeno due valori distinti, altrimenti la riparazione non
        potrebbe mai ristabilire lower < upper.
        """
        for name in names:
            self.choices(name)

        for lower, upper in pairs:
            union = set(self.choices(lower)) | set(self.choices(upper))
            if len(union) < 2:
                raise ConfigurationError(
                    f"Catalog entries '{lower}' and '{upper}' need at least two distinct "
                    f"values to keep {lower} < {upper}"
                )

    def to_dict(self) -> Dict[str, list]:
        return {name: list(values) for name, values in self._ranges.items()}

    def __repr__(self) -> str:
        return f"ParameterCatalog({len(self._ranges)} parameters)"
