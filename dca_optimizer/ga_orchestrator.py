"""
GA Orchestrator - Regista del processo di ottimizzazione

Coordina l'intero flusso di ottimizzazione tramite Algoritmo Genetico:
1. Valida i dati storici (errore fatale prima di qualsiasi generazione)
2. Valuta la baseline (parametri di default della configurazione)
3. Esegue il GA
4. Confronta baseline e ottimizzato

La scrittura di report su file è lasciata ai consumatori di
OptimizationResult.to_dict().
"""

from __future__ import annotations
from typing import Any, Dict, Optional
import logging

import pandas as pd

from backtest.backtest_engine import BacktestEngine
from backtest.fitness_evaluator import PerformanceMetrics, compare_metrics
from data_utils import validate_dataset_size, validate_price_data
from dca_optimizer.genetic_algorithm import GeneticAlgorithmEngine, OptimizationResult
from dca_optimizer.parameter_ranges import ParameterCatalog
from dca_optimizer.strategy_params import BaseConfig, StrategyParams

_LOG = logging.getLogger(__name__)


class GAOrchestrator:
    """
    Orchestratore completo del processo di ottimizzazione GA

    Responsabilità:
    - Validazione dati
    - Valutazione baseline
    - Esecuzione ottimizzazione
    - Confronto con baseline
    """

    def __init__(self, base_config: Optional[BaseConfig] = None,
                 catalog: Optional[ParameterCatalog] = None):
        self.base_config = base_config or BaseConfig.from_config()
        self.catalog = catalog or ParameterCatalog.default()

        # Results tracking
        self.baseline_params: Optional[StrategyParams] = None
        self.baseline_metrics: Optional[PerformanceMetrics] = None
        self.result: Optional[OptimizationResult] = None

        _LOG.info(f"🎯 GAOrchestrator initialized:")
        _LOG.info(f"   Capital: ${self.base_config.initial_balance:.2f}")
        _LOG.info(f"   Features: {', '.join(f.value for f in self.base_config.enabled_features)}")
        _LOG.info(f"   Cycle mode: {self.base_config.cycle} (TP {self.base_config.tp_percent:.2%})")

    def run_optimization(
        self,
        price_data: pd.DataFrame,
        compare_with_baseline: bool = True,
        **ga_kwargs: Any,
    ) -> OptimizationResult:
        """
        Esegue ottimizzazione GA completa

        Args:
            price_data: Serie OHLCV
            compare_with_baseline: Valuta anche i parametri di default
            **ga_kwargs: Override degli iperparametri GA di config.py

        Returns:
            OptimizationResult
        """
        _LOG.info("=" * 80)
        _LOG.info("🧬 STARTING GENETIC ALGORITHM OPTIMIZATION")
        _LOG.info("=" * 80)

        validate_price_data(price_data)
        validate_dataset_size(price_data)

        # STEP 1: Baseline
        if compare_with_baseline:
            _LOG.info("📊 STEP 1: Evaluating baseline (configured parameters)...")
            self.baseline_params = self.base_config.base_params()
            self.baseline_metrics = BacktestEngine(self.base_config).run(self.baseline_params, price_data)
            _LOG.info(f"   Baseline return: {self.baseline_metrics.total_return:.2%}")

        # STEP 2: GA
        _LOG.info("🧬 STEP 2: Running Genetic Algorithm...")
        ga_engine = GeneticAlgorithmEngine.from_config(**ga_kwargs)
        self.result = ga_engine.optimize(price_data, self.base_config, self.catalog)

        # STEP 3: Confronto
        if compare_with_baseline:
            _LOG.info("📊 STEP 3: Comparing results...")
            self._display_comparison()

        return self.result

    def improvement(self) -> Dict[str, Dict[str, float]]:
        """Confronto metriche baseline vs ottimizzato ({} se manca uno dei due)"""
        if self.baseline_metrics is None or self.result is None:
            return {}
        return compare_metrics(self.baseline_metrics, self.result.best_metrics)

    def _display_comparison(self):
        """Display confronto baseline vs optimized"""
        comparison = self.improvement()
        if not comparison:
            return

        _LOG.info("=== BASELINE vs OPTIMIZED ===")
        for metric, values in comparison.items():
            _LOG.info(f"   {metric:<18} {values['baseline']:>10.4f} → {values['optimized']:>10.4f} "
                      f"({values['delta']:+.4f})")

        delta = comparison["total_return"]["delta"]
        _LOG.info(f"📈 Improvement in total return: {delta:+.2%}")

        _LOG.info("=== PARAMETER CHANGES ===")
        before = self.baseline_params.to_dict()
        after = self.result.best_params.to_dict()
        for key, value in after.items():
            if before.get(key) != value:
                _LOG.info(f"   {key}: {before.get(key)} → {value}")


if __name__ == "__main__":
    import sys

    import config
    from data_utils import load_price_data
    from logging_config import setup_logging

    setup_logging()
    data_file = sys.argv[1] if len(sys.argv) > 1 else config.DATA_FILE

    orchestrator = GAOrchestrator()
    result = orchestrator.run_optimization(load_price_data(data_file))
    print(result.best_params.to_json())
