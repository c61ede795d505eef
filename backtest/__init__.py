"""
Backtesting module for the DCA optimizer
Deterministic simulation engine used as fitness oracle by the genetic algorithm
"""

from .backtest_engine import BacktestEngine, run_backtest
from .fitness_evaluator import FitnessEvaluator, PerformanceMetrics

__all__ = ['BacktestEngine', 'run_backtest', 'FitnessEvaluator', 'PerformanceMetrics']
