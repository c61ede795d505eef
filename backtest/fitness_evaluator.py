"""
Fitness Evaluator - Calcolo metriche performance del backtest DCA

Trasforma la traccia di un backtest (trade, cicli chiusi, equity per barra)
in un PerformanceMetrics immutabile. La fitness usata dal GA è il total
return; le altre metriche servono per ranking secondario e report.

Tutte le divisioni per zero producono 0.0: nessun NaN/inf nelle metriche,
così due run identici danno bundle uguali anche con ==.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple
import logging

import numpy as np

_LOG = logging.getLogger(__name__)

SECONDS_PER_YEAR = 365.25 * 24 * 3600


@dataclass(frozen=True)
class TradeRecord:
    """Singolo ingresso DCA (chiuso dal TP del ciclo o valutato a fine dati)"""
    entry_index: int
    entry_time: str
    entry_price: float
    quantity: float
    cost: float            # quantity * entry_price
    commission: float      # commissione di acquisto
    exit_index: int
    exit_time: str
    exit_price: float
    pnl: float
    pnl_pct: float
    status: str            # 'closed' (take profit) o 'open' (mark-to-market finale)
    cycle: int


@dataclass(frozen=True)
class CycleSummary:
    """Ciclo di accumulo (chiuso da take profit o ancora aperto a fine dati)"""
    cycle: int
    start_index: int
    end_index: int
    entries: int
    avg_entry_price: float
    exit_price: float
    quantity: float
    pnl: float
    completed: bool = True      # False: ciclo aperto valutato al prezzo finale
    levels_hit: int = 0         # livelli TP raggiunti (modalità multi-livello)
    partial_exits: int = 0      # vendite parziali eseguite nel ciclo


@dataclass(frozen=True)
class RegimeStats:
    """Statistiche regime/engine (variante regime-aware del simulatore)"""
    regime_changes: int = 0
    avg_regime_duration: float = 0.0
    engine_pnl: Mapping[str, float] = field(default_factory=dict)
    engine_utilization: Mapping[str, float] = field(default_factory=dict)
    total_transitions: int = 0
    transition_costs: float = 0.0
    avg_transition_cost: float = 0.0
    transition_success_rate: float = 0.0


@dataclass(frozen=True)
class PerformanceMetrics:
    """Metriche di performance complete (MetricsBundle)"""
    # Return metrics
    total_return: float
    annualized_return: float
    max_drawdown: float

    # Trade metrics
    win_rate: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    profit_factor: float

    # Risk metrics
    sharpe_ratio: float
    sortino_ratio: float
    calmar_ratio: float
    var_95: float

    # Balance
    start_balance: float
    end_balance: float
    completed_cycles: int

    # Regime / engine-aware
    regime_changes: int = 0
    avg_regime_duration: float = 0.0
    engine_pnl: Mapping[str, float] = field(default_factory=dict)
    engine_utilization: Mapping[str, float] = field(default_factory=dict)
    total_transitions: int = 0
    transition_costs: float = 0.0
    avg_transition_cost: float = 0.0
    transition_success_rate: float = 0.0

    # Traccia completa
    trades: Tuple[TradeRecord, ...] = ()
    cycles: Tuple[CycleSummary, ...] = ()

    def to_dict(self, include_trades: bool = False) -> Dict[str, Any]:
        """Converte in dizionario (senza traccia trade di default)"""
        data = asdict(self)
        data["engine_pnl"] = dict(self.engine_pnl)
        data["engine_utilization"] = dict(self.engine_utilization)
        if not include_trades:
            data.pop("trades")
            data.pop("cycles")
        return data


def empty_metrics(initial_balance: float = 0.0) -> PerformanceMetrics:
    """Bundle vuoto: zero trade, zero return (serie vuota/corta o valutazione fallita)"""
    return PerformanceMetrics(
        total_return=0.0,
        annualized_return=0.0,
        max_drawdown=0.0,
        win_rate=0.0,
        total_trades=0,
        winning_trades=0,
        losing_trades=0,
        profit_factor=0.0,
        sharpe_ratio=0.0,
        sortino_ratio=0.0,
        calmar_ratio=0.0,
        var_95=0.0,
        start_balance=initial_balance,
        end_balance=initial_balance,
        completed_cycles=0,
    )


class FitnessEvaluator:
    """
    Valutatore metriche per il backtest DCA

    Args:
        initial_balance: Capitale iniziale
    """

    def __init__(self, initial_balance: float):
        self.initial_balance = initial_balance

    def evaluate(
        self,
        trades: Sequence[TradeRecord],
        equity_curve: np.ndarray,
        timestamps: np.ndarray,
        cycles: Sequence[CycleSummary] = (),
        regime_stats: Optional[RegimeStats] = None,
    ) -> PerformanceMetrics:
        """
        Calcola il bundle completo

        Args:
            trades: Trade registrati (chiusi + aperti valutati a fine dati)
            equity_curve: Equity per barra (balance + posizione * prezzo)
            timestamps: Timestamp delle barre (datetime64)
            cycles: Cicli del backtest (completati e aperto finale)
            regime_stats: Statistiche regime opzionali
        """
        equity = np.asarray(equity_curve, dtype=float)
        if len(equity) == 0:
            return empty_metrics(self.initial_balance)

        end_balance = float(equity[-1])
        total_return = self._safe_div(end_balance - self.initial_balance, self.initial_balance)

        years = self._duration_years(timestamps)
        annualized_return = self._annualized_return(self.initial_balance, end_balance, years)
        max_drawdown = self._calculate_max_drawdown(equity)

        # Trade P&L
        pnls = [t.pnl for t in trades]
        winning_trades = sum(1 for p in pnls if p > 0)
        losing_trades = sum(1 for p in pnls if p < 0)
        win_rate = self._safe_div(winning_trades, len(pnls))
        gross_win = sum(p for p in pnls if p > 0)
        gross_loss = abs(sum(p for p in pnls if p < 0))
        profit_factor = self._safe_div(gross_win, gross_loss)

        # Rendimenti per periodo dalla equity curve
        returns = self._period_returns(equity)
        periods_per_year = self._periods_per_year(timestamps)
        sharpe_ratio = self._calculate_sharpe_ratio(returns, periods_per_year)
        sortino_ratio = self._calculate_sortino_ratio(returns, periods_per_year)
        calmar_ratio = self._safe_div(annualized_return, max_drawdown)
        var_95 = float(np.percentile(returns, 5)) if len(returns) > 0 else 0.0

        regime = regime_stats or RegimeStats()

        return PerformanceMetrics(
            total_return=total_return,
            annualized_return=annualized_return,
            max_drawdown=max_drawdown,
            win_rate=win_rate,
            total_trades=len(trades),
            winning_trades=winning_trades,
            losing_trades=losing_trades,
            profit_factor=profit_factor,
            sharpe_ratio=sharpe_ratio,
            sortino_ratio=sortino_ratio,
            calmar_ratio=calmar_ratio,
            var_95=var_95,
            start_balance=self.initial_balance,
            end_balance=end_balance,
            completed_cycles=sum(1 for c in cycles if c.completed),
            regime_changes=regime.regime_changes,
            avg_regime_duration=regime.avg_regime_duration,
            engine_pnl=dict(regime.engine_pnl),
            engine_utilization=dict(regime.engine_utilization),
            total_transitions=regime.total_transitions,
            transition_costs=regime.transition_costs,
            avg_transition_cost=regime.avg_transition_cost,
            transition_success_rate=regime.transition_success_rate,
            trades=tuple(trades),
            cycles=tuple(cycles),
        )

    @staticmethod
    def _safe_div(numerator: float, denominator: float) -> float:
        if denominator == 0:
            return 0.0
        return float(numerator / denominator)

    @staticmethod
    def _period_returns(equity: np.ndarray) -> np.ndarray:
        if len(equity) < 2:
            return np.array([], dtype=float)
        previous = equity[:-1]
        diffs = np.diff(equity)
        return np.divide(diffs, previous, out=np.zeros_like(diffs), where=previous > 0)

    @staticmethod
    def _duration_years(timestamps: np.ndarray) -> float:
        if len(timestamps) < 2:
            return 0.0
        seconds = (timestamps[-1] - timestamps[0]) / np.timedelta64(1, "s")
        return float(seconds) / SECONDS_PER_YEAR

    @staticmethod
    def _periods_per_year(timestamps: np.ndarray) -> float:
        """Frequenza barre stimata dalla mediana degli intervalli"""
        if len(timestamps) < 2:
            return 0.0
        deltas = np.diff(timestamps) / np.timedelta64(1, "s")
        median = float(np.median(deltas))
        if median <= 0:
            return 0.0
        return SECONDS_PER_YEAR / median

    @staticmethod
    def _annualized_return(initial: float, final: float, years: float) -> float:
        if initial <= 0 or final <= 0 or years <= 0:
            return 0.0
        return float((final / initial) ** (1 / years) - 1)

    @staticmethod
    def _calculate_max_drawdown(equity: np.ndarray) -> float:
        """Max drawdown (frazione) dal picco corrente"""
        running_max = np.maximum.accumulate(equity)
        drawdown = np.divide(running_max - equity, running_max,
                             out=np.zeros_like(equity), where=running_max > 0)
        return float(np.max(drawdown))

    @staticmethod
    def _calculate_sharpe_ratio(returns: np.ndarray, periods_per_year: float) -> float:
        if len(returns) < 2:
            return 0.0
        std_return = np.std(returns)
        if std_return < 1e-12:
            return 0.0
        sharpe = np.mean(returns) / std_return
        if periods_per_year > 0:
            sharpe *= np.sqrt(periods_per_year)
        return float(sharpe)

    @staticmethod
    def _calculate_sortino_ratio(returns: np.ndarray, periods_per_year: float) -> float:
        """Sortino Ratio (considera solo downside risk)"""
        if len(returns) < 2:
            return 0.0
        downside = returns[returns < 0]
        if len(downside) == 0:
            return 0.0
        downside_std = np.sqrt(np.mean(downside ** 2))
        if downside_std < 1e-12:
            return 0.0
        sortino = np.mean(returns) / downside_std
        if periods_per_year > 0:
            sortino *= np.sqrt(periods_per_year)
        return float(sortino)


def compare_metrics(baseline: PerformanceMetrics, optimized: PerformanceMetrics) -> Dict[str, Dict[str, float]]:
    """Confronto baseline vs ottimizzato sulle metriche principali"""
    keys = ("total_return", "annualized_return", "max_drawdown", "win_rate",
            "total_trades", "sharpe_ratio", "sortino_ratio", "calmar_ratio", "var_95")
    comparison = {}
    for key in keys:
        before = float(getattr(baseline, key))
        after = float(getattr(optimized, key))
        comparison[key] = {"baseline": before, "optimized": after, "delta": after - before}
    return comparison
