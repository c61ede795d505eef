"""
Regime tracker for the regime/engine-aware backtest variant.

Each bar is classified as trending (ADX above threshold), volatile (ATR/price
above threshold) or ranging. A new regime is confirmed only after
`confirmation_bars` consecutive bars. Trending bars prefer the "trend"
engine, the others the "grid" engine; the tracker attributes trade P&L to
the engine preferred at entry and reports transition statistics. Transition
costs are diagnostic only and are never deducted from the balance.
"""

from __future__ import annotations
from typing import Dict, List, Sequence
import logging

import numpy as np
import pandas as pd
from ta.trend import ADXIndicator

from backtest.fitness_evaluator import RegimeStats, TradeRecord
from strategy.indicators import average_true_range

_LOG = logging.getLogger(__name__)

TRENDING = "trending"
RANGING = "ranging"
VOLATILE = "volatile"

ENGINE_FOR_REGIME = {TRENDING: "trend", RANGING: "grid", VOLATILE: "grid"}
ENGINES = ("grid", "trend")


class RegimeTracker:

    def __init__(
        self,
        adx_period: int = 14,
        trend_threshold: float = 25.0,
        volatility_threshold: float = 0.03,
        confirmation_bars: int = 3,
        transition_cost_rate: float = 0.001,
    ):
        self.adx_period = adx_period
        self.trend_threshold = trend_threshold
        self.volatility_threshold = volatility_threshold
        self.confirmation_bars = max(1, confirmation_bars)
        self.transition_cost_rate = transition_cost_rate

    def classify(self, price_data: pd.DataFrame) -> List[str]:
        """Regime grezzo per barra (senza conferma)"""
        n = len(price_data)
        if n <= 2 * self.adx_period:
            return [RANGING] * n

        with np.errstate(divide="ignore", invalid="ignore"):
            adx = ADXIndicator(
                high=price_data["high"].astype(float),
                low=price_data["low"].astype(float),
                close=price_data["close"].astype(float),
                window=self.adx_period,
            ).adx().to_numpy(dtype=float)
        atr = average_true_range(price_data, self.adx_period)
        closes = price_data["close"].to_numpy(dtype=float)

        regimes = []
        for i in range(n):
            if np.isfinite(adx[i]) and adx[i] > self.trend_threshold:
                regimes.append(TRENDING)
            elif np.isfinite(atr[i]) and closes[i] > 0 and atr[i] / closes[i] > self.volatility_threshold:
                regimes.append(VOLATILE)
            else:
                regimes.append(RANGING)
        return regimes

    def confirm(self, raw: Sequence[str]) -> List[str]:
        """Applica le barre di conferma: il regime cambia solo dopo N barre consecutive"""
        if not raw:
            return []
        current = raw[0]
        pending, streak = None, 0
        confirmed = []
        for regime in raw:
            if regime == current:
                pending, streak = None, 0
            elif regime == pending:
                streak += 1
            else:
                pending, streak = regime, 1
            if pending is not None and streak >= self.confirmation_bars:
                current, pending, streak = pending, None, 0
            confirmed.append(current)
        return confirmed

    def analyze(self, price_data: pd.DataFrame, equity_curve: np.ndarray,
                trades: Sequence[TradeRecord]) -> RegimeStats:
        regimes = self.confirm(self.classify(price_data))
        n = len(regimes)
        if n == 0:
            return RegimeStats()

        regime_changes = sum(1 for a, b in zip(regimes, regimes[1:]) if a != b)
        avg_regime_duration = n / (regime_changes + 1)

        engines = [ENGINE_FOR_REGIME[r] for r in regimes]
        utilization = {e: engines.count(e) / n for e in ENGINES}

        engine_pnl: Dict[str, float] = {e: 0.0 for e in ENGINES}
        for trade in trades:
            engine_pnl[engines[trade.entry_index]] += trade.pnl

        switches = [i for i in range(1, n) if engines[i] != engines[i - 1]]
        costs = [self.transition_cost_rate * float(equity_curve[i]) for i in switches]
        successes = 0
        for k, start in enumerate(switches):
            end = switches[k + 1] if k + 1 < len(switches) else n - 1
            if equity_curve[end] >= equity_curve[start]:
                successes += 1

        total_costs = float(sum(costs))
        stats = RegimeStats(
            regime_changes=regime_changes,
            avg_regime_duration=float(avg_regime_duration),
            engine_pnl=engine_pnl,
            engine_utilization=utilization,
            total_transitions=len(switches),
            transition_costs=total_costs,
            avg_transition_cost=total_costs / len(switches) if switches else 0.0,
            transition_success_rate=successes / len(switches) if switches else 0.0,
        )
        _LOG.debug(f"📈 Regime stats: {regime_changes} changes, {len(switches)} transitions")
        return stats
