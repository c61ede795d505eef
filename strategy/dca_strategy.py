"""
Enhanced DCA strategy.

Buys when enough of the enabled signal sources agree (consensus >=
min_confidence) and the entry spacing allows it. Position size grows with
confidence and average signal strength, capped by max_multiplier. The
backtest engine owns balances and exits; the strategy only keeps the
per-cycle state (level, last entry price).
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional
import logging
import math

import numpy as np
import pandas as pd

from strategy.indicators import Signal, SignalSource, average_true_range
from strategy.spacing import SpacingStrategy

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class TradeDecision:
    action: Signal
    amount: float = 0.0
    confidence: float = 0.0
    strength: float = 0.0


HOLD = TradeDecision(Signal.HOLD)


class DynamicTakeProfit:
    """TP scalato con la volatilità: tp * (1 + ATR/price * multiplier), in [min, max]"""

    def __init__(self, volatility_multiplier: float, min_tp_percent: float,
                 max_tp_percent: float, atr_period: int = 14):
        self.volatility_multiplier = float(volatility_multiplier)
        self.min_tp_percent = float(min_tp_percent)
        self.max_tp_percent = float(max_tp_percent)
        self.atr_period = int(atr_period)
        self._atr = np.array([], dtype=float)

    def prepare(self, price_data: pd.DataFrame) -> None:
        self._atr = average_true_range(price_data, self.atr_period)

    def reset_state(self) -> None:
        self._atr = np.array([], dtype=float)

    def take_profit(self, i: int, price: float, base_tp: float) -> float:
        atr = float(self._atr[i]) if i < len(self._atr) else math.nan
        tp = base_tp
        if not math.isnan(atr) and price > 0:
            tp = base_tp * (1 + (atr / price) * self.volatility_multiplier)
        return min(max(tp, self.min_tp_percent), self.max_tp_percent)


class EnhancedDCAStrategy:
    """
    DCA con consenso multi-indicatore

    Args:
        base_amount: Importo base per ingresso
        max_multiplier: Limite al moltiplicatore dell'importo
        sources: Signal source abilitate (una istanza nuova per valutazione)
        spacing: Strategia di distanza tra ingressi
        min_confidence: Quota minima di source in BUY
        dynamic_tp: TP dinamico opzionale
    """

    def __init__(
        self,
        base_amount: float,
        max_multiplier: float,
        sources: List[SignalSource],
        spacing: SpacingStrategy,
        min_confidence: float = 0.6,
        dynamic_tp: Optional[DynamicTakeProfit] = None,
    ):
        self.base_amount = base_amount
        self.max_multiplier = max_multiplier
        self.sources = list(sources)
        self.spacing = spacing
        self.min_confidence = min_confidence
        self.dynamic_tp = dynamic_tp

        self.level = 0
        self.last_entry_price: Optional[float] = None

    def reset_state(self) -> None:
        """Azzera tutto lo stato interno (ciclo, indicatori, spacing, TP)"""
        self.level = 0
        self.last_entry_price = None
        for source in self.sources:
            source.reset_state()
        self.spacing.reset_state()
        if self.dynamic_tp is not None:
            self.dynamic_tp.reset_state()

    def prepare(self, price_data: pd.DataFrame) -> None:
        for source in self.sources:
            source.prepare(price_data)
        self.spacing.prepare(price_data)
        if self.dynamic_tp is not None:
            self.dynamic_tp.prepare(price_data)

    def ready_sources(self, i: int) -> List[SignalSource]:
        return [source for source in self.sources if source.is_ready(i)]

    def decide(self, i: int, price: float) -> TradeDecision:
        """
        Decisione per la barra i: BUY con importo o HOLD

        Le source ancora in warmup non votano ma restano nel denominatore:
        confidence = BUY / source abilitate.
        """
        ready = self.ready_sources(i)
        if not ready:
            return HOLD

        buyers = [s for s in ready if s.compute_signal(i, price) is Signal.BUY]
        if not buyers:
            return HOLD
        confidence = len(buyers) / len(self.sources)
        if confidence < self.min_confidence:
            return HOLD

        if self.last_entry_price is not None:
            threshold = self.spacing.threshold(self.level, i, price)
            if price > self.last_entry_price * (1 - threshold):
                return HOLD

        strength = sum(s.strength(i) for s in buyers) / len(buyers)
        multiplier = min(1 + confidence * strength, self.max_multiplier)
        return TradeDecision(Signal.BUY, self.base_amount * multiplier, confidence, strength)

    def on_entry(self, i: int, price: float) -> None:
        self.last_entry_price = price
        self.level += 1

    def on_cycle_complete(self) -> None:
        self.level = 0
        self.last_entry_price = None

    def take_profit_percent(self, i: int, price: float, base_tp: float) -> float:
        if self.dynamic_tp is None:
            return base_tp
        return self.dynamic_tp.take_profit(i, price, base_tp)

    def __repr__(self) -> str:
        names = ",".join(s.name for s in self.sources)
        return f"EnhancedDCAStrategy(sources=[{names}], spacing={self.spacing.name})"
