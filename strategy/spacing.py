"""
Entry spacing: how far price must fall below the last DCA entry before the
next entry of the same cycle is allowed.

- FixedProgressiveSpacing: base * multiplier^level
- VolatilityAdaptiveSpacing: base scaled by ATR/price, exponential up to
  level 3 then linear (+15% per level)
"""

from __future__ import annotations
import math

import numpy as np
import pandas as pd

from strategy.indicators import average_true_range


class SpacingStrategy:
    """Base class. `level` is the number of entries already made in the cycle."""

    name = "base"
    min_threshold = 0.003
    max_threshold = 0.10

    def prepare(self, price_data: pd.DataFrame) -> None:
        pass

    def reset_state(self) -> None:
        pass

    def threshold(self, level: int, i: int, price: float) -> float:
        raise NotImplementedError

    def _clamp(self, value: float) -> float:
        return min(max(value, self.min_threshold), self.max_threshold)


class FixedProgressiveSpacing(SpacingStrategy):
    name = "fixed"

    def __init__(self, base_threshold: float, threshold_multiplier: float):
        self.base_threshold = float(base_threshold)
        self.threshold_multiplier = float(threshold_multiplier)

    def threshold(self, level: int, i: int, price: float) -> float:
        return self._clamp(self.base_threshold * self.threshold_multiplier ** level)


class VolatilityAdaptiveSpacing(SpacingStrategy):
    name = "volatility_adaptive"
    max_threshold = 0.06
    exponential_levels = 3
    linear_step = 0.15

    def __init__(self, base_threshold: float, volatility_sensitivity: float,
                 atr_period: int, level_multiplier: float):
        self.base_threshold = float(base_threshold)
        self.volatility_sensitivity = float(volatility_sensitivity)
        self.atr_period = int(atr_period)
        self.level_multiplier = float(level_multiplier)
        self._atr = np.array([], dtype=float)

    def prepare(self, price_data: pd.DataFrame) -> None:
        self._atr = average_true_range(price_data, self.atr_period)

    def reset_state(self) -> None:
        self._atr = np.array([], dtype=float)

    def level_factor(self, level: int) -> float:
        if level <= self.exponential_levels:
            return self.level_multiplier ** level
        capped = self.level_multiplier ** self.exponential_levels
        return capped * (1 + self.linear_step * (level - self.exponential_levels))

    def threshold(self, level: int, i: int, price: float) -> float:
        atr = float(self._atr[i]) if i < len(self._atr) else math.nan
        if math.isnan(atr) or price <= 0:
            # ATR non ancora disponibile
            return self._clamp(self.base_threshold * self.level_multiplier ** level)
        volatility_factor = 0.5 + (atr / price) * self.volatility_sensitivity
        return self._clamp(self.base_threshold * volatility_factor * self.level_factor(level))
