"""
Signal sources for the DCA strategy.

Every source wraps one technical indicator from the `ta` library and exposes
the same capability set:

- prepare(price_data): compute the indicator series once for the whole run
- is_ready(i): False during warm-up or where the indicator is NaN
- compute_signal(i, price): BUY / SELL / HOLD for bar i
- strength(i): signal strength in [0, 1]
- reset_state(): drop every series computed by a previous run
"""

from __future__ import annotations
from enum import Enum
from typing import Dict
import logging
import math

import numpy as np
import pandas as pd
from ta.momentum import RSIIndicator, StochRSIIndicator
from ta.trend import EMAIndicator, MACD, WMAIndicator
from ta.volatility import AverageTrueRange, BollingerBands, KeltnerChannel
from ta.volume import MFIIndicator, OnBalanceVolumeIndicator

_LOG = logging.getLogger(__name__)


class Signal(Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


def _nan_series(price_data: pd.DataFrame) -> np.ndarray:
    return np.full(len(price_data), np.nan)


def average_true_range(price_data: pd.DataFrame, window: int) -> np.ndarray:
    """
    ATR per barra, NaN durante il warm-up

    ta restituisce 0 per le prime window-1 barre e fallisce se la serie è
    più corta della finestra: entrambi i casi diventano NaN.
    """
    if len(price_data) <= window:
        return _nan_series(price_data)
    atr = AverageTrueRange(
        high=price_data["high"].astype(float),
        low=price_data["low"].astype(float),
        close=price_data["close"].astype(float),
        window=window,
    ).average_true_range().to_numpy(dtype=float)
    atr = atr.copy()
    atr[:window] = np.nan
    return atr


class SignalSource:
    """Base class: holds the precomputed series of one indicator"""

    name = "base"

    def __init__(self):
        self._series: Dict[str, np.ndarray] = {}

    @property
    def warmup(self) -> int:
        return 0

    def prepare(self, price_data: pd.DataFrame) -> None:
        raise NotImplementedError

    def reset_state(self) -> None:
        self._series = {}

    def _value(self, key: str, i: int) -> float:
        try:
            return float(self._series[key][i])
        except KeyError:
            raise RuntimeError(f"{self.name}: prepare() must run before reading signals") from None

    def is_ready(self, i: int) -> bool:
        if i < self.warmup or not self._series:
            return False
        return all(not math.isnan(float(series[i])) for series in self._series.values())

    def compute_signal(self, i: int, price: float) -> Signal:
        raise NotImplementedError

    def strength(self, i: int) -> float:
        return 0.5

    def __repr__(self) -> str:
        return f"{type(self).__name__}(warmup={self.warmup})"


class _ThresholdOscillator(SignalSource):
    """Oscillator in [0, 100]: BUY below oversold, SELL above overbought"""

    def __init__(self, period: int, oversold: float, overbought: float):
        super().__init__()
        self.period = int(period)
        self.oversold = float(oversold)
        self.overbought = float(overbought)

    @property
    def warmup(self) -> int:
        return self.period

    def compute_signal(self, i: int, price: float) -> Signal:
        value = self._value("value", i)
        if value < self.oversold:
            return Signal.BUY
        if value > self.overbought:
            return Signal.SELL
        return Signal.HOLD

    def strength(self, i: int) -> float:
        value = self._value("value", i)
        if value < self.oversold and self.oversold > 0:
            return min((self.oversold - value) / self.oversold, 1.0)
        if value > self.overbought and self.overbought < 100:
            return min((value - self.overbought) / (100 - self.overbought), 1.0)
        return 0.0


class RSISource(_ThresholdOscillator):
    name = "rsi"

    def prepare(self, price_data: pd.DataFrame) -> None:
        close = price_data["close"].astype(float)
        self._series = {"value": RSIIndicator(close=close, window=self.period).rsi().to_numpy(dtype=float)}


class MFISource(_ThresholdOscillator):
    name = "mfi"

    def prepare(self, price_data: pd.DataFrame) -> None:
        mfi = MFIIndicator(
            high=price_data["high"].astype(float),
            low=price_data["low"].astype(float),
            close=price_data["close"].astype(float),
            volume=price_data["volume"].astype(float),
            window=self.period,
        ).money_flow_index()
        self._series = {"value": mfi.to_numpy(dtype=float)}


class StochRSISource(_ThresholdOscillator):
    name = "stochrsi"

    @property
    def warmup(self) -> int:
        return 2 * self.period

    def prepare(self, price_data: pd.DataFrame) -> None:
        close = price_data["close"].astype(float)
        stoch = StochRSIIndicator(close=close, window=self.period, smooth1=3, smooth2=3).stochrsi()
        values = stoch.to_numpy(dtype=float) * 100.0
        self._series = {"value": np.where(np.isfinite(values), values, np.nan)}


class MACDSource(SignalSource):
    name = "macd"

    def __init__(self, fast_period: int, slow_period: int, signal_period: int):
        super().__init__()
        self.fast_period = int(fast_period)
        self.slow_period = int(slow_period)
        self.signal_period = int(signal_period)

    @property
    def warmup(self) -> int:
        return self.slow_period + self.signal_period

    def prepare(self, price_data: pd.DataFrame) -> None:
        macd = MACD(
            close=price_data["close"].astype(float),
            window_slow=self.slow_period,
            window_fast=self.fast_period,
            window_sign=self.signal_period,
        )
        self._series = {
            "macd": macd.macd().to_numpy(dtype=float),
            "signal": macd.macd_signal().to_numpy(dtype=float),
            "hist": macd.macd_diff().to_numpy(dtype=float),
            "close": price_data["close"].to_numpy(dtype=float),
        }

    def compute_signal(self, i: int, price: float) -> Signal:
        line, signal, hist = self._value("macd", i), self._value("signal", i), self._value("hist", i)
        if line > signal and hist > 0:
            return Signal.BUY
        if line < signal and hist < 0:
            return Signal.SELL
        return Signal.HOLD

    def strength(self, i: int) -> float:
        # istogramma relativo al prezzo, saturato a 1
        price = self._value("close", i)
        if price <= 0:
            return 0.0
        return min(abs(self._value("hist", i)) / price * 100.0, 1.0)


class BollingerSource(SignalSource):
    name = "bb"

    def __init__(self, period: int, std_dev: float):
        super().__init__()
        self.period = int(period)
        self.std_dev = float(std_dev)

    @property
    def warmup(self) -> int:
        return self.period - 1

    def prepare(self, price_data: pd.DataFrame) -> None:
        bands = BollingerBands(close=price_data["close"].astype(float),
                               window=self.period, window_dev=self.std_dev)
        self._series = {
            "lower": bands.bollinger_lband().to_numpy(dtype=float),
            "upper": bands.bollinger_hband().to_numpy(dtype=float),
            "close": price_data["close"].to_numpy(dtype=float),
        }

    def compute_signal(self, i: int, price: float) -> Signal:
        # 1% di tolleranza sopra la banda inferiore
        if price <= self._value("lower", i) * 1.01:
            return Signal.BUY
        if price >= self._value("upper", i):
            return Signal.SELL
        return Signal.HOLD

    def strength(self, i: int) -> float:
        lower, upper = self._value("lower", i), self._value("upper", i)
        width = upper - lower
        if width <= 0:
            return 0.5
        mid = (upper + lower) / 2
        return float(min(max((mid - self._value("close", i)) / (width / 2), 0.0), 1.0))


class EMASource(SignalSource):
    name = "ema"

    def __init__(self, period: int):
        super().__init__()
        self.period = int(period)

    @property
    def warmup(self) -> int:
        return self.period - 1

    def prepare(self, price_data: pd.DataFrame) -> None:
        ema = EMAIndicator(close=price_data["close"].astype(float), window=self.period).ema_indicator()
        self._series = {"ema": ema.to_numpy(dtype=float)}

    def compute_signal(self, i: int, price: float) -> Signal:
        ema = self._value("ema", i)
        if price > ema:
            return Signal.BUY
        if price < ema:
            return Signal.SELL
        return Signal.HOLD

    def strength(self, i: int) -> float:
        return 0.4


class HullMASource(SignalSource):
    """Hull MA = WMA(2*WMA(n/2) - WMA(n), sqrt(n)); BUY while rising"""

    name = "hullma"

    def __init__(self, period: int):
        super().__init__()
        self.period = int(period)

    @property
    def warmup(self) -> int:
        return self.period + int(math.sqrt(self.period))

    def prepare(self, price_data: pd.DataFrame) -> None:
        close = price_data["close"].astype(float)
        half = WMAIndicator(close=close, window=max(self.period // 2, 1)).wma()
        full = WMAIndicator(close=close, window=self.period).wma()
        raw = 2 * half - full
        hull = WMAIndicator(close=raw, window=max(int(math.sqrt(self.period)), 1)).wma()
        self._series = {"hull": hull.to_numpy(dtype=float)}

    def is_ready(self, i: int) -> bool:
        return i >= 1 and super().is_ready(i) and not math.isnan(self._value("hull", i - 1))

    def compute_signal(self, i: int, price: float) -> Signal:
        current, previous = self._value("hull", i), self._value("hull", i - 1)
        if current > previous:
            return Signal.BUY
        if current < previous:
            return Signal.SELL
        return Signal.HOLD


class KeltnerSource(SignalSource):
    name = "keltner"

    def __init__(self, period: int, multiplier: float):
        super().__init__()
        self.period = int(period)
        self.multiplier = float(multiplier)

    @property
    def warmup(self) -> int:
        return self.period

    def prepare(self, price_data: pd.DataFrame) -> None:
        if len(price_data) <= self.period:
            self._series = {"lower": _nan_series(price_data), "upper": _nan_series(price_data)}
            return
        channel = KeltnerChannel(
            high=price_data["high"].astype(float),
            low=price_data["low"].astype(float),
            close=price_data["close"].astype(float),
            window=self.period,
            window_atr=self.period,
            original_version=False,
            multiplier=self.multiplier,
        )
        self._series = {
            "lower": channel.keltner_channel_lband().to_numpy(dtype=float),
            "upper": channel.keltner_channel_hband().to_numpy(dtype=float),
        }

    def compute_signal(self, i: int, price: float) -> Signal:
        if price <= self._value("lower", i):
            return Signal.BUY
        if price >= self._value("upper", i):
            return Signal.SELL
        return Signal.HOLD


class OBVSource(SignalSource):
    """OBV trend: variazione OBV sugli ultimi `lookback` bar / volume scambiato"""

    name = "obv"
    lookback = 10

    def __init__(self, trend_threshold: float):
        super().__init__()
        self.trend_threshold = float(trend_threshold)

    @property
    def warmup(self) -> int:
        return self.lookback

    def prepare(self, price_data: pd.DataFrame) -> None:
        close = price_data["close"].astype(float)
        volume = price_data["volume"].astype(float)
        obv = OnBalanceVolumeIndicator(close=close, volume=volume).on_balance_volume()
        traded = volume.rolling(self.lookback, min_periods=self.lookback).sum()
        change = (obv - obv.shift(self.lookback)) / traded.where(traded > 0)
        self._series = {"trend": change.to_numpy(dtype=float)}

    def compute_signal(self, i: int, price: float) -> Signal:
        trend = self._value("trend", i)
        if trend > self.trend_threshold:
            return Signal.BUY
        if trend < -self.trend_threshold:
            return Signal.SELL
        return Signal.HOLD

    def strength(self, i: int) -> float:
        return min(abs(self._value("trend", i)), 1.0)
