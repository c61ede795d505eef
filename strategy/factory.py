"""
Strategy construction: one fresh EnhancedDCAStrategy per evaluation, wired
only to the feature blocks enabled in the parameter vector.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Optional

from dca_optimizer.errors import EvaluationError
from dca_optimizer.strategy_params import BaseConfig, Feature, StrategyParams
from strategy.dca_strategy import DynamicTakeProfit, EnhancedDCAStrategy
from strategy.indicators import (
    BollingerSource, EMASource, HullMASource, KeltnerSource, MACDSource,
    MFISource, OBVSource, RSISource, SignalSource, StochRSISource,
)
from strategy.spacing import FixedProgressiveSpacing, SpacingStrategy, VolatilityAdaptiveSpacing

DEFAULT_ATR_PERIOD = 14

INDICATOR_FACTORIES: Dict[Feature, Callable[[Any], SignalSource]] = {
    Feature.RSI: lambda b: RSISource(b.period, b.oversold, b.overbought),
    Feature.MACD: lambda b: MACDSource(b.fast_period, b.slow_period, b.signal_period),
    Feature.BOLLINGER: lambda b: BollingerSource(b.period, b.std_dev),
    Feature.EMA: lambda b: EMASource(b.period),
    Feature.HULL_MA: lambda b: HullMASource(b.period),
    Feature.MFI: lambda b: MFISource(b.period, b.oversold, b.overbought),
    Feature.KELTNER: lambda b: KeltnerSource(b.period, b.multiplier),
    Feature.OBV: lambda b: OBVSource(b.trend_threshold),
    Feature.STOCH_RSI: lambda b: StochRSISource(b.period, b.oversold, b.overbought),
}


def build_spacing(params: StrategyParams) -> SpacingStrategy:
    block = params.block(Feature.VOLATILITY_SPACING)
    if block is None:
        return FixedProgressiveSpacing(params.base_threshold, params.threshold_multiplier)
    return VolatilityAdaptiveSpacing(
        base_threshold=params.base_threshold,
        volatility_sensitivity=block.volatility_sensitivity,
        atr_period=block.atr_period,
        level_multiplier=block.level_multiplier,
    )


def build_dynamic_tp(params: StrategyParams) -> Optional[DynamicTakeProfit]:
    block = params.block(Feature.DYNAMIC_TP)
    if block is None:
        return None
    # stesso periodo ATR dello spacing adattivo, se attivo
    spacing = params.block(Feature.VOLATILITY_SPACING)
    atr_period = spacing.atr_period if spacing is not None else DEFAULT_ATR_PERIOD
    return DynamicTakeProfit(block.volatility_multiplier, block.min_tp_percent,
                             block.max_tp_percent, atr_period)


def build_strategy(params: StrategyParams, base_config: Optional[BaseConfig] = None) -> EnhancedDCAStrategy:
    """Costruisce una strategia nuova (mai condivisa tra valutazioni)"""
    sources = [INDICATOR_FACTORIES[feature](params.block(feature))
               for feature in params.enabled_features if feature.is_signal_source]
    if not sources:
        raise EvaluationError(f"No signal source enabled in {params!r}")

    min_confidence = base_config.min_confidence if base_config is not None else 0.6
    return EnhancedDCAStrategy(
        base_amount=params.base_amount,
        max_multiplier=params.max_multiplier,
        sources=sources,
        spacing=build_spacing(params),
        min_confidence=min_confidence,
        dynamic_tp=build_dynamic_tp(params),
    )
