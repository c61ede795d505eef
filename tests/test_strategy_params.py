from __future__ import annotations

import pytest

from dca_optimizer.errors import ConfigurationError
from dca_optimizer.strategy_params import (
    BaseConfig,
    Feature,
    FieldRef,
    RSIBlock,
    StrategyParams,
    normalize_features,
)


def test_feature_aliases() -> None:
    assert Feature.parse("Bollinger") is Feature.BOLLINGER
    assert Feature.parse(" stoch_rsi ") is Feature.STOCH_RSI
    assert Feature.parse("atr") is Feature.VOLATILITY_SPACING
    assert Feature.parse(Feature.EMA) is Feature.EMA


def test_unknown_feature_names_the_input() -> None:
    with pytest.raises(ConfigurationError, match="wavetrend"):
        Feature.parse("wavetrend")


def test_normalize_features_is_canonical_and_deduplicated() -> None:
    assert normalize_features(["ema", "rsi", "RSI", "bb"]) == (Feature.RSI, Feature.BOLLINGER, Feature.EMA)


def test_fields_follow_canonical_order() -> None:
    params = StrategyParams.create(["ema", "rsi"])
    keys = [ref.key for ref in params.fields()]

    assert keys == [
        "max_multiplier", "tp_percent", "base_threshold", "threshold_multiplier",
        "rsi.period", "rsi.oversold", "rsi.overbought",
        "ema.period",
    ]


def test_volatility_spacing_replaces_threshold_multiplier_gene() -> None:
    params = StrategyParams.create(["rsi", "volatility_adaptive"])
    keys = [ref.key for ref in params.fields()]

    assert "threshold_multiplier" not in keys
    assert "volatility_adaptive.atr_period" in keys


def test_pairs_only_for_enabled_blocks() -> None:
    params = StrategyParams.create(["rsi", "macd", "ema"])

    assert [(lo.key, hi.key) for lo, hi in params.pairs()] == [
        ("rsi.oversold", "rsi.overbought"),
        ("macd.fast_period", "macd.slow_period"),
    ]


def test_typed_block_access() -> None:
    params = StrategyParams.create(["rsi"])

    assert isinstance(params.block(Feature.RSI), RSIBlock)
    assert params.block(Feature.MACD) is None


def test_copy_is_independent() -> None:
    params = StrategyParams.create(["rsi"])
    twin = params.copy()
    twin.set(FieldRef(Feature.RSI, "oversold"), 25)

    assert params.block(Feature.RSI).oversold == 30.0
    assert twin.block(Feature.RSI).oversold == 25


def test_dict_serialization() -> None:
    params = StrategyParams.create(["rsi", "dynamic_tp"], tp_percent=0.03)
    data = params.to_dict()

    assert data["enabled_features"] == ["rsi", "dynamic_tp"]
    assert data["rsi"] == {"period": 14, "oversold": 30.0, "overbought": 70.0}
    assert StrategyParams.from_dict(data) == params


def test_from_dict_rejects_unknown_block_field() -> None:
    with pytest.raises(ConfigurationError, match="threshold"):
        StrategyParams.from_dict({"enabled_features": ["rsi"], "rsi": {"threshold": 3}})


def test_base_config_defaults_features() -> None:
    config = BaseConfig()

    assert config.enabled_features == (Feature.RSI, Feature.MACD, Feature.BOLLINGER, Feature.EMA)


def test_base_config_requires_a_signal_source() -> None:
    with pytest.raises(ConfigurationError, match="signal source"):
        BaseConfig(enabled_features=("volatility_adaptive", "dynamic_tp"))


def test_base_config_rejects_unknown_feature() -> None:
    with pytest.raises(ConfigurationError, match="supertrend"):
        BaseConfig(enabled_features=("rsi", "supertrend"))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"initial_balance": 0},
        {"commission": 1.5},
        {"min_order_qty": -1},
        {"cycle": True, "tp_percent": 0},
        {"min_confidence": 0},
    ],
)
def test_base_config_rejects_invalid_values(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        BaseConfig(**kwargs)


def test_base_params_uses_config_scalars() -> None:
    config = BaseConfig(enabled_features=("rsi",), base_amount=25.0, tp_percent=0.03)
    params = config.base_params()

    assert params.base_amount == 25.0
    assert params.tp_percent == 0.03
    assert params.enabled_features == (Feature.RSI,)


def test_base_config_from_config_module() -> None:
    config = BaseConfig.from_config()

    assert config.initial_balance > 0
    assert config.enabled_features
