from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
import pytest

from backtest.backtest_engine import BacktestEngine, _OpenTrade, _RunState, run_backtest
from backtest.fitness_evaluator import FitnessEvaluator, empty_metrics
from backtest.regime_tracker import ENGINES
from dca_optimizer.errors import ConfigurationError
from dca_optimizer.strategy_params import BaseConfig, Feature, FieldRef, StrategyParams


def _rsi_config(**overrides) -> BaseConfig:
    settings = dict(enabled_features=("rsi",), min_confidence=0.5)
    settings.update(overrides)
    return BaseConfig(**settings)


def test_short_series_returns_empty_metrics(oscillating_prices) -> None:
    config = _rsi_config()
    engine = BacktestEngine(config)
    params = config.base_params()

    assert engine.run(params, oscillating_prices.iloc[:0]) == empty_metrics(config.initial_balance)
    assert engine.run(params, oscillating_prices.iloc[:1]) == empty_metrics(config.initial_balance)


def test_flat_series_has_no_trades(flat_prices) -> None:
    config = BaseConfig(enabled_features=("rsi", "macd"))
    metrics = BacktestEngine(config).run(config.base_params(), flat_prices)

    assert metrics.total_trades == 0
    assert metrics.total_return == 0.0
    assert metrics.max_drawdown == 0.0
    assert metrics.sharpe_ratio == 0.0
    assert metrics.end_balance == config.initial_balance


def test_oscillating_series_closes_cycles(oscillating_prices) -> None:
    config = _rsi_config()
    metrics = BacktestEngine(config).run(config.base_params(), oscillating_prices)

    assert metrics.total_trades > 0
    assert metrics.completed_cycles >= 1
    closed = [t for t in metrics.trades if t.status == "closed"]
    completed = [c for c in metrics.cycles if c.completed]
    assert len(completed) == metrics.completed_cycles
    assert sum(c.entries for c in completed) == len(closed)
    for cycle in completed:
        assert cycle.exit_price >= cycle.avg_entry_price * (1 + config.base_params().tp_percent)


def test_end_balance_matches_trade_pnl(oscillating_prices) -> None:
    config = _rsi_config()
    metrics = BacktestEngine(config).run(config.base_params(), oscillating_prices)

    realized = config.initial_balance + sum(t.pnl for t in metrics.trades)
    assert abs(metrics.end_balance - realized) < 1e-6
    assert abs(metrics.total_return - (metrics.end_balance / config.initial_balance - 1)) < 1e-12


def test_commission_is_charged_on_every_entry(oscillating_prices) -> None:
    config = _rsi_config(commission=0.001)
    metrics = BacktestEngine(config).run(config.base_params(), oscillating_prices)

    for trade in metrics.trades:
        assert abs(trade.commission - trade.cost * 0.001) < 1e-12


def test_min_order_qty_rounds_quantities(oscillating_prices) -> None:
    config = _rsi_config(min_order_qty=0.25)
    metrics = BacktestEngine(config).run(config.base_params(), oscillating_prices)

    assert metrics.total_trades > 0
    for trade in metrics.trades:
        steps = trade.quantity / 0.25
        assert steps >= 1
        assert abs(steps - round(steps)) < 1e-9


def test_without_cycle_mode_positions_stay_open(oscillating_prices) -> None:
    config = _rsi_config(cycle=False)
    metrics = BacktestEngine(config).run(config.base_params(), oscillating_prices)

    assert metrics.completed_cycles == 0
    assert metrics.cycles == ()
    assert metrics.total_trades > 0
    assert all(t.status == "open" for t in metrics.trades)


def test_same_engine_does_not_leak_state(oscillating_prices) -> None:
    config = BaseConfig(enabled_features=("rsi", "bb", "volatility_adaptive", "dynamic_tp"),
                        min_confidence=0.5)
    params_a = config.base_params()
    params_b = config.base_params()
    params_b.set(FieldRef(Feature.RSI, "oversold"), 40)
    params_b.set(FieldRef(Feature.BOLLINGER, "period"), 30)

    engine = BacktestEngine(config)
    first = engine.run(params_a, oscillating_prices)
    engine.run(params_b, oscillating_prices)
    again = engine.run(params_a, oscillating_prices)

    assert first == again
    assert first == run_backtest(params_a, oscillating_prices, config)


def test_parallel_runs_match_serial_run(oscillating_prices) -> None:
    config = _rsi_config()
    params = config.base_params()
    engine = BacktestEngine(config)
    expected = engine.run(params, oscillating_prices)

    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(executor.map(lambda _: engine.run(params, oscillating_prices), range(8)))

    assert all(result == expected for result in results)


def test_run_does_not_modify_inputs(oscillating_prices) -> None:
    config = _rsi_config()
    params = config.base_params()
    params_before = params.copy()
    frame_before = oscillating_prices.copy()

    BacktestEngine(config).run(params, oscillating_prices)

    pd.testing.assert_frame_equal(oscillating_prices, frame_before)
    assert params == params_before


def test_regime_tracking_reports_engine_utilization(oscillating_prices) -> None:
    config = _rsi_config(track_regimes=True)
    metrics = BacktestEngine(config).run(config.base_params(), oscillating_prices)

    assert set(metrics.engine_utilization) == set(ENGINES)
    assert abs(sum(metrics.engine_utilization.values()) - 1.0) < 1e-9
    assert abs(sum(metrics.engine_pnl.values()) - sum(t.pnl for t in metrics.trades)) < 1e-6


def test_regime_tracking_is_off_by_default(oscillating_prices) -> None:
    config = _rsi_config()
    metrics = BacktestEngine(config).run(config.base_params(), oscillating_prices)

    assert metrics.engine_utilization == {}
    assert metrics.regime_changes == 0


def test_every_signal_source_runs(trending_prices) -> None:
    features = [f for f in Feature]
    config = BaseConfig(enabled_features=features)
    params = StrategyParams.create(features)

    metrics = BacktestEngine(config).run(params, trending_prices)

    assert metrics.start_balance == config.initial_balance
    assert metrics.total_return > -1.0


class _FixedTakeProfit:
    """Strategia minima per pilotare il take profit a mano"""

    def __init__(self):
        self.completed = 0

    def take_profit_percent(self, i, price, base_tp):
        return base_tp

    def on_cycle_complete(self):
        self.completed += 1


def _single_entry_state(balance: float = 0.0) -> _RunState:
    state = _RunState(balance=balance, position=1.0, cycle_start=0)
    state.open_trades.append(_OpenTrade(0, 100.0, 1.0, 100.0, 0.0, 0, remaining=1.0))
    return state


def _stamps(n: int) -> np.ndarray:
    return pd.date_range("2024-01-01", periods=n, freq="1h").to_numpy()


def test_tp_levels_sell_one_fifth_per_level_in_turn() -> None:
    config = _rsi_config(commission=0.0, use_tp_levels=True, tp_levels=5, tp_percent=0.02)
    engine = BacktestEngine(config)
    params = config.base_params()
    strategy = _FixedTakeProfit()
    state = _single_entry_state()
    stamps = _stamps(6)

    # livelli a 100.4, 100.8, 101.2, 101.6, 102.0
    expected = [(100.3, 1.0, 0), (100.45, 0.8, 1), (100.85, 0.6, 2), (101.25, 0.4, 3)]
    for i, (price, position, levels) in enumerate(expected, start=1):
        engine._check_tp_levels(state, strategy, params, i, price, stamps)
        assert abs(state.position - position) < 1e-9
        assert len(state.levels_hit) == levels
        assert state.partial_exits == levels
    assert state.cycles == []

    # gli ultimi due livelli nella stessa barra chiudono il ciclo
    engine._check_tp_levels(state, strategy, params, 5, 102.5, stamps)

    assert state.position == 0.0
    assert state.open_trades == []
    assert state.levels_hit == set()
    assert state.cycle == 1
    assert strategy.completed == 1

    (cycle,) = state.cycles
    assert cycle.completed
    assert (cycle.levels_hit, cycle.partial_exits, cycle.entries) == (5, 5, 1)
    assert cycle.exit_price == 102.5

    (trade,) = state.trades
    assert trade.status == "closed"
    assert abs(trade.exit_price - 101.51) < 1e-9
    assert abs(trade.pnl - 1.51) < 1e-9
    assert abs(state.balance - 101.51) < 1e-9


def test_tp_levels_follow_cycle_quantity_across_entries() -> None:
    config = _rsi_config(commission=0.0, use_tp_levels=True, tp_levels=2, tp_percent=0.02)
    engine = BacktestEngine(config)
    state = _single_entry_state()
    state.open_trades.append(_OpenTrade(1, 100.0, 3.0, 300.0, 0.0, 0, remaining=3.0))
    state.position = 4.0

    engine._check_tp_levels(state, _FixedTakeProfit(), config.base_params(), 2, 101.5, _stamps(3))

    # metà della quantità del ciclo, ripartita pro-rata sui due ingressi
    assert abs(state.position - 2.0) < 1e-9
    assert abs(state.open_trades[0].remaining - 0.5) < 1e-9
    assert abs(state.open_trades[1].remaining - 1.5) < 1e-9


def test_open_cycle_is_recorded_as_incomplete() -> None:
    config = _rsi_config(commission=0.0, use_tp_levels=True, tp_percent=0.02)
    engine = BacktestEngine(config)
    state = _single_entry_state()
    stamps = _stamps(3)
    engine._check_tp_levels(state, _FixedTakeProfit(), config.base_params(), 1, 100.45, stamps)

    engine._close_open_cycle(state, 2, 99.0, stamps)

    (cycle,) = state.cycles
    assert not cycle.completed
    assert (cycle.end_index, cycle.exit_price) == (2, 99.0)
    assert (cycle.levels_hit, cycle.partial_exits) == (1, 1)
    # 0.2 venduti a 100.45 + 0.8 valutati a 99
    assert abs(cycle.pnl - (-0.71)) < 1e-9
    (trade,) = state.trades
    assert trade.status == "open"
    assert abs(trade.pnl - cycle.pnl) < 1e-12

    metrics = FitnessEvaluator(100.0).evaluate(state.trades, np.array([100.0, 100.09, 99.29]),
                                               stamps, state.cycles)
    assert metrics.completed_cycles == 0
    assert len(metrics.cycles) == 1


def test_tp_levels_backtest_keeps_balance_identity(oscillating_prices) -> None:
    config = _rsi_config(use_tp_levels=True)
    metrics = BacktestEngine(config).run(config.base_params(), oscillating_prices)

    assert metrics.completed_cycles >= 1
    for cycle in metrics.cycles:
        if cycle.completed:
            assert (cycle.levels_hit, cycle.partial_exits) == (config.tp_levels, config.tp_levels)
    assert all(c.completed for c in metrics.cycles[:-1])
    realized = config.initial_balance + sum(t.pnl for t in metrics.trades)
    assert abs(metrics.end_balance - realized) < 1e-6


def test_tp_levels_require_cycle_mode() -> None:
    with pytest.raises(ConfigurationError):
        _rsi_config(cycle=False, use_tp_levels=True)
