from __future__ import annotations

import threading
import time
from concurrent.futures import Future

import pytest
from deap import base

from backtest.backtest_engine import BacktestEngine
from backtest.fitness_evaluator import empty_metrics
from dca_optimizer.errors import ConfigurationError, DataError, EvaluationError
from dca_optimizer.genetic_algorithm import GeneticAlgorithmEngine, OptimizerState
from dca_optimizer.parameter_ranges import ParameterCatalog
from dca_optimizer.population import MIN_FITNESS, Candidate, Population
from dca_optimizer.strategy_params import BaseConfig, StrategyParams


def _engine(**overrides) -> GeneticAlgorithmEngine:
    settings = dict(population_size=10, n_generations=3, elite_size=2, max_workers=4,
                    random_seed=7, verbose=False)
    settings.update(overrides)
    return GeneticAlgorithmEngine(**settings)


def _config() -> BaseConfig:
    return BaseConfig(enabled_features=("rsi", "macd"), min_confidence=0.5)


def test_flat_series_yields_zero_return_champion(flat_prices) -> None:
    engine = _engine()
    result = engine.optimize(flat_prices, _config())

    assert result.best_fitness == 0.0
    assert result.best_metrics.total_trades == 0
    assert result.champion_generation == 0
    assert len(result.history) == 3
    assert engine.state is OptimizerState.DONE


def test_first_generation_evaluates_everyone(oscillating_prices) -> None:
    result = _engine().optimize(oscillating_prices, _config())
    evals = result.history.select("evals")

    assert evals[0] == 10
    assert all(count <= 10 - 2 for count in evals[1:])
    assert result.evaluations == sum(evals)


def test_elitism_never_loses_the_best(oscillating_prices) -> None:
    result = _engine(n_generations=4).optimize(oscillating_prices, _config())
    best = result.history.select("max")
    best_ever = result.history.select("best_ever")

    assert all(later >= earlier for earlier, later in zip(best, best[1:]))
    assert all(later >= earlier for earlier, later in zip(best_ever, best_ever[1:]))
    assert best_ever[-1] == result.best_fitness


def test_same_seed_same_result(oscillating_prices) -> None:
    first = _engine().optimize(oscillating_prices, _config())
    second = _engine().optimize(oscillating_prices, _config())

    assert first.best_params == second.best_params
    assert first.best_metrics == second.best_metrics
    assert first.history.select("avg") == second.history.select("avg")


def test_worker_count_does_not_change_result(oscillating_prices) -> None:
    serial = _engine(max_workers=1).optimize(oscillating_prices, _config())
    parallel = _engine(max_workers=8).optimize(oscillating_prices, _config())

    assert serial.best_params == parallel.best_params
    assert serial.best_fitness == parallel.best_fitness
    assert serial.history.select("max") == parallel.history.select("max")


def test_champion_metrics_match_a_fresh_backtest(oscillating_prices) -> None:
    config = _config()
    result = _engine().optimize(oscillating_prices, config)

    fresh = BacktestEngine(config).run(result.best_params, oscillating_prices)

    assert fresh == result.best_metrics
    assert result.best_fitness == fresh.total_return


def test_result_to_dict(oscillating_prices) -> None:
    result = _engine(n_generations=2).optimize(oscillating_prices, _config())
    data = result.to_dict()

    assert data["best_params"]["enabled_features"] == ["rsi", "macd"]
    assert len(data["history"]) == 2
    assert "trades" not in data["metrics"]


def test_empty_price_data_is_rejected(flat_prices) -> None:
    with pytest.raises(DataError):
        _engine().optimize(flat_prices.iloc[:0], _config())


def test_incomplete_catalog_is_rejected(flat_prices) -> None:
    catalog = ParameterCatalog({"tp_percent": (0.01, 0.02)})

    with pytest.raises(ConfigurationError):
        _engine().optimize(flat_prices, _config(), catalog)


@pytest.mark.parametrize(
    "overrides",
    [
        {"population_size": 0},
        {"n_generations": 0},
        {"elite_size": 10},
        {"tournament_size": 0},
        {"crossover_prob": 1.5},
        {"max_workers": 0},
        {"eval_timeout": 0},
    ],
)
def test_invalid_settings(overrides) -> None:
    with pytest.raises(ConfigurationError):
        _engine(**overrides)


def test_failed_backtest_is_marked_not_raised() -> None:
    engine = _engine()
    candidate = Candidate(StrategyParams.create(["rsi"]))
    future = Future()
    future.set_exception(ValueError("boom"))

    engine._collect(future, candidate, 250.0)

    assert candidate.failed
    assert candidate.score == MIN_FITNESS
    assert candidate.metrics.start_balance == 250.0


def test_timeout_counts_from_backtest_start(flat_prices) -> None:
    engine = _engine(max_workers=1, eval_timeout=0.5)
    calls = []
    lock = threading.Lock()

    def slow_first(params, price_data):
        with lock:
            first = not calls
            calls.append(params)
        if first:
            time.sleep(1.5)
        return empty_metrics(100.0)

    toolbox = base.Toolbox()
    toolbox.register("evaluate", slow_first)
    population = Population([Candidate(StrategyParams.create(["rsi"], base_amount=float(k + 1)))
                             for k in range(6)])

    evaluated = engine._evaluate_population(population, toolbox, flat_prices, 100.0, 0)

    # solo il backtest lento scade; quelli in coda dietro di lui no
    assert evaluated == 6
    assert len(calls) == 6
    assert [c.failed for c in population.candidates] == [True] + [False] * 5
    assert all(c.score == 0.0 for c in population.candidates[1:])


def test_timed_out_backtest_is_marked_failed() -> None:
    engine = _engine(eval_timeout=0.05)
    candidate = Candidate(StrategyParams.create(["rsi"]))

    engine._collect(Future(), candidate, 100.0)

    assert candidate.failed
    assert candidate.score == MIN_FITNESS


def test_failed_candidates_never_become_champion() -> None:
    failed = Candidate(StrategyParams.create(["rsi"]))
    failed.mark_failed(100.0)
    population = Population([failed])

    assert GeneticAlgorithmEngine._update_champion(None, population, 0) is None

    scored = Candidate(StrategyParams.create(["rsi"], base_amount=10.0))
    scored.assign(-0.5, empty_metrics(100.0))
    population = Population([scored, failed])
    population.sort_descending_by_fitness()

    champion = GeneticAlgorithmEngine._update_champion(None, population, 1)
    assert champion.fitness == -0.5
    assert champion.generation == 1
    assert champion.params is not scored.params


def test_champion_only_replaced_by_strictly_better() -> None:
    first = Candidate(StrategyParams.create(["rsi"], base_amount=10.0))
    first.assign(0.2, empty_metrics(100.0))
    champion = GeneticAlgorithmEngine._update_champion(None, Population([first]), 0)

    tie = Candidate(StrategyParams.create(["rsi"], base_amount=20.0))
    tie.assign(0.2, empty_metrics(100.0))
    same = GeneticAlgorithmEngine._update_champion(champion, Population([tie]), 1)

    assert same is champion
    assert same.generation == 0


def test_every_candidate_failing_raises(flat_prices, monkeypatch) -> None:
    def explode(self, params, price_data):
        raise RuntimeError("broken backtest")

    monkeypatch.setattr(BacktestEngine, "run", explode)

    with pytest.raises(EvaluationError):
        _engine(n_generations=2).optimize(flat_prices, _config())


def test_from_config_applies_overrides() -> None:
    engine = GeneticAlgorithmEngine.from_config(population_size=12, elite_size=3, verbose=False)

    assert engine.population_size == 12
    assert engine.elite_size == 3
