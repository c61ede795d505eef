from __future__ import annotations

from backtest.fitness_evaluator import empty_metrics
from dca_optimizer.population import MIN_FITNESS, Candidate, Population, fitness_key
from dca_optimizer.strategy_params import StrategyParams


def _scored(score: float, tag: int = 0) -> Candidate:
    candidate = Candidate(StrategyParams.create(["rsi"], base_amount=float(tag + 1)))
    candidate.assign(score, empty_metrics(100.0))
    return candidate


def test_new_candidate_is_unscored() -> None:
    candidate = Candidate(StrategyParams.create(["rsi"]))

    assert not candidate.is_scored
    assert candidate.score is None
    assert candidate.metrics is None


def test_reset_clears_score_and_metrics() -> None:
    candidate = _scored(0.25)
    candidate.reset()

    assert not candidate.is_scored
    assert candidate.metrics is None
    assert not candidate.failed


def test_zero_score_still_counts_as_scored() -> None:
    candidate = _scored(0.0)

    assert candidate.is_scored
    assert Population([candidate]).unscored() == []


def test_mark_failed() -> None:
    candidate = Candidate(StrategyParams.create(["rsi"]))
    candidate.mark_failed(250.0)

    assert candidate.failed
    assert candidate.score == MIN_FITNESS
    assert candidate.metrics.total_trades == 0
    assert candidate.metrics.start_balance == 250.0


def test_clone_keeps_score_and_metrics_but_not_vector_identity() -> None:
    original = _scored(0.4)
    twin = original.clone()

    assert twin.score == 0.4
    assert twin.metrics is original.metrics
    assert twin.params == original.params
    assert twin.params is not original.params

    twin.reset()
    assert original.score == 0.4


def test_best_and_worst_break_ties_by_first_encountered() -> None:
    a, b, c, d = _scored(0.1, 0), _scored(0.5, 1), _scored(0.5, 2), _scored(0.1, 3)
    population = Population([a, b, c, d])

    assert population.best() is b
    assert population.worst() is a


def test_sort_is_stable_and_descending() -> None:
    a, b, c, d = _scored(0.1, 0), _scored(0.5, 1), _scored(0.5, 2), _scored(0.3, 3)
    population = Population([a, b, c, d])
    population.sort_descending_by_fitness()

    assert population.candidates == [b, c, d, a]


def test_unscored_candidates_sort_last() -> None:
    fresh = Candidate(StrategyParams.create(["rsi"]))
    scored = _scored(-0.5)
    population = Population([fresh, scored])
    population.sort_descending_by_fitness()

    assert population[0] is scored


def test_elite_is_clamped() -> None:
    population = Population([_scored(0.1, 0), _scored(0.9, 1), _scored(0.5, 2)])

    assert [c.score for c in population.elite(2)] == [0.9, 0.5]
    assert len(population.elite(10)) == 3
    assert population.elite(-1) == []


def test_average_fitness() -> None:
    population = Population([_scored(0.1), _scored(0.3), Candidate(StrategyParams.create(["rsi"]))])

    assert abs(population.average_fitness() - 0.2) < 1e-12
    assert Population().average_fitness() == 0.0


def test_fitness_key_puts_unscored_last() -> None:
    unscored = Candidate(StrategyParams.create(["rsi"]))
    failed = Candidate(StrategyParams.create(["rsi"]))
    failed.mark_failed(100.0)

    ordered = sorted([unscored, _scored(0.2), failed], key=fitness_key, reverse=True)

    assert fitness_key(unscored) == float("-inf")
    assert ordered[0].score == 0.2
    assert ordered[1] is failed
    assert ordered[2] is unscored
