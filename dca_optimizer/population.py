"""
Population - Individui e popolazione dell'Algoritmo Genetico

Un Candidate possiede un vettore di parametri, una fitness DEAP (non valida =
"non ancora valutato") e le metriche dell'ultimo backtest. La Population è
una lista ordinata di Candidate, ricreata ad ogni generazione.
"""

from __future__ import annotations
from copy import deepcopy
from typing import Iterator, List, Optional

from deap import base

from dca_optimizer.strategy_params import StrategyParams
from backtest.fitness_evaluator import PerformanceMetrics, empty_metrics

# Fitness assegnata ai backtest falliti: perdita totale del capitale
MIN_FITNESS = -1.0


class FitnessMax(base.Fitness):
    """Fitness singolo obiettivo da massimizzare (total return)"""
    weights = (1.0,)


class Candidate:
    """Un individuo: vettore parametri + fitness + metriche cache"""

    __slots__ = ("params", "fitness", "metrics", "failed")

    def __init__(self, params: StrategyParams):
        self.params = params
        self.fitness = FitnessMax()
        self.metrics: Optional[PerformanceMetrics] = None
        self.failed = False

    @property
    def is_scored(self) -> bool:
        return self.fitness.valid

    @property
    def score(self) -> Optional[float]:
        return self.fitness.values[0] if self.fitness.valid else None

    def assign(self, score: float, metrics: PerformanceMetrics) -> None:
        self.fitness.values = (score,)
        self.metrics = metrics
        self.failed = False

    def mark_failed(self, initial_balance: float = 0.0) -> None:
        self.fitness.values = (MIN_FITNESS,)
        self.metrics = empty_metrics(initial_balance)
        self.failed = True

    def reset(self) -> None:
        """Torna a 'non valutato': da chiamare ogni volta che il vettore cambia"""
        del self.fitness.values
        self.metrics = None
        self.failed = False

    def clone(self) -> Candidate:
        # Le metriche sono immutabili: basta condividerle
        twin = Candidate(self.params.copy())
        twin.fitness = deepcopy(self.fitness)
        twin.metrics = self.metrics
        twin.failed = self.failed
        return twin

    def __repr__(self) -> str:
        score = "unscored" if self.score is None else f"{self.score:.4f}"
        return f"Candidate({score}, {self.params!r})"


def fitness_key(candidate: Candidate) -> float:
    """Chiave di ordinamento: i candidati non valutati finiscono in fondo"""
    return candidate.score if candidate.is_scored else float("-inf")


class Population:
    """Lista ordinata di Candidate (duplicati ammessi)"""

    def __init__(self, candidates: Optional[List[Candidate]] = None):
        self.candidates: List[Candidate] = list(candidates or [])

    def __len__(self) -> int:
        return len(self.candidates)

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self.candidates)

    def __getitem__(self, index: int) -> Candidate:
        return self.candidates[index]

    def append(self, candidate: Candidate) -> None:
        self.candidates.append(candidate)

    def unscored(self) -> List[Candidate]:
        return [c for c in self.candidates if not c.is_scored]

    def scores(self) -> List[float]:
        return [c.score for c in self.candidates if c.is_scored]

    def best(self) -> Optional[Candidate]:
        """Miglior individuo valutato; a parità vince il primo incontrato"""
        best = None
        for candidate in self.candidates:
            if candidate.is_scored and (best is None or candidate.score > best.score):
                best = candidate
        return best

    def worst(self) -> Optional[Candidate]:
        worst = None
        for candidate in self.candidates:
            if candidate.is_scored and (worst is None or candidate.score < worst.score):
                worst = candidate
        return worst

    def sort_descending_by_fitness(self) -> None:
        # sort() è stabile anche con reverse=True
        self.candidates.sort(key=fitness_key, reverse=True)

    def elite(self, k: int) -> List[Candidate]:
        self.sort_descending_by_fitness()
        k = max(0, min(k, len(self.candidates)))
        return self.candidates[:k]

    def average_fitness(self) -> float:
        scores = self.scores()
        return sum(scores) / len(scores) if scores else 0.0
