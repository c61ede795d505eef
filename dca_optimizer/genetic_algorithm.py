"""
Genetic Algorithm Engine - Ottimizzazione parametri DCA

Implementa il ciclo dell'Algoritmo Genetico usando DEAP (Toolbox,
Statistics, Logbook) con valutazione parallela dei backtest:

    INIT -> EVALUATING -> REPRODUCING -> (loop) -> FINALIZING -> DONE

- EVALUATING: ogni individuo non valutato va in un ThreadPoolExecutor con
  max_workers fissi; la generazione successiva parte solo quando tutti i
  backtest sono terminati
- il campione (miglior individuo mai visto) è una copia profonda, aggiornata
  solo dal thread di controllo dopo la barriera
- FINALIZING: il campione viene rieseguito in seriale e quelle metriche
  sono il risultato ufficiale
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from copy import deepcopy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
import logging
import random
import threading
import time

import numpy as np
import pandas as pd
from deap import base, tools
from tqdm import tqdm

from backtest.backtest_engine import BacktestEngine
from backtest.fitness_evaluator import PerformanceMetrics
from data_utils import validate_price_data
from dca_optimizer.errors import ConfigurationError, EvaluationError
from dca_optimizer.genetic_operators import crossover, init_candidate, mutate, tournament_select
from dca_optimizer.parameter_ranges import ParameterCatalog
from dca_optimizer.population import Candidate, Population
from dca_optimizer.strategy_params import BaseConfig, StrategyParams

_LOG = logging.getLogger(__name__)


class OptimizerState(Enum):
    INIT = "init"
    EVALUATING = "evaluating"
    REPRODUCING = "reproducing"
    FINALIZING = "finalizing"
    DONE = "done"


class _TimedEvaluation:
    """Backtest da eseguire nel pool: segna l'istante in cui un worker lo avvia"""

    def __init__(self, evaluate, params: StrategyParams, price_data: pd.DataFrame):
        self.evaluate = evaluate
        self.params = params
        self.price_data = price_data
        self.started = threading.Event()
        self.started_at: Optional[float] = None

    def __call__(self) -> PerformanceMetrics:
        self.started_at = time.monotonic()
        self.started.set()
        return self.evaluate(self.params, self.price_data)


@dataclass
class Champion:
    """Copia profonda del miglior individuo visto finora"""
    params: StrategyParams
    fitness: float
    metrics: PerformanceMetrics
    generation: int


@dataclass
class OptimizationResult:
    """Risultato finale: parametri migliori + metriche ufficiali (rerun seriale)"""
    best_params: StrategyParams
    best_metrics: PerformanceMetrics
    best_fitness: float
    champion_generation: int
    history: tools.Logbook
    evaluations: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "best_params": self.best_params.to_dict(),
            "best_fitness": self.best_fitness,
            "champion_generation": self.champion_generation,
            "evaluations": self.evaluations,
            "metrics": self.best_metrics.to_dict(),
            "history": [{k: float(v) for k, v in record.items()} for record in self.history],
        }


class GeneticAlgorithmEngine:
    """
    Algoritmo Genetico per ottimizzazione parametri strategia DCA

    Ogni individuo è uno StrategyParams valutato tramite BacktestEngine; la
    fitness è il total return del backtest.
    """

    def __init__(
        self,
        population_size: int = 40,
        n_generations: int = 25,
        crossover_prob: float = 0.8,
        mutation_prob: float = 0.18,
        tournament_size: int = 3,
        elite_size: int = 6,
        max_workers: int = 6,
        random_seed: Optional[int] = None,
        eval_timeout: Optional[float] = None,
        verbose: bool = True,
    ):
        """
        Args:
            population_size: Dimensione popolazione
            n_generations: Numero generazioni
            crossover_prob: Probabilità crossover (0.8 = 80%)
            mutation_prob: Prob. mutazione per singolo gene
            tournament_size: Dimensione torneo per selezione
            elite_size: Numero best da preservare (elitism)
            max_workers: Backtest in parallelo (limite fisso)
            random_seed: Seed per reproducibilità
            eval_timeout: Timeout per singolo backtest in secondi (None = nessuno)
            verbose: Mostra progress bar
        """
        if population_size <= 0:
            raise ConfigurationError(f"population_size must be > 0 (got {population_size})")
        if n_generations <= 0:
            raise ConfigurationError(f"n_generations must be > 0 (got {n_generations})")
        if not 0 <= elite_size < population_size:
            raise ConfigurationError(
                f"elite_size must be in [0, population_size) (got {elite_size}, {population_size})"
            )
        if tournament_size < 1:
            raise ConfigurationError(f"tournament_size must be >= 1 (got {tournament_size})")
        if not 0.0 <= crossover_prob <= 1.0 or not 0.0 <= mutation_prob <= 1.0:
            raise ConfigurationError("crossover_prob and mutation_prob must be in [0, 1]")
        if max_workers <= 0:
            raise ConfigurationError(f"max_workers must be > 0 (got {max_workers})")
        if eval_timeout is not None and eval_timeout <= 0:
            raise ConfigurationError(f"eval_timeout must be > 0 (got {eval_timeout})")

        self.population_size = population_size
        self.n_generations = n_generations
        self.crossover_prob = crossover_prob
        self.mutation_prob = mutation_prob
        self.tournament_size = tournament_size
        self.elite_size = elite_size
        self.max_workers = max_workers
        self.random_seed = random_seed
        self.eval_timeout = eval_timeout
        self.verbose = verbose

        self.state = OptimizerState.INIT
        self.logbook = tools.Logbook()

        _LOG.info(f"🧬 GeneticAlgorithm initialized:")
        _LOG.info(f"   Population: {population_size} | Generations: {n_generations}")
        _LOG.info(f"   Crossover: {crossover_prob:.0%} | Mutation: {mutation_prob:.0%}")
        _LOG.info(f"   Elite: {elite_size} | Tournament: {tournament_size} | Workers: {max_workers}")

    @classmethod
    def from_config(cls, **overrides: Any) -> GeneticAlgorithmEngine:
        """Crea engine con gli iperparametri GA da config.py"""
        import config

        settings = dict(
            population_size=getattr(config, "GA_POPULATION_SIZE", 40),
            n_generations=getattr(config, "GA_GENERATIONS", 25),
            crossover_prob=getattr(config, "GA_CROSSOVER_RATE", 0.8),
            mutation_prob=getattr(config, "GA_MUTATION_RATE", 0.18),
            tournament_size=getattr(config, "GA_TOURNAMENT_SIZE", 3),
            elite_size=getattr(config, "GA_ELITE_SIZE", 6),
            max_workers=getattr(config, "GA_MAX_WORKERS", 6),
            random_seed=getattr(config, "GA_RANDOM_SEED", None),
            eval_timeout=getattr(config, "GA_EVAL_TIMEOUT", None),
        )
        settings.update(overrides)
        return cls(**settings)

    def _set_state(self, state: OptimizerState) -> None:
        _LOG.debug(f"🔁 Optimizer state: {self.state.value} -> {state.value}")
        self.state = state

    def _setup_toolbox(self, base_params: StrategyParams, catalog: ParameterCatalog,
                       rng: random.Random, engine: BacktestEngine) -> base.Toolbox:
        """Registra operatori GA nel toolbox (rng e catalogo già legati)"""
        toolbox = base.Toolbox()
        toolbox.register("individual", init_candidate, base_params, catalog, rng)
        toolbox.register("population", tools.initRepeat, list, toolbox.individual)
        toolbox.register("select", tournament_select, size=self.tournament_size, rng=rng)
        toolbox.register("mate", crossover, rate=self.crossover_prob, rng=rng, catalog=catalog)
        toolbox.register("mutate", mutate, rate=self.mutation_prob, catalog=catalog, rng=rng)
        toolbox.register("evaluate", engine.run)
        return toolbox

    @staticmethod
    def _setup_statistics() -> tools.Statistics:
        stats = tools.Statistics(key=lambda candidate: candidate.score)
        stats.register("max", np.max)
        stats.register("avg", np.mean)
        stats.register("min", np.min)
        return stats

    def optimize(
        self,
        price_data: pd.DataFrame,
        base_config: BaseConfig,
        catalog: Optional[ParameterCatalog] = None,
    ) -> OptimizationResult:
        """
        Esegue ottimizzazione GA

        Args:
            price_data: Serie OHLCV (sola lettura, condivisa tra i worker)
            base_config: Input fissi + feature abilitate
            catalog: Catalogo valori (default: DEFAULT_RANGES)

        Returns:
            OptimizationResult con metriche dal rerun seriale del campione

        Raises:
            DataError: serie di prezzi vuota o non valida
            ConfigurationError: catalogo incompleto per le feature abilitate
            EvaluationError: nessun individuo valutabile in tutto il run
        """
        validate_price_data(price_data)
        catalog = catalog or ParameterCatalog.default()
        base_params = base_config.base_params()
        catalog.validate(
            [ref.key for ref in base_params.fields()],
            [(lower.key, upper.key) for lower, upper in base_params.pairs()],
        )

        rng = random.Random(self.random_seed)
        engine = BacktestEngine(base_config)
        toolbox = self._setup_toolbox(base_params, catalog, rng, engine)
        stats = self._setup_statistics()
        self.logbook = tools.Logbook()
        self.logbook.header = ["gen", "evals", "max", "avg", "min", "best_ever"]

        _LOG.info(f"🧬 Starting Genetic Algorithm optimization "
                  f"({len(price_data)} candles, features: "
                  f"{', '.join(f.value for f in base_config.enabled_features)})")

        self.state = OptimizerState.INIT
        population = Population(toolbox.population(n=self.population_size))
        champion: Optional[Champion] = None
        total_evaluations = 0

        for gen in range(self.n_generations):
            self._set_state(OptimizerState.EVALUATING)
            evaluations = self._evaluate_population(population, toolbox, price_data,
                                                    base_config.initial_balance, gen)
            total_evaluations += evaluations

            population.sort_descending_by_fitness()
            champion = self._update_champion(champion, population, gen)

            record = stats.compile(population)
            best_ever = champion.fitness if champion is not None else float("nan")
            self.logbook.record(gen=gen, evals=evaluations, best_ever=best_ever, **record)
            _LOG.info(f"🧬 Generation {gen + 1}/{self.n_generations} | "
                      f"Best: {record['max']:.4f} | Avg: {record['avg']:.4f} | "
                      f"Worst: {record['min']:.4f} | Evals: {evaluations}")

            if gen < self.n_generations - 1:
                self._set_state(OptimizerState.REPRODUCING)
                population = self._next_generation(population, toolbox)

        self._set_state(OptimizerState.FINALIZING)
        if champion is None:
            raise EvaluationError("Every candidate failed to backtest: no champion to report")

        # Rerun seriale: metriche ufficiali del campione
        final_metrics = BacktestEngine(base_config).run(champion.params, price_data)
        if final_metrics.total_return != champion.fitness:
            _LOG.warning(f"⚠️ Final re-run differs from parallel score: "
                         f"{final_metrics.total_return:.6f} vs {champion.fitness:.6f}")

        self._set_state(OptimizerState.DONE)
        _LOG.info(f"✅ OPTIMIZATION COMPLETE")
        _LOG.info(f"🏆 Champion (gen {champion.generation + 1}): "
                  f"return={final_metrics.total_return:.2%}, trades={final_metrics.total_trades}, "
                  f"max DD={final_metrics.max_drawdown:.2%}, sharpe={final_metrics.sharpe_ratio:.2f}")

        return OptimizationResult(
            best_params=champion.params,
            best_metrics=final_metrics,
            best_fitness=final_metrics.total_return,
            champion_generation=champion.generation,
            history=self.logbook,
            evaluations=total_evaluations,
        )

    def _evaluate_population(self, population: Population, toolbox: base.Toolbox,
                             price_data: pd.DataFrame, initial_balance: float, gen: int) -> int:
        """
        Valuta in parallelo gli individui senza fitness

        I worker restituiscono solo le metriche; l'assegnazione avviene qui,
        nel thread di controllo. Il timeout di ogni backtest parte da quando
        un worker lo prende in carico, non dalla sottomissione: l'attesa in
        coda non conta. L'uscita dal blocco `with` attende ogni backtest
        ancora in corso (barriera).
        """
        pending = population.unscored()
        if not pending:
            return 0

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            tasks = [(_TimedEvaluation(toolbox.evaluate, c.params, price_data), c) for c in pending]
            futures = [(executor.submit(task), task, c) for task, c in tasks]
            try:
                with tqdm(total=len(futures), desc=f"Gen {gen + 1}/{self.n_generations}",
                          disable=not self.verbose, leave=False) as pbar:
                    for future, task, candidate in futures:
                        self._collect(future, candidate, initial_balance, task)
                        pbar.update(1)
            except BaseException:
                # interruzione: i backtest ancora in coda non partono
                for future, _, _ in futures:
                    future.cancel()
                raise

        return len(pending)

    def _time_left(self, task: Optional[_TimedEvaluation]) -> Optional[float]:
        """Secondi rimasti al backtest, contati dal suo avvio nel worker"""
        if self.eval_timeout is None or task is None:
            return self.eval_timeout
        task.started.wait()
        return max(0.0, self.eval_timeout - (time.monotonic() - task.started_at))

    def _collect(self, future, candidate: Candidate, initial_balance: float,
                 task: Optional[_TimedEvaluation] = None) -> None:
        try:
            metrics = future.result(timeout=self._time_left(task))
        except FuturesTimeoutError:
            _LOG.warning(f"⚠️ Backtest timed out after {self.eval_timeout}s: {candidate.params!r}")
            candidate.mark_failed(initial_balance)
            return
        except Exception as exc:
            _LOG.warning(f"⚠️ Backtest failed for {candidate.params!r}: {exc}")
            candidate.mark_failed(initial_balance)
            return
        candidate.assign(metrics.total_return, metrics)

    @staticmethod
    def _update_champion(champion: Optional[Champion], population: Population,
                         gen: int) -> Optional[Champion]:
        """Popolazione già ordinata: il primo individuo non fallito è il migliore"""
        best = next((c for c in population if c.is_scored and not c.failed), None)
        if best is None:
            return champion
        if champion is None or best.score > champion.fitness:
            champion = Champion(
                params=best.params.copy(),
                fitness=best.score,
                metrics=deepcopy(best.metrics),
                generation=gen,
            )
            _LOG.info(f"🏆 New Champion: fitness={champion.fitness:.4f} {champion.params!r}")
        return champion

    def _next_generation(self, population: Population, toolbox: base.Toolbox) -> Population:
        """Elite copiati invariati + figli da torneo/crossover/mutazione"""
        offspring = Population([c.clone() for c in population.elite(self.elite_size)])
        parents: List[Candidate] = population.candidates

        while len(offspring) < self.population_size:
            parent1 = toolbox.select(parents)
            parent2 = toolbox.select(parents)
            child = toolbox.mate(parent1, parent2)
            offspring.append(toolbox.mutate(child))

        return offspring
