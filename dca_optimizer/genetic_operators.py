"""
Genetic Operators - Inizializzazione, selezione, crossover, mutazione, riparazione

Tutti gli operatori ricevono esplicitamente il generatore casuale
(random.Random): nessuno usa lo stato globale del modulo random, così ogni
run è riproducibile a parità di seed.

Regola di riparazione per le coppie ordinate (lower, upper):
1. lower > upper  -> scambio
2. lower == upper -> upper sale al valore successivo del proprio catalogo;
   se upper è già al massimo, lower scende al valore precedente del proprio
   catalogo; in ultima istanza si usa l'unione dei due cataloghi
"""

from __future__ import annotations
from typing import Any, Sequence, Tuple
import logging
import random

from dca_optimizer.errors import ConfigurationError
from dca_optimizer.parameter_ranges import ParameterCatalog
from dca_optimizer.population import Candidate, Population, fitness_key
from dca_optimizer.strategy_params import StrategyParams

_LOG = logging.getLogger(__name__)


def init_params(base_params: StrategyParams, catalog: ParameterCatalog,
                rng: random.Random) -> StrategyParams:
    """Estrae ogni gene attivo in modo uniforme dal catalogo"""
    params = base_params.copy()
    for ref in params.fields():
        params.set(ref, catalog.random_choice(ref.key, rng))
    return repair(params, catalog)


def init_candidate(base_params: StrategyParams, catalog: ParameterCatalog,
                   rng: random.Random) -> Candidate:
    return Candidate(init_params(base_params, catalog, rng))


def tournament_select(population: Sequence[Candidate], size: int,
                      rng: random.Random) -> Candidate:
    """Migliore tra `size` estrazioni con reinserimento; a parità vince il primo"""
    winner = None
    for _ in range(size):
        contender = population[rng.randrange(len(population))]
        if winner is None or fitness_key(contender) > fitness_key(winner):
            winner = contender
    return winner


def crossover(parent1: Candidate, parent2: Candidate, rate: float,
              rng: random.Random, catalog: ParameterCatalog) -> Candidate:
    """
    Crossover uniforme

    Il figlio parte da parent1; con probabilità `rate` ogni gene attivo del
    figlio ha il 50% di prendere il valore di parent2. Se il crossover scatta
    la fitness del figlio viene sempre resettata.
    """
    child = parent1.clone()

    if rng.random() < rate:
        donor = parent2.params
        for ref in child.params.fields():
            if ref.feature is not None and not donor.has(ref.feature):
                continue
            if rng.random() < 0.5:
                child.params.set(ref, donor.get(ref))
        child.reset()

    child.params = repair(child.params, catalog)
    return child


def mutate(candidate: Candidate, rate: float, catalog: ParameterCatalog,
           rng: random.Random) -> Candidate:
    """
    Mutazione per gene: ogni campo viene riestratto con probabilità `rate`

    Returns:
        lo stesso Candidate se nessun gene è cambiato, altrimenti un nuovo
        Candidate non valutato con il vettore riparato
    """
    mutated = None
    for ref in candidate.params.fields():
        if rng.random() < rate:
            if mutated is None:
                mutated = candidate.params.copy()
            mutated.set(ref, catalog.random_choice(ref.key, rng))

    if mutated is None:
        return candidate
    return Candidate(repair(mutated, catalog))


def repair(params: StrategyParams, catalog: ParameterCatalog) -> StrategyParams:
    """
    Ripristina lower < upper per ogni coppia ordinata

    Restituisce lo stesso oggetto se già valido, altrimenti una copia
    corretta. Non tocca mai la fitness ed è idempotente.
    """
    fixed = None
    for lower_ref, upper_ref in params.pairs():
        current = fixed or params
        lower, upper = current.get(lower_ref), current.get(upper_ref)
        if lower < upper:
            continue

        if fixed is None:
            fixed = params.copy()
        new_lower, new_upper = _restore_order(lower_ref.key, upper_ref.key, lower, upper, catalog)
        fixed.set(lower_ref, new_lower)
        fixed.set(upper_ref, new_upper)
        _LOG.debug(f"🔧 Repair {lower_ref.key}/{upper_ref.key}: "
                   f"({lower}, {upper}) -> ({new_lower}, {new_upper})")

    return params if fixed is None else fixed


def _restore_order(lower_key: str, upper_key: str, lower: Any, upper: Any,
                   catalog: ParameterCatalog) -> Tuple[Any, Any]:
    if lower > upper:
        return upper, lower

    _, above = catalog.neighbours(upper_key, upper)
    if above is not None:
        return lower, above

    below, _ = catalog.neighbours(lower_key, lower)
    if below is not None:
        return below, upper

    union = sorted(set(catalog.choices(lower_key)) | set(catalog.choices(upper_key)))
    higher = [v for v in union if v > upper]
    if higher:
        return lower, higher[0]
    lower_values = [v for v in union if v < lower]
    if lower_values:
        return lower_values[-1], upper

    raise ConfigurationError(f"Cannot order {lower_key} < {upper_key}: catalog has a single value")


def population_satisfies_pairs(population: Population) -> bool:
    """True se ogni coppia ordinata di ogni individuo rispetta lower < upper"""
    return all(
        c.params.get(lower) < c.params.get(upper)
        for c in population
        for lower, upper in c.params.pairs()
    )
