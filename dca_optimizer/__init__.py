"""
DCA Strategy Optimizer

Questo modulo implementa l'Algoritmo Genetico (GA) per ottimizzare i parametri
di una strategia DCA basandosi su dati storici.

Componenti:
- parameter_ranges.py: Catalogo valori discreti per ogni parametro
- strategy_params.py: Cromosoma (StrategyParams) e BaseConfig
- population.py: Candidate / Population
- genetic_operators.py: Selezione, crossover, mutazione, riparazione
- genetic_algorithm.py: GA engine (DEAP + ThreadPoolExecutor)
- ga_orchestrator.py: Orchestratore del processo di ottimizzazione

Il backtest usato come fitness è nel package `backtest`, la strategia e gli
indicatori nel package `strategy`.
"""

__version__ = "1.0.0"
