"""
Errori dell'ottimizzatore DCA

- ConfigurationError: input di configurazione non valido (fatale, prima del GA)
- DataError: serie di prezzi vuota o inutilizzabile (fatale, prima del GA)
- EvaluationError: un backtest non può essere eseguito
"""


class OptimizerError(Exception):
    """Base class for every error raised by the optimizer."""


class ConfigurationError(OptimizerError, ValueError):
    """Unknown feature name, empty catalog entry or inconsistent settings."""


class DataError(OptimizerError, RuntimeError):
    """The price series is missing, empty or malformed."""


class EvaluationError(OptimizerError, RuntimeError):
    """A parameter vector could not be backtested."""
