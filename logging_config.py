import logging
import sys
from termcolor import colored


class CleanFormatter(logging.Formatter):
    """
    Enhanced formatter with emoji, colors, and clean output
    Adapts verbosity based on LOG_VERBOSITY setting
    """
    LEVEL_EMOJI = {
        "DEBUG": "🐛",
        "INFO": "ℹ️",
        "WARNING": "⚠️",
        "ERROR": "❌",
        "CRITICAL": "🚨"
    }
    LEVEL_COLOR = {
        "DEBUG": "blue",
        "INFO": "green",
        "WARNING": "yellow",
        "ERROR": "red",
        "CRITICAL": "magenta"
    }

    def format(self, record):
        emoji = self.LEVEL_EMOJI.get(record.levelname, "")
        color = self.LEVEL_COLOR.get(record.levelname, "white")

        record.msg = f"{colored(emoji, color)} {record.getMessage()}"
        record.args = ()
        return super().format(record)


class VerbosityFilter(logging.Filter):
    """
    Smart filter based on LOG_VERBOSITY level

    MINIMAL: Only critical events (generation summaries, champion, errors)
    NORMAL: Standard operations (state changes, baseline comparison)
    DETAILED: Everything (repairs, single backtests)
    """

    CRITICAL_EVENTS = [
        "Generation",
        "Champion",
        "OPTIMIZATION COMPLETE",
        "Final re-run",
        "Improvement",
        "❌",  # Errors
        "🚨",  # Critical issues
    ]

    VERBOSE_DEBUG = [
        "Repair",
        "Backtest StrategyParams",
        "Regime stats",
        "Evaluating",
    ]

    ALWAYS_BLOCK = [
        "invalid value encountered",
        "divide by zero encountered",
    ]

    def __init__(self, verbosity_level="MINIMAL"):
        super().__init__()
        self.verbosity = verbosity_level.upper()

    def filter(self, record):
        msg = record.getMessage()

        # Always block these annoying logs
        for keyword in self.ALWAYS_BLOCK:
            if keyword in msg:
                return False

        # MINIMAL: Only critical events
        if self.verbosity == "MINIMAL":
            # Allow errors and warnings always
            if record.levelno >= logging.WARNING:
                return True

            for keyword in self.CRITICAL_EVENTS:
                if keyword in msg:
                    return True

            return False

        # NORMAL: Standard + Critical
        elif self.verbosity == "NORMAL":
            for keyword in self.VERBOSE_DEBUG:
                if keyword in msg:
                    return False

            return True

        # DETAILED: Everything
        else:
            return True


# These modules are extra noisy, silence them in MINIMAL/NORMAL mode
NOISY_MODULES = [
    "backtest.backtest_engine",
    "backtest.regime_tracker",
    "dca_optimizer.genetic_operators",
    "strategy.indicators",
    "strategy.dca_strategy",
]


def setup_logging(verbosity=None):
    """
    Installs the console handler on the root logger.
    Calling it again replaces the handler instead of adding a second one.

    Args:
        verbosity: "MINIMAL", "NORMAL" or "DETAILED" (default: config.LOG_VERBOSITY)

    Returns:
        the installed handler
    """
    if verbosity is None:
        import config
        verbosity = getattr(config, "LOG_VERBOSITY", "MINIMAL")
    verbosity = verbosity.upper()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler._dca_console = True

    if verbosity == "MINIMAL":
        # Minimal mode: no timestamp, just clean messages
        formatter = CleanFormatter("%(message)s")
    else:
        formatter = CleanFormatter("%(asctime)s %(message)s", datefmt="%H:%M:%S")

    console_handler.setFormatter(formatter)
    console_handler.addFilter(VerbosityFilter(verbosity))

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_dca_console", False):
            root.removeHandler(handler)
    root.addHandler(console_handler)
    root.setLevel(logging.DEBUG if verbosity == "DETAILED" else logging.INFO)

    if verbosity == "MINIMAL":
        module_level = logging.WARNING
    elif verbosity == "NORMAL":
        module_level = logging.INFO
    else:
        module_level = logging.DEBUG
    for module in NOISY_MODULES:
        logging.getLogger(module).setLevel(module_level)

    if verbosity == "MINIMAL":
        logging.info("📊 Logging: MINIMAL mode (generation summaries only)")
    elif verbosity == "NORMAL":
        logging.info("📊 Logging: NORMAL mode (standard operations)")
    else:
        logging.info("📊 Logging: DETAILED mode (full debug)")

    return console_handler
