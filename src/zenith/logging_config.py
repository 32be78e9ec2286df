"""
Logging for zenith.

Every module logs under the "zenith" logger. Nothing is configured on import,
so library users see no output unless they set up logging themselves or call
configure_logging / set_verbosity.

Verbosity (CLI -v/-vv, or ZENITH_VERBOSITY when no flag is given):
- 0: INFO; graph commits, evictions, purges
- 1: INFO + prompt text of confirmed configurations
- 2: DEBUG + prompt text, storage reads/writes, fetches, admission checks

--quiet overrides verbosity and leaves warnings and errors only.
"""

import logging
import os

LOG_FORMAT = "%(levelname)s [%(name)s] %(message)s"
ROOT_LOGGER_NAME = "zenith"
VERBOSITY_ENV = "ZENITH_VERBOSITY"

# verbosity -> (logger level, log prompt text)
_LEVELS = {
    0: (logging.INFO, False),
    1: (logging.INFO, True),
    2: (logging.DEBUG, True),
}

_log_prompts: bool = False


def _root() -> logging.Logger:
    """The zenith root logger, with a stderr handler attached on first use."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    return root


def _verbosity_from_env() -> int:
    raw = os.environ.get(VERBOSITY_ENV, "").strip()
    return int(raw) if raw in ("1", "2") else 0


def set_verbosity(level: int) -> None:
    """Apply verbosity 0, 1 or 2. Out-of-range values are clamped."""
    global _log_prompts
    log_level, _log_prompts = _LEVELS[max(0, min(level, 2))]
    _root().setLevel(log_level)


def configure_logging(verbose_level: int | None = None, quiet: bool = False) -> None:
    """
    Configure logging for a CLI run.

    Args:
        verbose_level: 0-2, or None to read ZENITH_VERBOSITY
        quiet: Log warnings and errors only (wins over verbose_level)
    """
    global _log_prompts
    if quiet:
        _root().setLevel(logging.WARNING)
        _log_prompts = False
        return
    set_verbosity(_verbosity_from_env() if verbose_level is None else verbose_level)


def log_prompts() -> bool:
    return _log_prompts


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under zenith (e.g. zenith.core.graph)."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


__all__ = [
    "configure_logging",
    "get_logger",
    "log_prompts",
    "set_verbosity",
]
