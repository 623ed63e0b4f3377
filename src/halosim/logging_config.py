"""
Logging setup for halosim.

Every module logs through a child of the "halosim" logger. numba logs its
JIT and CUDA driver activity on its own "numba" tree, which floods DEBUG
output, so that tree is held at a separate level.
"""
import logging
import os
import sys
from typing import Optional, Union

from halosim.errors import ConfigurationError

LOG_LEVEL_ENV = "HALOSIM_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def resolve_level(level: Union[int, str, None]) -> int:
    """Level number from an int, a level name, or HALOSIM_LOG_LEVEL when None."""
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ConfigurationError(f"Unknown log level: {level!r}")
    return resolved


def setup_logging(level: Union[int, str, None] = None, log_file: Optional[str] = None,
                  numba_level: Union[int, str] = logging.WARNING) -> logging.Logger:
    """
    Configure the 'halosim' logger.

    Args:
        level: Level for halosim messages; falls back to HALOSIM_LOG_LEVEL, then INFO.
        log_file: Optional path that also receives every message.
        numba_level: Level for numba's compiler and CUDA driver loggers.
    """
    level = resolve_level(level)
    logger = logging.getLogger("halosim")
    logger.setLevel(level)
    # Calling twice replaces handlers instead of stacking them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S")
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logging.getLogger("numba").setLevel(resolve_level(numba_level))

    logger.debug("Logging at %s%s", logging.getLevelName(level),
                 f", also to {log_file}" if log_file else "")
    return logger
