"""
Logging utilities for ivfflat.

All modules log through children of the ``ivfflat`` package logger, so
configuring that one logger (``setup_logger()``) controls the output of
the whole library. The initial level can be set with the
``IVFFLAT_LOG_LEVEL`` environment variable.
"""

import logging
import os
import sys
import time
from contextlib import contextmanager
from typing import Iterator, Optional, Union


ROOT_LOGGER = "ivfflat"
LEVEL_ENV_VAR = "IVFFLAT_LOG_LEVEL"

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_loggers: dict = {}


def _parse_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    value = getattr(logging, str(level).upper(), None)
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def setup_logger(
    name: str = ROOT_LOGGER,
    level: Optional[Union[str, int]] = None,
    format_string: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure a logger with a stdout handler and an optional file handler.
    
    Calling it again replaces the handlers installed by the previous call.
    
    Args:
        name: Logger name
        level: Log level name or number (defaults to ``$IVFFLAT_LOG_LEVEL``,
            then INFO)
        format_string: Custom format string
        log_file: Optional file path for logging
    
    Returns:
        Configured logger
    """
    if level is None:
        level = os.environ.get(LEVEL_ENV_VAR, "INFO")
    
    logger = logging.getLogger(name)
    logger.setLevel(_parse_level(level))
    
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    
    formatter = logging.Formatter(format_string or DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)
    
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    
    _loggers[name] = logger
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Get a logger by name.
    
    Module loggers (``ivfflat.*``) are plain children of the package
    logger; asking for one makes sure the package logger is configured.
    """
    if name in _loggers:
        return _loggers[name]
    
    if name.startswith(ROOT_LOGGER + "."):
        get_logger(ROOT_LOGGER)
        logger = logging.getLogger(name)
        _loggers[name] = logger
        return logger
    
    return setup_logger(name)


class LogContext:
    """
    Context manager for temporary log level changes.
    
    Example:
        >>> with LogContext("ivfflat", "DEBUG"):
        ...     index.search(query, k=10)
    """
    
    def __init__(self, logger: Union[logging.Logger, str], level: Union[str, int]):
        self.logger = get_logger(logger) if isinstance(logger, str) else logger
        self.new_level = _parse_level(level)
        self.old_level = self.logger.level
    
    def __enter__(self):
        self.logger.setLevel(self.new_level)
        return self.logger
    
    def __exit__(self, *args):
        self.logger.setLevel(self.old_level)


@contextmanager
def log_duration(
    logger: logging.Logger,
    message: str,
    level: int = logging.INFO,
) -> Iterator[None]:
    """Log ``message`` with the elapsed wall time once the block completes."""
    start = time.time()
    yield
    logger.log(level, f"{message} in {time.time() - start:.2f}s")
