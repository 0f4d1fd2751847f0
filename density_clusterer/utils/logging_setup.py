# density_clusterer/utils/logging_setup.py
"""
Package-wide logging configuration and stage timing.

Every module in the package logs through `logging.getLogger(__name__)`, so all
loggers are children of the `density_clusterer` package logger. Configuring
that one logger (level, handler, format) is enough to control the output of the
whole toolkit.

Public API:
    - setup_logging: Configure the package logger once, idempotently.
    - log_timing: Decorator that logs the wall time of a pipeline stage.
"""

import logging
import time
from functools import wraps
from typing import Any, Callable

PACKAGE_LOGGER_NAME = 'density_clusterer'

# Set up a logger for this module.
logger = logging.getLogger(__name__)


def setup_logging(level: int | str = logging.INFO) -> logging.Logger:
    """
    Set up logging for the entire density_clusterer package.

    This configures the package-level logger so that all modules inherit the
    same log level and handler configuration.

    Args:
        level: A logging level as an int or a name such as 'DEBUG'.

    Returns:
        The package-level logger.
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    package_logger.setLevel(level)

    # Stop messages from propagating to the root logger to avoid duplicates
    # when the host application also configures logging.
    package_logger.propagate = False

    # Only add a handler if one doesn't already exist, so that building several
    # models does not duplicate every message.
    if not package_logger.handlers:
        console_handler = logging.StreamHandler()
        log_format = logging.Formatter(
            fmt='%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        )
        console_handler.setFormatter(log_format)
        console_handler.setLevel(level)
        package_logger.addHandler(console_handler)
    else:
        # If the level changed, update the existing handlers as well.
        for handler in package_logger.handlers:
            handler.setLevel(level)

    logger.debug(f'Package logging configured at level {logging.getLevelName(level)}')
    return package_logger


def log_timing(stage_name: str) -> Callable:
    """
    Decorator that logs how long the wrapped stage took, even when it raises.

    Example Usage:
        @log_timing('core distance computation')
        def _compute_core_distances(self, X):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                elapsed = time.perf_counter() - start
                logging.getLogger(func.__module__).debug(
                    f'Completed {stage_name} in {elapsed:.3f}s'
                )
        return wrapper
    return decorator
