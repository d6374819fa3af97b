"""Timing utilities for performance logging.

Example:
    >>> from prostate_survival.timing import log_execution_time, Timer
    >>>
    >>> @log_execution_time()
    ... def profile(df):
    ...     return missing_summary(df)
    ...
    >>> with Timer(logger, "Multiple imputation"):
    ...     datasets = impute(df, config)
"""
import time
import functools
import logging
from typing import Callable, Optional

from prostate_survival.logging_config import LOGGER_NAME, log_performance


def log_execution_time(logger: Optional[logging.Logger] = None):
    """Decorator to log function execution time.

    On success logs a performance record with the duration; on failure logs
    an ERROR with the exception trace and re-raises.

    Args:
        logger: Logger instance (uses a logger named after the function's
            module if None)

    Returns:
        Decorated function that logs its execution time

    Example:
        >>> @log_execution_time()
        ... def fit_all(datasets, spec):
        ...     return fit_imputed(datasets, spec)
        INFO     | Completed: fit_all | duration_sec=3.1 | duration_min=0.05
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            nonlocal logger
            if logger is None:
                module = func.__module__
                if not module.startswith(LOGGER_NAME):
                    module = f"{LOGGER_NAME}.{module}"
                logger = logging.getLogger(module)

            start_time = time.time()
            logger.info(f"Starting: {func.__name__}")

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.time() - start_time
                logger.error(
                    f"{func.__name__} failed after {duration:.2f}s: {e}",
                    exc_info=True
                )
                raise

            duration = time.time() - start_time
            log_performance(
                logger,
                f"Completed: {func.__name__}",
                duration_sec=round(duration, 2),
                duration_min=round(duration / 60, 2)
            )
            return result

        return wrapper
    return decorator


class Timer:
    """Context manager for timing code blocks.

    Args:
        logger: Logger instance
        description: Description of the operation being timed

    Example:
        >>> with Timer(logger, "Cox fits"):
        ...     fits = fit_imputed(datasets, spec)
        INFO     | Starting: Cox fits
        INFO     | Completed: Cox fits | duration_sec=2.4 | duration_min=0.04
    """

    def __init__(self, logger: logging.Logger, description: str):
        self.logger = logger
        self.description = description
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.time()
        self.logger.info(f"Starting: {self.description}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.time() - self.start_time

        if exc_type is None:
            log_performance(
                self.logger,
                f"Completed: {self.description}",
                duration_sec=round(self.duration, 2),
                duration_min=round(self.duration / 60, 2)
            )
        else:
            self.logger.error(
                f"{self.description} failed after {self.duration:.2f}s: {exc_val}",
                exc_info=True
            )

        # Don't suppress exception
        return False

    def elapsed(self) -> float:
        """Get elapsed time in seconds since entering the context."""
        if self.start_time is None:
            return 0.0
        return time.time() - self.start_time
