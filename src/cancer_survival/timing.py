"""Timing utilities for performance logging.

Provides a decorator and a context manager to measure and log execution
times for pipeline stages.

Example:
    >>> from cancer_survival.timing import log_execution_time, Timer
    >>>
    >>> @log_execution_time()
    ... def fit_model(df):
    ...     ...
    ...
    >>> with Timer(logger, "Kaplan-Meier estimation"):
    ...     km = fit_kaplan_meier(durations, events)
"""
import time
import functools
import logging
from typing import Callable, Optional

from cancer_survival.logging_config import LOGGER_NAME, log_performance


def log_execution_time(logger: Optional[logging.Logger] = None):
    """Decorator to log function execution time.

    Logs an INFO performance record on success and an ERROR with the
    traceback on failure; the exception is re-raised.

    Args:
        logger: Logger instance (uses a logger named after the function's module if None)

    Returns:
        Decorated function that logs its execution time
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            nonlocal logger
            if logger is None:
                logger = logging.getLogger(f"{LOGGER_NAME}.{func.__module__.rsplit('.', 1)[-1]}")

            start_time = time.time()
            logger.info(f"Starting: {func.__name__}")

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.time() - start_time
                logger.error(
                    f"{func.__name__} failed after {duration:.2f}s: {str(e)}",
                    exc_info=True
                )
                raise

            duration = time.time() - start_time
            log_performance(
                logger,
                f"Completed: {func.__name__}",
                duration_sec=round(duration, 2),
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
        >>> with Timer(logger, "Cox regression"):
        ...     result = fit_cox(df, covariates)
        INFO     | Starting: Cox regression
        INFO     | Completed: Cox regression | duration_sec=3.12
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
            )
        else:
            self.logger.error(
                f"{self.description} failed after {self.duration:.2f}s: {exc_val}"
            )

        # Don't suppress exception
        return False

    def elapsed(self) -> float:
        """Elapsed time in seconds since entering the context."""
        if self.start_time is None:
            return 0.0
        return time.time() - self.start_time
