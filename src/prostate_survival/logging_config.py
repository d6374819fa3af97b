"""Centralized logging configuration for the prostate survival workflow.

This module provides:
- One console handler plus main, performance and warnings log files
- Performance records tagged for the dedicated performance log
- Categorization of library warnings (convergence, separation, numerical)
- Progress tracking across imputations and model fits

Example:
    >>> from prostate_survival.logging_config import setup_logging, log_performance
    >>> logger = setup_logging(run_type="sample", log_level=logging.INFO)
    >>> logger.info("Starting workflow")
    >>> log_performance(logger, "Imputation finished", duration_sec=4.2, m=20)
"""
import logging
import sys
import warnings
from pathlib import Path
from datetime import datetime
from typing import Optional, Literal
from contextlib import contextmanager


RunType = Literal["sample", "production"]

LOGGER_NAME = "prostate_survival"


class PerformanceFilter(logging.Filter):
    """Filter to capture only performance-related messages.

    Messages tagged with 'is_performance' attribute will pass through.
    """

    def filter(self, record):
        return getattr(record, 'is_performance', False)


class WarningErrorFilter(logging.Filter):
    """Filter to capture only warnings and errors."""

    def filter(self, record):
        return record.levelno >= logging.WARNING


def setup_logging(
    run_type: RunType = "sample",
    log_level: int = logging.INFO,
    console_output: bool = True,
    log_dir: Optional[str] = None,
) -> logging.Logger:
    """Setup logging for the workflow.

    Creates these files in ``log_dir`` (default data/outputs/{run_type}/logs/):
    - main_{timestamp}.log: All log messages
    - performance_{timestamp}.log: Stage timings and fit metrics only
    - warnings_{timestamp}.log: Warnings and errors only

    Args:
        run_type: Type of run (sample/production) - determines log directory
        log_level: Minimum console log level (DEBUG=10, INFO=20, WARNING=30)
        console_output: Whether to output logs to console (default: True)
        log_dir: Override for the log directory

    Returns:
        Configured ``prostate_survival`` logger

    Example:
        >>> logger = setup_logging(run_type="production", log_level=logging.INFO)
        >>> logger.warning("Fit for imputation 3 needed 40 iterations")
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_path = Path(log_dir) if log_dir else Path(f"data/outputs/{run_type}/logs")
    log_path.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handlers

    # Clear any existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = False

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    performance_formatter = logging.Formatter(
        fmt='%(asctime)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    simple_formatter = logging.Formatter(fmt='%(levelname)-8s | %(message)s')

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(simple_formatter)
        logger.addHandler(console_handler)

    main_handler = logging.FileHandler(
        log_path / f"main_{timestamp}.log", mode='w', encoding='utf-8'
    )
    main_handler.setLevel(min(log_level, logging.INFO))
    main_handler.setFormatter(detailed_formatter)
    logger.addHandler(main_handler)

    perf_handler = logging.FileHandler(
        log_path / f"performance_{timestamp}.log", mode='w', encoding='utf-8'
    )
    perf_handler.setLevel(logging.INFO)
    perf_handler.setFormatter(performance_formatter)
    perf_handler.addFilter(PerformanceFilter())
    logger.addHandler(perf_handler)

    warning_handler = logging.FileHandler(
        log_path / f"warnings_{timestamp}.log", mode='w', encoding='utf-8'
    )
    warning_handler.setLevel(logging.WARNING)
    warning_handler.setFormatter(detailed_formatter)
    warning_handler.addFilter(WarningErrorFilter())
    logger.addHandler(warning_handler)

    logger.info(f"Logging initialized for {run_type} run")
    logger.info(f"Log directory: {log_path.absolute()}")

    return logger


def log_performance(logger: logging.Logger, message: str, **kwargs):
    """Log a performance-related message with timing data.

    The record goes to the main log and to the dedicated performance log.

    Args:
        logger: Logger instance
        message: Performance message description
        **kwargs: Metrics appended as ``key=value`` pairs

    Example:
        >>> log_performance(logger, "Cox fit 3 completed",
        ...                 duration_sec=0.4, events=344, loglik=-1710.2)
        # Output: "Cox fit 3 completed | duration_sec=0.4 | events=344 | loglik=-1710.2"
    """
    extra = {'is_performance': True}

    if kwargs:
        metrics_str = " | ".join(f"{k}={v}" for k, v in kwargs.items())
        full_message = f"{message} | {metrics_str}"
    else:
        full_message = message

    logger.info(full_message, extra=extra)


class WarningLogger:
    """Captures warnings and categorizes them for analysis.

    Categories:
    - convergence: Newton-Raphson or imputation model convergence issues
    - separation: Perfect or quasi-perfect prediction in logistic imputation models
    - numerical: Overflow, underflow, invalid values
    - statistical: Hessian and covariance problems
    - other: Uncategorized warnings
    """

    WARNING_CATEGORIES = {
        'convergence': ['ConvergenceWarning', 'did not converge', 'maximum', 'failed to converge'],
        'separation': ['perfect separation', 'perfect prediction', 'PerfectSeparation'],
        'numerical': ['overflow', 'underflow', 'invalid value', 'divide by zero'],
        'statistical': ['Hessian', 'singular', 'covariance'],
    }

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.warning_counts = {cat: 0 for cat in self.WARNING_CATEGORIES}
        self.warning_counts['other'] = 0

    def categorize_warning(self, message: str) -> str:
        """Categorize a warning message based on keywords.

        Args:
            message: Warning message text

        Returns:
            Category name (convergence, separation, numerical, statistical, other)
        """
        message_lower = message.lower()
        for category, keywords in self.WARNING_CATEGORIES.items():
            if any(kw.lower() in message_lower for kw in keywords):
                return category
        return 'other'

    def log_warning(self, message: str, category: Optional[str] = None):
        """Log a warning with category tag.

        Args:
            message: Warning message
            category: Category name (auto-detected if None)
        """
        if category is None:
            category = self.categorize_warning(message)

        self.warning_counts[category] += 1
        self.logger.warning(f"[{category.upper()}] {message}")

    def summary(self) -> dict:
        """Return {category: count} for categories that received warnings."""
        return {k: v for k, v in self.warning_counts.items() if v > 0}


@contextmanager
def capture_warnings(logger: logging.Logger):
    """Context manager to capture and log warnings from libraries.

    Redirects Python warnings to the logging system, categorizes them,
    and logs a summary at the end.

    Args:
        logger: Logger instance

    Yields:
        WarningLogger instance for accessing warning counts

    Example:
        >>> with capture_warnings(logger) as warning_logger:
        ...     datasets = impute(df, config)
        >>> warning_logger.summary()
        {'separation': 2}
    """
    warning_logger = WarningLogger(logger)

    def warning_handler(message, category, filename, lineno, file=None, line=None):
        warning_logger.log_warning(f"{category.__name__}: {message}")

    old_showwarning = warnings.showwarning
    warnings.showwarning = warning_handler

    try:
        yield warning_logger
    finally:
        warnings.showwarning = old_showwarning

        summary = warning_logger.summary()
        if summary:
            summary_str = ", ".join(f"{k}={v}" for k, v in summary.items())
            logger.info(f"Warning summary: {summary_str}")


class ProgressLogger:
    """Logs progress updates for iterations.

    Example:
        >>> progress = ProgressLogger(logger, total=20, desc="Cox fits")
        >>> for fit in fits:
        ...     progress.update(1, metrics={'loglik': fit.loglik})
        # Output: "Cox fits: 1/20 (5.0%) | loglik=-1710.2000"
    """

    def __init__(
        self,
        logger: logging.Logger,
        total: int,
        desc: str,
        log_interval: int = 1
    ):
        """Initialize progress logger.

        Args:
            logger: Logger instance
            total: Total number of iterations
            desc: Description of the operation
            log_interval: Log every N updates (default: 1 = every update)
        """
        self.logger = logger
        self.total = total
        self.desc = desc
        self.log_interval = log_interval
        self.current = 0

    def update(self, n: int = 1, metrics: Optional[dict] = None):
        """Update progress by n steps.

        Args:
            n: Number of steps to advance (default: 1)
            metrics: Optional dict of metrics to include in log message
        """
        self.current += n

        if self.current % self.log_interval == 0 or self.current == self.total:
            pct = (self.current / self.total) * 100 if self.total else 100.0
            msg = f"{self.desc}: {self.current}/{self.total} ({pct:.1f}%)"

            if metrics:
                metrics_str = ", ".join(f"{k}={v:.4f}" if isinstance(v, float) else f"{k}={v}"
                                        for k, v in metrics.items())
                msg += f" | {metrics_str}"

            self.logger.info(msg)
