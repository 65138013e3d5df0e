"""
Logging utilities for multihic

Console output goes through colorlog. Loess fits and skipped units are
reported through the helpers below so that every normalizer and test
formats them the same way.
"""

import logging
import sys
import time
from functools import wraps
from pathlib import Path
from typing import Iterable, Optional, Union

import colorlog

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}

# Third-party loggers that are chatty at DEBUG
QUIET_LOGGERS = ("numexpr", "joblib")


def setup_logging(
    level: Union[str, int] = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    format_string: Optional[str] = None,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Set up logging for multihic

    Args:
        level: Logging level (INFO, DEBUG, etc.)
        log_file: Optional file to write logs to
        format_string: Custom format string
        use_colors: Whether to use colored output for console

    Returns:
        The ``multihic`` package logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    format_string = format_string or DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    if use_colors:
        console_handler = colorlog.StreamHandler(sys.stdout)
        console_handler.setFormatter(
            colorlog.ColoredFormatter(
                "%(log_color)s" + format_string,
                datefmt=DATE_FORMAT,
                log_colors=LOG_COLORS,
            )
        )
    else:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(format_string, datefmt=DATE_FORMAT))
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter(format_string, datefmt=DATE_FORMAT))
        file_handler.setLevel(level)
        root_logger.addHandler(file_handler)

    root_logger.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    package_logger = logging.getLogger("multihic")
    package_logger.setLevel(level)
    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger below the ``multihic`` namespace"""
    if name.startswith("multihic"):
        return logging.getLogger(name)
    return logging.getLogger(f"multihic.{name}")


class LoggerMixin:
    """Mixin giving a class a ``multihic.<classname>`` logger"""

    @property
    def logger(self) -> logging.Logger:
        return get_logger(self.__class__.__name__.lower())


def log_fit(logger: logging.Logger, label: str, fit, verbose: bool = False) -> None:
    """
    Report the span and selection criteria of one loess fit

    Args:
        logger: Logger to write to
        label: Description of the fit (chromosome, round, samples)
        fit: ``LoessFit`` to report
        verbose: Report at INFO instead of DEBUG
    """
    level = logging.INFO if verbose else logging.DEBUG
    if logger.isEnabledFor(level):
        logger.log(
            level,
            f"{label}: span={fit.span:.4f} GCV={fit.gcv:.6g} AICc={fit.aicc:.6g}",
        )


def log_unit_failures(logger: logging.Logger, failures: Iterable, stage: str) -> None:
    """Warn about every unit skipped during a stage"""
    for failure in failures:
        logger.warning(f"{stage}: unit {failure} failed and was skipped")


def log_execution_time(func):
    """Decorator to log execution time of functions"""

    @wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        start_time = time.time()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(
                f"{func.__name__} failed after {time.time() - start_time:.2f} seconds: {e}"
            )
            raise
        logger.info(f"{func.__name__} completed in {time.time() - start_time:.2f} seconds")
        return result

    return wrapper
