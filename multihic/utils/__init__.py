"""
Utility functions and classes for multihic
"""

from .data_utils import (load_hic_table, load_sample_sheet, save_table,
                         standardize_chromosomes)
from .logging import (LoggerMixin, get_logger, log_execution_time, log_fit,
                      log_unit_failures, setup_logging)
from .parallel import run_parallel
from .validation import (validate_environment, validate_file_exists,
                         validate_iterations, validate_max_pool, validate_span)

__all__ = [
    "setup_logging",
    "get_logger",
    "log_execution_time",
    "log_fit",
    "log_unit_failures",
    "LoggerMixin",
    "run_parallel",
    "load_hic_table",
    "load_sample_sheet",
    "save_table",
    "standardize_chromosomes",
    "validate_file_exists",
    "validate_environment",
    "validate_span",
    "validate_iterations",
    "validate_max_pool",
]
