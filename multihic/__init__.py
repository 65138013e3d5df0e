"""
multihic: joint normalization and differential analysis of Hi-C experiments

multihic normalizes chromatin interaction frequencies across any number of
Hi-C samples at once and detects differential interactions between
conditions, working chromosome by chromosome and distance pool by distance
pool.

Main Components:
- Cyclic loess and fast loess joint normalization
- Distance pooling of interaction records
- Negative-binomial exact test between two groups
- Negative-binomial GLMs with quasi-likelihood F, likelihood ratio and
  fold-change threshold tests

Example:
    >>> from multihic import MultiHiCAnalysis
    >>> analysis = MultiHiCAnalysis(config="config.yaml")
    >>> results = analysis.run_full_pipeline()
"""

import logging
import sys
from importlib import metadata
from typing import Any, Dict

try:
    __version__ = metadata.version("multihic")
except metadata.PackageNotFoundError:
    __version__ = "0.1.0-dev"

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)

# Module imports
from . import data, differential, normalization, utils
from .config import Config, load_config
# Main imports
from .core import MultiHiCAnalysis
from .data import ComparisonResult, InteractionTable, SampleSet
from .differential import hic_exact_test, hic_glm
from .exceptions import (AlreadyNormalizedError, AnalysisError,
                         ConfigurationError, InsufficientDataError,
                         MultiHiCError)
from .normalization import cyclic_loess, fastlo
from .utils import setup_logging, validate_environment
from .utils.validation import CORE_PACKAGES, validate_python_packages

__all__ = [
    "__version__",
    "MultiHiCAnalysis",
    "Config",
    "load_config",
    "setup_logging",
    "validate_environment",
    "InteractionTable",
    "SampleSet",
    "ComparisonResult",
    "cyclic_loess",
    "fastlo",
    "hic_exact_test",
    "hic_glm",
    "MultiHiCError",
    "ConfigurationError",
    "InsufficientDataError",
    "AlreadyNormalizedError",
    "AnalysisError",
    "data",
    "normalization",
    "differential",
    "utils",
]


def get_info() -> Dict[str, Any]:
    """Get package information."""
    return {
        "name": "multihic",
        "version": __version__,
        "description": "Joint normalization and differential analysis of multiple Hi-C samples",
        "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        "modules": __all__[-4:],  # Just the module names
    }


def check_dependencies() -> Dict[str, bool]:
    """Check if key dependencies are available."""
    return validate_python_packages(CORE_PACKAGES)


# Initialize package
logger = logging.getLogger(__name__)
logger.debug(f"multihic v{__version__} initialized")
