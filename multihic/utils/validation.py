"""
Validation utilities for multihic
"""

import importlib
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CORE_PACKAGES = [
    "numpy",
    "pandas",
    "scipy",
    "statsmodels",
    "patsy",
    "joblib",
    "yaml",
    "click",
    "colorlog",
    "tqdm",
]


def validate_span(span: Union[str, float, None]) -> Optional[float]:
    """
    Normalize a loess span option

    Args:
        span: ``"auto"``, ``None`` or a number in (0, 1]

    Returns:
        None for automatic selection, otherwise the span as float
    """
    if span is None:
        return None
    if isinstance(span, str):
        if span.lower() in ("auto", "na", "none"):
            return None
        try:
            span = float(span)
        except ValueError:
            raise ConfigurationError(
                f"span must be 'auto' or a value between 0 and 1, got {span!r}"
            )
    if isinstance(span, bool) or not isinstance(span, (int, float)):
        raise ConfigurationError(
            f"span must be 'auto' or a value between 0 and 1, got {span!r}"
        )
    if not 0 < span <= 1:
        raise ConfigurationError(f"span must be in (0, 1], got {span}")
    return float(span)


def validate_iterations(iterations: int) -> int:
    if isinstance(iterations, bool) or int(iterations) != iterations or iterations < 1:
        raise ConfigurationError(
            f"iterations must be a positive integer, got {iterations!r}"
        )
    return int(iterations)


def validate_max_pool(max_pool: float) -> float:
    if not 0 < max_pool <= 1:
        raise ConfigurationError(f"max_pool must be in (0, 1], got {max_pool}")
    return float(max_pool)


def validate_file_exists(file_path: Union[str, Path], file_type: str = "file") -> bool:
    """
    Validate that a file exists

    Args:
        file_path: Path to file
        file_type: Type description for error messages

    Returns:
        True if file exists, False otherwise
    """
    path = Path(file_path)

    if not path.exists():
        logger.error(f"{file_type} not found: {path}")
        return False

    if not path.is_file():
        logger.error(f"{file_type} is not a file: {path}")
        return False

    return True


def validate_python_packages(packages: List[str]) -> Dict[str, bool]:
    """Check which Python packages can be imported"""
    results = {}

    for package in packages:
        try:
            importlib.import_module(package)
            results[package] = True
            logger.debug(f"Package {package}: available")
        except ImportError:
            results[package] = False
            logger.debug(f"Package {package}: not available")

    return results


def validate_environment() -> List[str]:
    """
    Environment validation

    Returns:
        List of validation issues found
    """
    issues = []

    if sys.version_info < (3, 8):
        issues.append(
            f"Python 3.8+ required, found {sys.version_info.major}.{sys.version_info.minor}"
        )

    package_status = validate_python_packages(CORE_PACKAGES)
    missing_packages = [pkg for pkg, ok in package_status.items() if not ok]
    if missing_packages:
        issues.append(f"Missing Python packages: {', '.join(missing_packages)}")

    if issues:
        logger.warning(f"Environment validation found {len(issues)} issues")
        for issue in issues:
            logger.warning(f"  - {issue}")
    else:
        logger.debug("Environment validation passed")

    return issues
