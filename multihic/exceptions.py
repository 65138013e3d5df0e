"""
Exception hierarchy for multihic
"""

from typing import Iterable, List, Optional


class MultiHiCError(Exception):
    """Base class for all multihic errors"""


class ConfigurationError(MultiHiCError, ValueError):
    """Invalid option or argument combination supplied by the caller"""


class InsufficientDataError(MultiHiCError):
    """Too little usable data to fit a unit of work"""


class AlreadyNormalizedError(MultiHiCError):
    """Raised when a normalizer is handed data that is already normalized"""

    def __init__(self, message: str = "Data has already been normalized."):
        super().__init__(message)


class AnalysisError(MultiHiCError):
    """Every unit of an analysis failed"""

    def __init__(self, message: str, failures: Optional[Iterable] = None):
        self.failures: List = list(failures or [])
        if self.failures:
            details = "; ".join(str(failure) for failure in self.failures)
            message = f"{message}: {details}"
        super().__init__(message)
