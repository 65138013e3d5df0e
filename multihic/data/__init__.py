"""
Data structures shared by the normalization and differential modules
"""

from .models import (RESULT_COLUMNS, STATIC_COLUMNS, ComparisonResult,
                     InteractionTable, NormalizationState, SampleSet,
                     UnitFailure, infer_resolution)

__all__ = [
    "InteractionTable",
    "NormalizationState",
    "SampleSet",
    "ComparisonResult",
    "UnitFailure",
    "STATIC_COLUMNS",
    "RESULT_COLUMNS",
    "infer_resolution",
]
