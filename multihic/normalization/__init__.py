"""
Joint normalization of Hi-C experiments
"""

from .cyclic import cyclic_loess
from .fastlo import fastlo
from .loess import AdaptiveLoess, LoessFit, loess_criteria, loess_fit
from .pooling import assign_pools, pool_units, progressive_pools, split_pools

__all__ = [
    "cyclic_loess",
    "fastlo",
    "AdaptiveLoess",
    "LoessFit",
    "loess_criteria",
    "loess_fit",
    "assign_pools",
    "progressive_pools",
    "split_pools",
    "pool_units",
]
