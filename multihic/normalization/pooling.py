"""
Progressive pooling of genomic distances

Distance 0 forms its own pool, then pools of 2, 3, 4, ... consecutive unit
distances follow (1-2, 3-5, 6-9, ...). Every distance past the ``max_pool``
fraction of the distance range shares one terminal pool, which collects the
sparse long-range interactions.
"""

import logging
from typing import Dict, Iterable, Sequence

import numpy as np
import pandas as pd

from ..utils.validation import validate_max_pool

logger = logging.getLogger(__name__)


def _pool_upper_bounds(cutoff: float) -> np.ndarray:
    """Inclusive upper bounds of the progressive pools up to the cutoff"""
    bounds = [0]
    size = 2
    while bounds[-1] < cutoff:
        bounds.append(bounds[-1] + size)
        size += 1
    bounds = np.asarray(bounds, dtype=float)
    bounds[-1] = min(bounds[-1], cutoff)
    return bounds


def assign_pools(distances: Sequence[float], max_pool: float = 0.7) -> np.ndarray:
    """
    Map each distance to a pool id

    Args:
        distances: Distances in bin units (any order, repeats allowed)
        max_pool: Fraction of the distance range after which all distances
            are pooled together

    Returns:
        Integer array of pool ids aligned with ``distances``. Ids are
        contiguous from 0 and increase with distance.
    """
    max_pool = validate_max_pool(max_pool)
    distances = np.asarray(distances, dtype=float)

    if distances.size == 0:
        return np.zeros(0, dtype=int)

    unique = np.unique(distances)
    if len(unique) < 2:
        logger.debug("Fewer than 2 distinct distances; using a single pool")
        return np.zeros(len(distances), dtype=int)

    low, high = unique[0], unique[-1]
    cutoff = low + max_pool * (high - low)

    bounds = _pool_upper_bounds(cutoff)
    # index of the first bound >= distance; past the last bound is terminal
    raw = np.searchsorted(bounds, distances, side="left")

    # renumber over the pools that actually hold data
    used = np.unique(raw)
    return np.searchsorted(used, raw)


def progressive_pools(distances: Iterable[float], max_pool: float = 0.7) -> Dict[float, int]:
    """Distance -> pool id mapping over the distinct distances supplied"""
    unique = np.unique(np.asarray(list(distances), dtype=float))
    pools = assign_pools(unique, max_pool=max_pool)
    return {distance: int(pool) for distance, pool in zip(unique.tolist(), pools)}


def split_pools(frame: pd.DataFrame, max_pool: float = 0.7) -> Dict[int, pd.DataFrame]:
    """
    Split a single-chromosome frame into distance pools

    Returns:
        Dictionary of pool id -> sub-frame (original row order kept)
    """
    pools = assign_pools(frame["D"].to_numpy(), max_pool=max_pool)
    return {
        int(pool): frame.loc[pools == pool]
        for pool in np.unique(pools)
    }


def pool_units(table, max_pool: float = 0.7) -> Dict[str, pd.DataFrame]:
    """
    Split an interaction table into ``chr:poolN`` units

    Returns:
        Dictionary of unit key -> sub-frame, chromosomes in sorted order and
        pools by increasing distance
    """
    units = {}
    for chrom, frame in table.split_by_chromosome().items():
        for pool, sub in split_pools(frame, max_pool=max_pool).items():
            units[f"{chrom}:pool{pool}"] = sub.reset_index(drop=True)
    return units
