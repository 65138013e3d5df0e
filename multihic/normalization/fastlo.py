"""
Fast loess normalization over distance pools

Instead of visiting every pair of samples, each sample is regressed against
the row mean of all samples, so a round costs one fit per sample. Fits are
done separately for every chromosome and distance pool.
"""

import logging
from typing import List, Optional, Union

import numpy as np
import pandas as pd

from ..data.models import InteractionTable
from ..utils.logging import log_execution_time, log_fit
from ..utils.parallel import run_parallel
from ..utils.validation import validate_max_pool
from .cyclic import (DEFAULT_ITERATIONS, assemble_normalized, back_transform,
                     check_normalizer_input)
from .loess import AdaptiveLoess
from .pooling import pool_units

logger = logging.getLogger(__name__)


def _fastlo_unit(
    frame: pd.DataFrame,
    samples: List[str],
    iterations: int,
    span: Optional[float],
    tolerance: Optional[float],
    verbose: bool,
) -> pd.DataFrame:
    """Normalize the samples of one chromosome/pool unit against their mean"""
    unit = f"{frame['chr'].iloc[0]} D{int(frame['D'].min())}-{int(frame['D'].max())}"
    original = frame[samples].to_numpy(dtype=float)
    log_values = np.log2(original + 1)

    for round_index in range(iterations):
        average = log_values.mean(axis=1)
        smoother = AdaptiveLoess(average)
        largest = 0.0
        for j, sample in enumerate(samples):
            fit = smoother.fit(log_values[:, j] - average, span=span)
            log_fit(logger, f"{unit} round {round_index + 1} {sample}", fit, verbose)
            log_values[:, j] -= fit.fitted
            largest = max(largest, float(np.max(np.abs(fit.fitted))))

        if tolerance is not None and largest < tolerance:
            break

    result = frame.copy()
    result[samples] = back_transform(log_values, original)
    return result


@log_execution_time
def fastlo(
    table: InteractionTable,
    iterations: int = DEFAULT_ITERATIONS,
    span: Union[str, float, None] = 0.7,
    max_pool: float = 0.7,
    parallel: bool = False,
    n_jobs: Optional[int] = None,
    tolerance: Optional[float] = None,
    verbose: bool = False,
) -> InteractionTable:
    """
    Normalize an interaction table with fast loess

    Args:
        table: Raw interaction table
        iterations: Number of rounds per unit
        span: Loess span, or ``"auto"`` for automatic selection
        max_pool: Fraction of the distance range after which distances are
            pooled together
        parallel: Process units in parallel
        n_jobs: Number of workers when ``parallel`` is set
        tolerance: Early-stop threshold on the largest correction of a round
        verbose: Log span, GCV and AICc of every fit at info level

    Returns:
        Normalized InteractionTable sorted by chromosome and regions
    """
    span = check_normalizer_input(table, iterations, span)
    max_pool = validate_max_pool(max_pool)

    units = pool_units(table, max_pool)
    logger.info(
        f"Fastlo normalization of {len(table.samples)} samples "
        f"over {len(units)} chromosome/pool units"
    )

    outputs, failures = run_parallel(
        _fastlo_unit,
        units,
        parallel=parallel,
        n_jobs=n_jobs,
        progress=verbose,
        desc="fastlo",
        samples=table.samples,
        iterations=int(iterations),
        span=span,
        tolerance=tolerance,
        verbose=verbose,
    )

    return assemble_normalized(table, outputs, failures, "Fastlo")
