"""
Joint cyclic loess normalization of Hi-C interaction frequencies

Every pair of samples of a chromosome is brought onto a common scale by
fitting a loess curve of their log2 difference against genomic distance and
splitting the correction evenly between the two samples. The full sweep over
all pairs is repeated for a fixed number of rounds.
"""

import logging
import warnings
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd

from ..data.models import InteractionTable, NormalizationState
from ..exceptions import AlreadyNormalizedError, AnalysisError
from ..utils.logging import log_execution_time, log_fit
from ..utils.parallel import run_parallel
from ..utils.validation import validate_iterations, validate_span
from .loess import AdaptiveLoess

logger = logging.getLogger(__name__)

DEFAULT_ITERATIONS = 3


def check_normalizer_input(
    table: InteractionTable, iterations: int, span: Union[str, float, None]
) -> Optional[float]:
    """Shared preconditions of the normalizers; returns the validated span"""
    if table.is_normalized:
        raise AlreadyNormalizedError()

    span = validate_span(span)
    iterations = validate_iterations(iterations)
    if iterations != DEFAULT_ITERATIONS:
        message = (
            f"Number of iterations is {iterations}; "
            f"{DEFAULT_ITERATIONS} is usually sufficient for convergence"
        )
        warnings.warn(message, UserWarning, stacklevel=3)
        logger.warning(message)

    return span


def back_transform(log_values: np.ndarray, original: np.ndarray) -> np.ndarray:
    """
    Undo the log2(x + 1) transform

    Zeros of the input stay zero, negative values are clamped to zero and
    non-finite values are replaced by zero.
    """
    values = np.power(2.0, log_values) - 1
    values[original == 0] = 0.0
    values[values < 0] = 0.0
    values[~np.isfinite(values)] = 0.0
    return values


def assemble_normalized(
    table: InteractionTable,
    outputs: Dict[str, pd.DataFrame],
    failures: List,
    label: str,
) -> InteractionTable:
    """Join unit outputs into a sorted, normalized table"""
    if not outputs:
        raise AnalysisError(f"{label} failed for every unit", failures)

    frame = pd.concat([outputs[key] for key in sorted(outputs)], ignore_index=True)
    frame = frame.sort_values(["chr", "region1", "region2"], kind="mergesort")

    if failures:
        logger.warning(
            f"{label}: {len(failures)} of {len(outputs) + len(failures)} units failed"
        )

    return table.with_frame(
        frame.reset_index(drop=True),
        state=NormalizationState.NORMALIZED,
        failures=tuple(table.failures) + tuple(failures),
    )


def _cloess_chromosome(
    frame: pd.DataFrame,
    samples: List[str],
    iterations: int,
    span: Optional[float],
    tolerance: Optional[float],
    verbose: bool,
) -> pd.DataFrame:
    """Normalize the samples of one chromosome against each other"""
    chrom = frame["chr"].iloc[0]
    original = frame[samples].to_numpy(dtype=float)
    log_values = np.log2(original + 1)
    smoother = AdaptiveLoess(frame["D"].to_numpy(dtype=float))
    n_samples = len(samples)

    for round_index in range(iterations):
        largest = 0.0
        for j in range(n_samples - 1):
            for k in range(j + 1, n_samples):
                fit = smoother.fit(log_values[:, k] - log_values[:, j], span=span)
                log_fit(
                    logger,
                    f"{chrom} round {round_index + 1} {samples[j]} vs {samples[k]}",
                    fit,
                    verbose,
                )
                log_values[:, j] += fit.fitted / 2
                log_values[:, k] -= fit.fitted / 2
                largest = max(largest, float(np.max(np.abs(fit.fitted))))

        if tolerance is not None and largest < tolerance:
            logger.debug(
                f"{chrom}: converged after {round_index + 1} rounds "
                f"(max correction {largest:.3g})"
            )
            break

    result = frame.copy()
    result[samples] = back_transform(log_values, original)
    return result


@log_execution_time
def cyclic_loess(
    table: InteractionTable,
    iterations: int = DEFAULT_ITERATIONS,
    span: Union[str, float, None] = "auto",
    parallel: bool = False,
    n_jobs: Optional[int] = None,
    tolerance: Optional[float] = None,
    verbose: bool = False,
) -> InteractionTable:
    """
    Jointly normalize every sample of an interaction table

    Args:
        table: Raw interaction table
        iterations: Number of sweeps over all sample pairs
        span: Loess span, or ``"auto"`` to select it by GCV for every fit
        parallel: Normalize chromosomes in parallel
        n_jobs: Number of workers when ``parallel`` is set
        tolerance: Stop early once the largest correction of a sweep is
            below this value (log2 scale); sweeps always run ``iterations``
            times when None
        verbose: Log span, GCV and AICc of every fit at info level

    Returns:
        Normalized InteractionTable sorted by chromosome and regions
    """
    span = check_normalizer_input(table, iterations, span)

    units = table.split_by_chromosome()
    logger.info(
        f"Cyclic loess normalization of {len(table.samples)} samples "
        f"over {len(units)} chromosomes"
    )

    outputs, failures = run_parallel(
        _cloess_chromosome,
        units,
        parallel=parallel,
        n_jobs=n_jobs,
        progress=verbose,
        desc="cyclic loess",
        samples=table.samples,
        iterations=int(iterations),
        span=span,
        tolerance=tolerance,
        verbose=verbose,
    )

    return assemble_normalized(table, outputs, failures, "Cyclic loess")
