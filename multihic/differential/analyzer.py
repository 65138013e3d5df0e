"""
Differential interaction testing over chromosome/distance-pool units
"""

import time
import warnings
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..data.models import ComparisonResult, InteractionTable, SampleSet
from ..exceptions import AnalysisError, ConfigurationError, InsufficientDataError
from ..normalization.pooling import pool_units
from ..utils.logging import LoggerMixin, get_logger
from ..utils.parallel import run_parallel
from ..utils.validation import validate_max_pool
from .exact import exact_test
from .glm import (check_selector, estimate_disp,
                  estimate_glm_common_disp_deviance, glm_ql_fit, run_glm_test)
from .models import (Contrast, Selector, TestMethod, parse_test_method,
                     resolve_selector)
from .results import assemble_results, check_p_adjust

logger = get_logger(__name__)

LIBRARY_SIZE_MODES = ("equal", "pool")


def unit_library_sizes(counts: np.ndarray, mode: str = "equal") -> np.ndarray:
    """
    Library sizes of the samples of one unit

    ``"equal"`` gives every sample the mean column total so shifts shared by
    a whole pool remain visible; ``"pool"`` uses the column totals.
    """
    totals = counts.sum(axis=0)
    if mode == "equal":
        return np.full(counts.shape[1], totals.mean())
    if np.any(totals <= 0):
        raise InsufficientDataError("A sample has no counts in this unit")
    return totals


def _unit_counts(frame: pd.DataFrame, samples: Sequence[str]) -> np.ndarray:
    counts = frame[list(samples)].to_numpy(dtype=float)
    if len(counts) < 2:
        raise InsufficientDataError(
            f"Only {len(counts)} interaction(s) in this unit; at least 2 are needed"
        )
    if not np.any(counts > 0):
        raise InsufficientDataError("Every count in this unit is zero")
    return counts


def _unit_frame(frame: pd.DataFrame, log_fc, log_cpm, p_value) -> pd.DataFrame:
    result = frame[["chr", "region1", "region2", "D"]].copy()
    result["logFC"] = log_fc
    result["logCPM"] = log_cpm
    result["p_value"] = p_value
    return result


def _exact_unit(
    frame: pd.DataFrame,
    samples: Sequence[str],
    groups: np.ndarray,
    replicates: bool,
    library_size: str,
) -> pd.DataFrame:
    counts = _unit_counts(frame, samples)
    lib_size = unit_library_sizes(counts, library_size)

    if replicates:
        design = np.column_stack([np.ones(len(groups)), groups == groups.max()]).astype(float)
        dispersion = estimate_disp(counts, design, lib_size).tagwise
    else:
        intercept = np.ones((len(groups), 1))
        dispersion = estimate_glm_common_disp_deviance(counts, intercept, lib_size, robust=True)

    result = exact_test(counts, groups, dispersion, lib_size)
    return _unit_frame(frame, result.log_fc, result.log_cpm, result.p_value)


def _glm_unit(
    frame: pd.DataFrame,
    samples: Sequence[str],
    design: np.ndarray,
    selector: Selector,
    method: TestMethod,
    library_size: str,
) -> pd.DataFrame:
    counts = _unit_counts(frame, samples)
    lib_size = unit_library_sizes(counts, library_size)

    dispersion = estimate_disp(counts, design, lib_size)
    fit = glm_ql_fit(counts, design, lib_size, dispersion.trended, abundance=dispersion.ave_log_cpm)
    result = run_glm_test(fit, selector, method)
    return _unit_frame(frame, result.log_fc, result.log_cpm, result.p_value)


def _check_inputs(table: InteractionTable, samples: SampleSet, library_size: str, p_adjust: str, max_pool: float) -> None:
    missing = [name for name in samples.names if name not in table.samples]
    if missing:
        raise ConfigurationError(f"Samples not found in the interaction table: {missing}")
    if library_size not in LIBRARY_SIZE_MODES:
        raise ConfigurationError(
            f"library_size must be one of {LIBRARY_SIZE_MODES}, got {library_size!r}"
        )
    check_p_adjust(p_adjust)
    validate_max_pool(max_pool)

    if not table.is_normalized:
        message = "You should normalize the data before testing for differences"
        warnings.warn(message, UserWarning, stacklevel=3)
        logger.warning(message)


def check_design(design: Union[np.ndarray, pd.DataFrame], n_samples: int) -> np.ndarray:
    """Validate a design matrix against the number of samples"""
    matrix = np.asarray(design, dtype=float)
    if matrix.ndim == 1:
        matrix = matrix[:, None]
    if matrix.ndim != 2:
        raise ConfigurationError("The design must be a two-dimensional matrix")
    if matrix.shape[0] != n_samples:
        raise ConfigurationError(
            f"The design has {matrix.shape[0]} rows but there are {n_samples} samples"
        )
    if matrix.shape[1] >= n_samples:
        raise ConfigurationError(
            f"The design has {matrix.shape[1]} columns for {n_samples} samples, "
            "leaving no residual degrees of freedom for dispersion estimation"
        )
    if not np.all(np.isfinite(matrix)):
        raise ConfigurationError("The design contains missing or non-finite values")
    if np.linalg.matrix_rank(matrix) < matrix.shape[1]:
        raise ConfigurationError("The design matrix is not of full column rank")
    return matrix


def _finish(outputs, failures, p_adjust: str, method: str, label: str) -> ComparisonResult:
    if not outputs:
        raise AnalysisError(f"{label} failed for every unit", failures)
    if failures:
        logger.warning(
            f"{label}: {len(failures)} of {len(outputs) + len(failures)} units failed"
        )
    table = assemble_results(outputs, p_adjust)
    return ComparisonResult(
        table=table, method=method, p_adjust_method=p_adjust, failures=tuple(failures)
    )


def hic_exact_test(
    table: InteractionTable,
    samples: SampleSet,
    p_adjust: str = "fdr",
    max_pool: float = 0.7,
    parallel: bool = False,
    n_jobs: Optional[int] = None,
    library_size: str = "equal",
) -> ComparisonResult:
    """
    Exact test between two groups on every chromosome/distance pool

    Args:
        table: Interaction table, preferably normalized
        samples: Samples with exactly two groups
        p_adjust: Multiple testing correction method
        max_pool: Fraction of the distance range after which distances are
            pooled together
        parallel: Test units in parallel
        n_jobs: Number of workers when ``parallel`` is set
        library_size: ``"equal"`` or ``"pool"`` library sizes per unit

    Returns:
        ComparisonResult
    """
    if samples.n_groups != 2:
        raise ConfigurationError(
            f"The exact test compares exactly 2 groups, got {samples.n_groups}; "
            "use hic_glm() for other comparisons or covariates"
        )
    _check_inputs(table, samples, library_size, p_adjust, max_pool)

    units = pool_units(table, max_pool)
    logger.info(
        f"Exact test over {len(units)} units "
        f"({'with' if samples.has_replicates else 'without'} replicates)"
    )

    outputs, failures = run_parallel(
        _exact_unit,
        units,
        parallel=parallel,
        n_jobs=n_jobs,
        desc="exact test",
        samples=samples.names,
        groups=samples.group_codes(),
        replicates=samples.has_replicates,
        library_size=library_size,
    )
    return _finish(outputs, failures, p_adjust, "exactTest", "Exact test")


def hic_glm(
    table: InteractionTable,
    samples: SampleSet,
    design: Union[str, np.ndarray, pd.DataFrame] = "~ group",
    coef: Optional[int] = None,
    contrast: Optional[Sequence[float]] = None,
    method: Union[str, TestMethod] = "QLFTest",
    M: float = 1.0,
    p_adjust: str = "fdr",
    max_pool: float = 0.7,
    parallel: bool = False,
    n_jobs: Optional[int] = None,
    library_size: str = "equal",
) -> ComparisonResult:
    """
    Negative-binomial GLM test on every chromosome/distance pool

    Args:
        table: Interaction table, preferably normalized
        samples: Samples with group labels and covariates
        design: Design matrix (samples x coefficients) or a patsy formula
            evaluated on the sample metadata
        coef: 0-based index of the design column to test
        contrast: Contrast vector over the design columns
        method: ``"QLFTest"``, ``"LRTest"`` or ``"Treat"`` (or a test variant)
        M: Log2 fold-change floor for ``"Treat"``
        p_adjust: Multiple testing correction method
        max_pool: Fraction of the distance range after which distances are
            pooled together
        parallel: Test units in parallel
        n_jobs: Number of workers when ``parallel`` is set
        library_size: ``"equal"`` or ``"pool"`` library sizes per unit

    Returns:
        ComparisonResult
    """
    selector = resolve_selector(coef=coef, contrast=contrast)
    test_method = parse_test_method(method, lfc=M)

    if isinstance(design, str):
        design = samples.design(design)
    columns = list(design.columns) if isinstance(design, pd.DataFrame) else None
    design_matrix = check_design(design, samples.n_samples)
    check_selector(design_matrix, selector)
    _check_inputs(table, samples, library_size, p_adjust, max_pool)

    if columns is not None:
        logger.info(f"Testing {selector.describe(columns)} with {test_method.name}")

    units = pool_units(table, max_pool)
    logger.info(f"GLM {test_method.name} over {len(units)} units")

    outputs, failures = run_parallel(
        _glm_unit,
        units,
        parallel=parallel,
        n_jobs=n_jobs,
        desc=test_method.name,
        samples=samples.names,
        design=design_matrix,
        selector=selector,
        method=test_method,
        library_size=library_size,
    )
    return _finish(outputs, failures, p_adjust, test_method.name, "GLM test")


class DifferentialAnalyzer(LoggerMixin):
    """Run the configured differential test on an interaction table"""

    def __init__(self, config):
        self.config = config
        self.diff_params = config.differential
        self.execution_time: Optional[float] = None

    def run(self, table: InteractionTable, samples: Optional[SampleSet] = None) -> ComparisonResult:
        """
        Test for differential interactions

        Args:
            table: Interaction table
            samples: Sample set; built from the configuration when None

        Returns:
            ComparisonResult
        """
        from ..config import SampleConfig

        if samples is None:
            samples = SampleConfig.from_dict(self.config.samples).to_sample_set()

        params = self.diff_params
        common: Dict[str, Any] = {
            "p_adjust": params.get("p_adjust", "fdr"),
            "max_pool": params.get("max_pool", 0.7),
            "parallel": self.config.parallel,
            "n_jobs": self.config.n_threads,
            "library_size": params.get("library_size", "equal"),
        }

        start_time = time.time()
        test = params.get("test", "exact")
        self.logger.info(f"Running {test} differential analysis on {len(table)} interactions")
        if test == "exact":
            result = hic_exact_test(table, samples, **common)
        elif test == "glm":
            contrast = params.get("contrast")
            result = hic_glm(
                table,
                samples,
                design=params.get("design", "~ group"),
                coef=params.get("coef"),
                contrast=Contrast(contrast) if contrast is not None else None,
                method=params.get("method", "QLFTest"),
                M=params.get("lfc", 1.0),
                **common,
            )
        else:
            raise ConfigurationError(f"differential.test must be 'exact' or 'glm', got {test!r}")

        self.execution_time = time.time() - start_time

        stats = result.summary(
            params.get("fdr_threshold", 0.05), params.get("logfc_threshold", 0.0)
        )
        self.logger.info(
            f"{result.method}: {stats['n_significant']} of {stats['n_tested']} "
            f"interactions significant ({stats['n_up']} up, {stats['n_down']} down)"
        )
        return result
