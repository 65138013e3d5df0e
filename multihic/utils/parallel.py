"""
Parallel dispatch of independent units of work

A unit is one chromosome (normalization) or one chromosome/distance-pool pair
(dispersion and GLM fitting). Units never share state, so results are
identical whatever the number of workers.
"""

import logging
import multiprocessing as mp
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np
from joblib import Parallel, delayed
from tqdm import tqdm

from ..data.models import UnitFailure
from ..exceptions import InsufficientDataError
from .logging import log_unit_failures

logger = logging.getLogger(__name__)

# Errors that fail a single unit; anything else aborts the whole run
UNIT_ERRORS = (InsufficientDataError, np.linalg.LinAlgError, FloatingPointError)


def _run_unit(
    func: Callable, key: str, payload: Any, kwargs: Dict[str, Any]
) -> Tuple[str, Any, Optional[str]]:
    try:
        return key, func(payload, **kwargs), None
    except UNIT_ERRORS as e:
        return key, None, f"{type(e).__name__}: {e}"


def run_parallel(
    func: Callable,
    units: Mapping[str, Any],
    parallel: bool = False,
    n_jobs: Optional[int] = None,
    progress: bool = False,
    desc: Optional[str] = None,
    **kwargs,
) -> Tuple[Dict[str, Any], List[UnitFailure]]:
    """
    Apply ``func`` to every unit, collecting per-unit failures

    Args:
        func: Callable taking a unit payload as first argument
        units: Ordered mapping of unit key -> payload
        parallel: Run units in a joblib worker pool
        n_jobs: Number of workers (defaults to min(units, CPUs))
        progress: Show a progress bar for sequential runs
        desc: Progress bar label
        **kwargs: Extra keyword arguments passed to ``func``

    Returns:
        Tuple of (outputs keyed like ``units``, list of UnitFailure)
    """
    keys = list(units.keys())

    if parallel and len(keys) > 1:
        if n_jobs is None:
            n_jobs = min(len(keys), mp.cpu_count())
        logger.debug(f"Dispatching {len(keys)} units to {n_jobs} workers")
        outcomes = Parallel(n_jobs=n_jobs)(
            delayed(_run_unit)(func, key, units[key], kwargs) for key in keys
        )
    else:
        outcomes = [
            _run_unit(func, key, units[key], kwargs)
            for key in tqdm(keys, desc=desc, disable=not progress)
        ]

    outputs = {}
    failures = []
    for key, value, error in outcomes:
        if error is None:
            outputs[key] = value
        else:
            failures.append(UnitFailure(unit=key, error=error))

    log_unit_failures(logger, failures, desc or func.__name__)

    return outputs, failures
