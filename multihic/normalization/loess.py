"""
Local regression with automatic smoothing-parameter selection

The fitter is a tricube-weighted local polynomial smoother (loess). When no
span is supplied it is chosen on [0.01, 0.9] by a bounded Brent search that
minimises generalized cross-validation (GCV) or corrected AIC, both computed
from the residual sum of squares and the trace of the smoother operator.

The operator depends only on ``x`` and the span, so an ``AdaptiveLoess`` is
built once per predictor vector and reused for every response fitted against
it (every sample pair of a chromosome shares the same distances).
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

import numpy as np
from scipy.optimize import minimize_scalar

from ..exceptions import ConfigurationError, InsufficientDataError
from ..utils.validation import validate_span

logger = logging.getLogger(__name__)

SPAN_RANGE = (0.01, 0.9)
CRITERIA = ("gcv", "aicc")


def loess_criteria(rss: float, trace_hat: float, n: int) -> Dict[str, float]:
    """
    Selection criteria of a loess fit

    Args:
        rss: Residual sum of squares
        trace_hat: Trace of the smoother operator (effective degrees of freedom)
        n: Number of points

    Returns:
        Dictionary with ``sigma2``, ``gcv`` and ``aicc``
    """
    sigma2 = rss / (n - 1)

    if n - trace_hat > 0:
        gcv = n * sigma2 / (n - trace_hat) ** 2
    else:
        gcv = np.inf

    if n - trace_hat - 2 > 0:
        log_sigma2 = np.log(sigma2) if sigma2 > 0 else -np.inf
        aicc = log_sigma2 + 1 + 2 * (2 * (trace_hat + 1)) / (n - trace_hat - 2)
    else:
        aicc = np.inf

    return {"sigma2": sigma2, "gcv": gcv, "aicc": aicc}


@dataclass
class LoessFit:
    """Result of a single loess fit"""

    span: float
    fitted: np.ndarray
    residuals: np.ndarray
    trace_hat: float
    n: int
    degree: int
    criterion: str

    @property
    def rss(self) -> float:
        return float(self.residuals @ self.residuals)

    @property
    def sigma2(self) -> float:
        return loess_criteria(self.rss, self.trace_hat, self.n)["sigma2"]

    @property
    def gcv(self) -> float:
        return loess_criteria(self.rss, self.trace_hat, self.n)["gcv"]

    @property
    def aicc(self) -> float:
        return loess_criteria(self.rss, self.trace_hat, self.n)["aicc"]


class AdaptiveLoess:
    """
    Loess smoother over a fixed predictor

    Args:
        x: Predictor values
        degree: Local polynomial degree (0, 1 or 2)
        criterion: ``"gcv"`` or ``"aicc"`` for automatic span selection
        max_vertices: Above this many distinct x values the fit is computed
            at quantile vertices and linearly interpolated
        cache_size: Number of smoother operators kept in memory
    """

    def __init__(
        self,
        x: np.ndarray,
        degree: int = 1,
        criterion: str = "gcv",
        max_vertices: int = 200,
        cache_size: int = 4,
    ):
        if degree not in (0, 1, 2):
            raise ConfigurationError(f"degree must be 0, 1 or 2, got {degree}")
        if criterion not in CRITERIA:
            raise ConfigurationError(
                f"criterion must be one of {CRITERIA}, got {criterion!r}"
            )

        x = np.asarray(x, dtype=float).ravel()
        if x.size < 3:
            raise InsufficientDataError(
                f"not enough observations for loess ({x.size} < 3)"
            )
        if not np.all(np.isfinite(x)):
            raise InsufficientDataError("'x' contains missing or non-finite values")

        self.degree = degree
        self.criterion = criterion
        self.n = x.size
        self._cache: "OrderedDict[float, Tuple[np.ndarray, float]]" = OrderedDict()
        self._cache_size = cache_size

        support, inverse, counts = np.unique(x, return_inverse=True, return_counts=True)
        self._support = support
        self._inverse = inverse
        self._counts = counts.astype(float)

        if len(support) <= max_vertices:
            vertices = support
        else:
            vertices = np.unique(
                np.quantile(support, np.linspace(0.0, 1.0, max_vertices))
            )
        self._vertices = vertices

        # linear interpolation of each support value between two vertices
        n_vertices = len(vertices)
        if n_vertices > 1:
            left = np.clip(
                np.searchsorted(vertices, support, side="right") - 1, 0, n_vertices - 2
            )
            right = left + 1
            t = (support - vertices[left]) / (vertices[right] - vertices[left])
        else:
            left = right = np.zeros(len(support), dtype=int)
            t = np.zeros(len(support))
        self._left, self._right, self._t = left, right, np.clip(t, 0.0, 1.0)

        distances = np.abs(vertices[:, None] - support[None, :])
        order = np.argsort(distances, axis=1, kind="stable")
        self._distances = distances
        self._sorted_distances = np.take_along_axis(distances, order, axis=1)
        self._cum_counts = np.cumsum(self._counts[order], axis=1)

        # every neighbourhood spans at least degree + 1 distinct x values
        floor_index = min(degree + 1, len(support) - 1)
        floor = self._sorted_distances[:, floor_index]
        if floor_index < degree + 1:
            floor = floor * (1 + 1e-6) + 1e-12
        self._min_bandwidth = floor

    def _operator(self, span: float) -> Tuple[np.ndarray, float]:
        """Smoother weights at each vertex (per point of each support value) and trace"""
        key = round(float(span), 12)
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        n_vertices = len(self._vertices)
        q = int(np.clip(np.floor(self.n * span), 1, self.n))
        q_index = np.argmax(self._cum_counts >= q, axis=1)
        bandwidth = self._sorted_distances[np.arange(n_vertices), q_index]
        bandwidth = np.maximum(bandwidth, self._min_bandwidth)
        bandwidth = np.where(bandwidth > 0, bandwidth, 1.0)

        u = self._distances / bandwidth[:, None]
        tricube = np.where(u < 1, (1 - u ** 3) ** 3, 0.0)
        weights = tricube * self._counts[None, :]

        scaled = (self._support[None, :] - self._vertices[:, None]) / bandwidth[:, None]
        basis = np.stack([scaled ** k for k in range(self.degree + 1)], axis=-1)

        gram = np.einsum("vm,vmi,vmj->vij", weights, basis, basis)
        intercept_row = np.linalg.pinv(gram)[:, 0, :]
        operator = np.einsum("vi,vmi->vm", intercept_row, basis) * tricube

        columns = np.arange(len(self._support))
        own = (1 - self._t) * operator[self._left, columns] + self._t * operator[
            self._right, columns
        ]
        trace_hat = float(np.sum(self._counts * own))

        self._cache[key] = (operator, trace_hat)
        if len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return operator, trace_hat

    def _check_response(self, y: np.ndarray) -> np.ndarray:
        y = np.asarray(y, dtype=float)
        if y.shape[0] != self.n:
            raise ConfigurationError(
                f"'x' and 'y' have different lengths ({self.n} != {y.shape[0]})"
            )
        if not np.all(np.isfinite(y)):
            raise InsufficientDataError("'y' contains missing or non-finite values")
        return y

    def _smooth(self, y: np.ndarray, span: float) -> Tuple[np.ndarray, float]:
        operator, trace_hat = self._operator(span)
        if y.ndim == 1:
            sums = np.bincount(self._inverse, weights=y, minlength=len(self._support))
        else:
            sums = np.zeros((len(self._support), y.shape[1]))
            np.add.at(sums, self._inverse, y)
        at_vertices = operator @ sums
        t = self._t if y.ndim == 1 else self._t[:, None]
        at_support = (1 - t) * at_vertices[self._left] + t * at_vertices[self._right]
        return at_support[self._inverse], trace_hat

    def criteria(self, y: np.ndarray, span: float) -> Dict[str, float]:
        y = self._check_response(y)
        fitted, trace_hat = self._smooth(y, span)
        residuals = y - fitted
        return loess_criteria(float(residuals @ residuals), trace_hat, self.n)

    def select_span(self, y: np.ndarray) -> float:
        """Span in SPAN_RANGE minimising the selection criterion"""
        y = self._check_response(y)

        def objective(span: float) -> float:
            fitted, trace_hat = self._smooth(y, span)
            residuals = y - fitted
            return loess_criteria(float(residuals @ residuals), trace_hat, self.n)[
                self.criterion
            ]

        result = minimize_scalar(
            objective,
            bounds=SPAN_RANGE,
            method="bounded",
            options={"xatol": np.finfo(float).eps ** 0.25},
        )
        return float(result.x)

    def fit(self, y: np.ndarray, span: Optional[float] = None) -> LoessFit:
        """
        Fit the smoother to a response

        Args:
            y: Response values aligned with ``x``
            span: Fixed span in (0, 1]; selected automatically when None

        Returns:
            LoessFit
        """
        y = self._check_response(y)
        if y.ndim != 1:
            raise ConfigurationError("fit() expects a one-dimensional response")

        if span is None:
            span = self.select_span(y)
        else:
            span = validate_span(span)

        fitted, trace_hat = self._smooth(y, span)
        return LoessFit(
            span=span,
            fitted=fitted,
            residuals=y - fitted,
            trace_hat=trace_hat,
            n=self.n,
            degree=self.degree,
            criterion=self.criterion,
        )

    def smooth_columns(self, y: np.ndarray, span: float) -> np.ndarray:
        """Smooth every column of a (n x k) matrix with one fixed span"""
        span = validate_span(span)
        if span is None:
            raise ConfigurationError("smooth_columns() needs a fixed span")
        y = self._check_response(y)
        if y.ndim == 1:
            y = y[:, None]
        fitted, _ = self._smooth(y, span)
        return fitted


def loess_fit(
    x: np.ndarray,
    y: np.ndarray,
    degree: int = 1,
    span: Union[str, float, None] = "auto",
    criterion: str = "gcv",
) -> LoessFit:
    """
    Fit a loess curve of ``y`` against ``x``

    Args:
        x: Predictor values
        y: Response values
        degree: Local polynomial degree
        span: ``"auto"``/None for automatic selection or a value in (0, 1]
        criterion: ``"gcv"`` or ``"aicc"``

    Returns:
        LoessFit
    """
    span = validate_span(span)
    x = np.asarray(x, dtype=float).ravel()
    y = np.asarray(y, dtype=float).ravel()
    if x.size != y.size:
        raise ConfigurationError(
            f"'x' and 'y' have different lengths ({x.size} != {y.size})"
        )
    return AdaptiveLoess(x, degree=degree, criterion=criterion).fit(y, span=span)
