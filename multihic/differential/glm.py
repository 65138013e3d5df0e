"""
Negative-binomial generalized linear models for interaction counts

Counts are arranged as (interactions x samples) matrices. All fits share one
design matrix and are vectorised over interactions; coefficients are on the
natural log scale. Dispersion follows the quadratic mean-variance relation
``var = mu + phi * mu^2``.

The estimators follow the empirical Bayes negative-binomial framework of
McCarthy, Chen and Smyth (2012) and the quasi-likelihood tests of Lund et
al. (2012).
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np
from scipy import optimize, special, stats
from scipy.interpolate import CubicSpline

from ..exceptions import ConfigurationError, InsufficientDataError
from ..normalization.loess import AdaptiveLoess
from .models import Coefficient, LRTest, QLFTest, Selector, TestMethod, Treat

logger = logging.getLogger(__name__)

LOG_MILLION = np.log(1e6)
GRID_POINTS = np.linspace(-10, 10, 21)
GRID_DISPERSIONS = 0.1 * 2 ** GRID_POINTS
MIN_MU = 1e-10
MIN_LOGDET_VALUE = 1e-10


def _as_matrix(values, shape: Tuple[int, int]) -> np.ndarray:
    """Broadcast a scalar, per-row vector or full matrix to ``shape``"""
    values = np.asarray(values, dtype=float)
    if values.ndim == 1:
        values = values[:, None]
    return np.broadcast_to(values, shape).astype(float)


def _offset_matrix(offset, shape: Tuple[int, int]) -> np.ndarray:
    """Offsets are per sample (columns) unless a full matrix is given"""
    offset = np.asarray(offset, dtype=float)
    if offset.ndim == 1:
        offset = offset[None, :]
    return np.broadcast_to(offset, shape).astype(float)


def nb_unit_deviance(y, mu, dispersion) -> np.ndarray:
    """
    Elementwise negative-binomial unit deviance

    Falls back to the Poisson deviance where the dispersion is negligible.
    """
    y = np.asarray(y, dtype=float)
    mu = np.maximum(np.asarray(mu, dtype=float), MIN_MU)
    phi = np.broadcast_to(np.asarray(dispersion, dtype=float), np.broadcast(y, mu).shape)

    poisson = 2 * (special.xlogy(y, y / mu) - (y - mu))

    safe_phi = np.where(phi > 1e-8, phi, 1.0)
    nb = 2 * (
        special.xlogy(y, y / mu)
        - (y + 1 / safe_phi) * (np.log1p(safe_phi * y) - np.log1p(safe_phi * mu))
    )
    deviance = np.where(phi > 1e-8, nb, poisson)
    return np.maximum(deviance, 0.0)


def nb_log_likelihood(y, mu, dispersion) -> np.ndarray:
    """Elementwise negative-binomial log-likelihood (Poisson at zero dispersion)"""
    y = np.asarray(y, dtype=float)
    mu = np.maximum(np.asarray(mu, dtype=float), MIN_MU)
    phi = np.broadcast_to(np.asarray(dispersion, dtype=float), np.broadcast(y, mu).shape)

    poisson = special.xlogy(y, mu) - mu - special.gammaln(y + 1)

    safe_phi = np.where(phi > 1e-8, phi, 1.0)
    size = 1 / safe_phi
    nb = (
        special.gammaln(y + size)
        - special.gammaln(size)
        - special.gammaln(y + 1)
        - size * np.log1p(safe_phi * mu)
        + special.xlogy(y, safe_phi * mu / (1 + safe_phi * mu))
    )
    return np.where(phi > 1e-8, nb, poisson)


@dataclass
class NBGLMFit:
    """Vectorised negative-binomial GLM fit"""

    coefficients: np.ndarray
    fitted: np.ndarray
    deviance: np.ndarray
    df_residual: np.ndarray
    dispersion: np.ndarray
    iterations: int
    converged: np.ndarray


def _evaluate(coefficients, design, offset, counts, phi):
    eta = np.clip(coefficients @ design.T + offset, -700, 700)
    mu = np.exp(eta)
    return eta, mu, nb_unit_deviance(counts, mu, phi).sum(axis=1)


def _solve_weighted(design: np.ndarray, weights: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    """Solve (X' W X) b = X' W rhs for every row of weights/rhs"""
    n_coefs = design.shape[1]
    xtwx = np.einsum("si,gs,sj->gij", design, weights, design)
    xtwx += np.eye(n_coefs)[None, :, :] * 1e-10
    xtwz = np.einsum("si,gs->gi", design, weights * rhs)
    return np.linalg.solve(xtwx, xtwz[..., None])[..., 0]


def _residual_df(zero: np.ndarray, design: np.ndarray) -> np.ndarray:
    """
    Residual degrees of freedom per row, discounting exact zero fits

    Observations with a zero count and a zero fitted value carry no
    information; they are removed along with the coefficients they alone
    determine.
    """
    n_rows, n_samples = zero.shape
    df = np.full(n_rows, float(n_samples - np.linalg.matrix_rank(design)))
    some_zero = zero.any(axis=1)
    if not some_zero.any():
        return df

    patterns, inverse = np.unique(zero[some_zero], axis=0, return_inverse=True)
    pattern_df = np.empty(len(patterns))
    for index, pattern in enumerate(patterns):
        keep = ~pattern
        if keep.sum() == 0:
            pattern_df[index] = 0.0
        else:
            pattern_df[index] = keep.sum() - np.linalg.matrix_rank(design[keep])
    df[some_zero] = pattern_df[np.ravel(inverse)]
    return df


def fit_nb_glm(
    counts: np.ndarray,
    design: np.ndarray,
    offset,
    dispersion,
    start: Optional[np.ndarray] = None,
    maxit: int = 25,
    tol: float = 1e-6,
) -> NBGLMFit:
    """
    Fit a negative-binomial GLM to every row by iteratively reweighted least squares

    Args:
        counts: (rows x samples) counts
        design: (samples x coefficients) design matrix
        offset: Log-scale offsets, per sample or (rows x samples)
        dispersion: Scalar or per-row dispersion
        start: Optional starting coefficients (rows x coefficients)
        maxit: Maximum number of iterations
        tol: Relative deviance change regarded as converged

    Returns:
        NBGLMFit
    """
    counts = np.asarray(counts, dtype=float)
    design = np.asarray(design, dtype=float)
    n_rows, n_samples = counts.shape
    offset = _offset_matrix(offset, counts.shape)
    phi = _as_matrix(dispersion, counts.shape)

    if start is None:
        working = np.log(counts + 0.5) - offset
        beta = working @ np.linalg.pinv(design).T
    else:
        beta = np.array(start, dtype=float, copy=True)

    eta, mu, deviance = _evaluate(beta, design, offset, counts, phi)
    converged = np.zeros(n_rows, dtype=bool)
    iteration = 0

    for iteration in range(1, maxit + 1):
        active = np.flatnonzero(~converged)
        if len(active) == 0:
            break

        y, off, disp = counts[active], offset[active], phi[active]
        mu_safe = np.maximum(mu[active], MIN_MU)
        weights = mu_safe / (1 + disp * mu_safe)
        working = eta[active] - off + (y - mu_safe) / mu_safe
        proposal = _solve_weighted(design, weights, working)

        # step halving where the deviance increases
        current = beta[active]
        old_deviance = deviance[active]
        step = proposal - current
        new_beta = proposal
        for _ in range(10):
            new_eta, new_mu, new_deviance = _evaluate(new_beta, design, off, y, disp)
            worse = new_deviance > old_deviance * (1 + 1e-10) + 1e-10
            if not worse.any():
                break
            step = np.where(worse[:, None], step / 2, step)
            new_beta = current + step
        else:
            new_eta, new_mu, new_deviance = _evaluate(new_beta, design, off, y, disp)

        beta[active] = new_beta
        eta[active] = new_eta
        mu[active] = new_mu
        deviance[active] = new_deviance
        done = np.abs(old_deviance - new_deviance) < tol * (np.abs(new_deviance) + 0.1)
        converged[active[done]] = True

    if not converged.all():
        logger.debug(f"{(~converged).sum()} of {n_rows} GLM fits did not converge")

    zero = (counts < 1e-4) & (mu < 1e-4)
    return NBGLMFit(
        coefficients=beta,
        fitted=mu,
        deviance=deviance,
        df_residual=_residual_df(zero, design),
        dispersion=phi[:, 0],
        iterations=iteration,
        converged=converged,
    )


def mglm_one_group(counts: np.ndarray, offset, dispersion=0.0, maxit: int = 50, tol: float = 1e-10) -> np.ndarray:
    """
    Intercept-only negative-binomial fit per row by Newton-Raphson

    Returns:
        Log-scale intercepts; ``-inf`` for rows with no counts
    """
    counts = np.asarray(counts, dtype=float)
    offset = _offset_matrix(offset, counts.shape)
    phi = _as_matrix(dispersion, counts.shape)

    totals = counts.sum(axis=1)
    zero = totals <= 0
    beta = np.full(counts.shape[0], -np.inf)
    if zero.all():
        return beta

    y = counts[~zero]
    off = offset[~zero]
    disp = phi[~zero]
    b = np.log(totals[~zero] / np.exp(off).sum(axis=1))

    for _ in range(maxit):
        mu = np.exp(b[:, None] + off)
        denominator = 1 + disp * mu
        score = ((y - mu) / denominator).sum(axis=1)
        information = (mu / denominator).sum(axis=1)
        step = score / information
        b = b + step
        if np.all(np.abs(step) < tol):
            break

    beta[~zero] = b
    return beta


def add_prior_count(counts: np.ndarray, lib_size: np.ndarray, prior_count: float = 2.0) -> Tuple[np.ndarray, np.ndarray]:
    """
    Add a library-size scaled prior count

    Returns:
        Tuple of (augmented counts, log augmented library sizes)
    """
    lib_size = np.asarray(lib_size, dtype=float)
    scaled = prior_count * lib_size / lib_size.mean()
    return np.asarray(counts, dtype=float) + scaled[None, :], np.log(lib_size + 2 * scaled)


def ave_log_cpm(counts: np.ndarray, lib_size: np.ndarray, prior_count: float = 2.0, dispersion=0.05) -> np.ndarray:
    """Average log2 counts per million of every row"""
    augmented, offset = add_prior_count(counts, lib_size, prior_count)
    abundance = mglm_one_group(augmented, offset, dispersion)
    return (abundance + LOG_MILLION) / np.log(2)


def _logdet_information(design: np.ndarray, weights: np.ndarray) -> np.ndarray:
    xtwx = np.einsum("si,gs,sj->gij", design, weights, design)
    eigenvalues = np.linalg.eigvalsh(xtwx)
    return np.log(np.maximum(eigenvalues, MIN_LOGDET_VALUE)).sum(axis=1)


def adjusted_profile_likelihood(
    counts: np.ndarray,
    design: np.ndarray,
    offset,
    dispersion,
    start: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Cox-Reid adjusted profile log-likelihood of every row at a dispersion

    Returns:
        Tuple of (likelihood per row, fitted coefficients)
    """
    fit = fit_nb_glm(counts, design, offset, dispersion, start=start)
    phi = _as_matrix(dispersion, counts.shape)
    loglik = nb_log_likelihood(counts, fit.fitted, phi).sum(axis=1)
    weights = fit.fitted / (1 + phi * fit.fitted)
    return loglik - 0.5 * _logdet_information(design, weights), fit.coefficients


def _quadratic_roots(a, b, c):
    """Real roots of a*s^2 + b*s + c = 0 (nan where absent)"""
    with np.errstate(divide="ignore", invalid="ignore"):
        discriminant = b ** 2 - 4 * a * c
        root = np.sqrt(np.where(discriminant >= 0, discriminant, np.nan))
        linear = np.abs(a) < 1e-12
        first = np.where(linear, -c / b, (-b + root) / (2 * a))
        second = np.where(linear, np.nan, (-b - root) / (2 * a))
    return first, second


def maximize_interpolant(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """
    Location of the maximum of a natural cubic spline through each row

    Args:
        x: Increasing grid of length k
        y: (rows x k) values on the grid

    Returns:
        Maximising x value of every row
    """
    x = np.asarray(x, dtype=float)
    y = np.atleast_2d(np.asarray(y, dtype=float))
    n_rows, n_points = y.shape
    rows = np.arange(n_rows)

    best_index = np.argmax(y, axis=1)
    best_x = x[best_index].copy()
    best_y = y[rows, best_index].copy()

    coefficients = CubicSpline(x, y.T, bc_type="natural").c

    for shift in (-1, 0):
        interval = best_index + shift
        valid = (interval >= 0) & (interval <= n_points - 2)
        interval = np.clip(interval, 0, n_points - 2)
        a, b, c, d = (coefficients[k, interval, rows] for k in range(4))
        width = x[interval + 1] - x[interval]
        for root in _quadratic_roots(3 * a, 2 * b, c):
            ok = valid & np.isfinite(root) & (root > 0) & (root < width)
            with np.errstate(invalid="ignore"):
                value = ((a * root + b) * root + c) * root + d
            better = ok & (value > best_y)
            best_x = np.where(better, x[interval] + root, best_x)
            best_y = np.where(better, value, best_y)

    return best_x


@dataclass
class DispersionEstimate:
    """Common, trended and tagwise dispersions of one unit"""

    common: float
    trended: np.ndarray
    tagwise: np.ndarray
    ave_log_cpm: np.ndarray
    span: Optional[float] = None
    prior_df: float = 10.0
    prior_n: float = np.inf


def _wleb_span(n_rows: int) -> float:
    if n_rows <= 50:
        return 1.0
    return 0.25 + 0.75 * (50 / n_rows) ** 0.5


def estimate_disp(
    counts: np.ndarray,
    design: np.ndarray,
    lib_size: np.ndarray,
    prior_df: float = 10.0,
    min_row_sum: float = 5.0,
    span: Optional[float] = None,
) -> DispersionEstimate:
    """
    Estimate common, trended and tagwise dispersions

    The Cox-Reid adjusted profile likelihood of every row is evaluated on a
    grid of dispersions. Summing it over rows gives the common dispersion,
    smoothing it against abundance gives the trend, and shrinking each row's
    likelihood toward the trend with ``prior_df`` prior degrees of freedom
    gives the tagwise dispersions.

    Args:
        counts: (rows x samples) counts
        design: (samples x coefficients) design matrix
        lib_size: Library size of every sample
        prior_df: Prior degrees of freedom for tagwise shrinkage
        min_row_sum: Rows with smaller totals do not inform the estimates
        span: Span of the abundance trend (chosen from the row count if None)

    Returns:
        DispersionEstimate
    """
    counts = np.asarray(counts, dtype=float)
    design = np.asarray(design, dtype=float)
    lib_size = np.asarray(lib_size, dtype=float)
    n_rows, n_samples = counts.shape
    n_coefs = design.shape[1]

    if n_coefs >= n_samples:
        raise InsufficientDataError(
            "No residual degrees of freedom: cannot estimate dispersion"
        )

    selected = counts.sum(axis=1) >= min_row_sum
    if not selected.any():
        raise InsufficientDataError(
            f"No interaction has a total count of at least {min_row_sum}"
        )

    y = counts[selected]
    offset = np.log(lib_size)

    likelihood = np.empty((len(y), len(GRID_DISPERSIONS)))
    start = None
    for index, dispersion in enumerate(GRID_DISPERSIONS):
        likelihood[:, index], start = adjusted_profile_likelihood(
            y, design, offset, dispersion, start=start
        )
    if not np.all(np.isfinite(likelihood)):
        raise FloatingPointError("non-finite adjusted profile likelihood")

    common = float(0.1 * 2 ** maximize_interpolant(GRID_POINTS, likelihood.sum(axis=0))[0])

    abundance = ave_log_cpm(counts, lib_size, dispersion=common)
    covariate = abundance[selected]

    if span is None:
        span = _wleb_span(len(y))
    if len(y) >= 3 and np.ptp(covariate) > 0:
        shared = AdaptiveLoess(covariate, degree=0).smooth_columns(likelihood, span)
    else:
        shared = np.tile(likelihood.mean(axis=0), (len(y), 1))

    trend = 0.1 * 2 ** maximize_interpolant(GRID_POINTS, shared)
    trended = np.full(n_rows, trend[np.argmin(covariate)])
    trended[selected] = trend

    prior_n = prior_df / (n_samples - n_coefs)
    tagwise = trended.copy()
    tagwise[selected] = 0.1 * 2 ** maximize_interpolant(
        GRID_POINTS, likelihood + prior_n * shared
    )

    logger.debug(
        f"Dispersion: common={common:.4g}, trended range "
        f"[{trended.min():.4g}, {trended.max():.4g}] over {n_rows} rows"
    )

    return DispersionEstimate(
        common=common,
        trended=trended,
        tagwise=tagwise,
        ave_log_cpm=abundance,
        span=span,
        prior_df=prior_df,
        prior_n=prior_n,
    )


def estimate_glm_common_disp_deviance(
    counts: np.ndarray,
    design: np.ndarray,
    lib_size: np.ndarray,
    robust: bool = True,
    interval: Tuple[float, float] = (0.0, 4.0),
    min_row_sum: float = 5.0,
) -> float:
    """
    Common dispersion at which the scaled residual deviance matches its df

    With ``robust`` the median deviance is matched to the median of the
    chi-squared distribution instead of the mean to the degrees of freedom,
    which makes the estimate usable without replicates.
    """
    counts = np.asarray(counts, dtype=float)
    design = np.asarray(design, dtype=float)
    selected = counts.sum(axis=1) >= min_row_sum
    if not selected.any():
        raise InsufficientDataError(
            f"No interaction has a total count of at least {min_row_sum}"
        )
    y = counts[selected]
    offset = np.log(np.asarray(lib_size, dtype=float))

    df = y.shape[1] - np.linalg.matrix_rank(design)
    if df <= 0:
        raise InsufficientDataError(
            "No residual degrees of freedom: cannot estimate dispersion"
        )

    def excess(root: float) -> float:
        fit = fit_nb_glm(y, design, offset, root ** 4)
        if robust:
            return float(np.median(fit.deviance) / stats.chi2.median(df) - 1)
        return float(np.mean(fit.deviance) / df - 1)

    low, high = (bound ** 0.25 for bound in interval)
    at_low, at_high = excess(low), excess(high)
    if at_low <= 0:
        return float(interval[0])
    if at_high >= 0:
        return float(interval[1])
    root = optimize.brentq(excess, low, high, xtol=1e-5)
    return float(root ** 4)


def trigamma_inverse(x: np.ndarray) -> np.ndarray:
    """Solve trigamma(y) = x for y by Newton iteration"""
    x = np.atleast_1d(np.asarray(x, dtype=float))
    y = np.empty_like(x)
    large = x > 1e7
    small = x < 1e-6
    middle = ~(large | small)
    y[large] = 1 / np.sqrt(x[large])
    y[small] = 1 / x[small]

    if middle.any():
        target = x[middle]
        guess = 0.5 + 1 / target
        for _ in range(50):
            tri = special.polygamma(1, guess)
            step = tri * (1 - tri / target) / special.polygamma(2, guess)
            guess = guess + step
            if np.max(-step / guess) < 1e-8:
                break
        y[middle] = guess
    return y


@dataclass
class SqueezedVariances:
    var_post: np.ndarray
    var_prior: float
    df_prior: float


def squeeze_var(var: np.ndarray, df: np.ndarray) -> SqueezedVariances:
    """
    Empirical Bayes moderation of variance estimates

    A scaled F distribution is fitted to the variances by matching the first
    two moments of their logarithm, and each variance is shrunk toward the
    prior in proportion to the prior degrees of freedom.
    """
    var = np.asarray(var, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), var.shape)

    ok = np.isfinite(var) & (df > 1e-15)
    if ok.sum() < 2:
        prior = float(np.median(var[ok])) if ok.any() else 1.0
        return SqueezedVariances(var_post=var.copy(), var_prior=prior, df_prior=0.0)

    x = np.maximum(var[ok], 0)
    median = np.median(x)
    if median == 0:
        logger.warning("More than half of residual variances are exactly zero")
        median = 1.0
    x = np.maximum(x, 1e-5 * median)
    d = df[ok]

    z = np.log(x)
    e = z - special.digamma(d / 2) + np.log(d / 2)
    e_mean = e.mean()
    e_var = ((e - e_mean) ** 2).sum() / (len(e) - 1) - special.polygamma(1, d / 2).mean()

    if e_var > 0:
        df_prior = float(2 * trigamma_inverse(e_var)[0])
        var_prior = float(np.exp(e_mean + special.digamma(df_prior / 2) - np.log(df_prior / 2)))
    else:
        df_prior = np.inf
        var_prior = float(np.exp(e_mean))

    if np.isinf(df_prior):
        var_post = np.full(var.shape, var_prior)
    else:
        var_post = (df_prior * var_prior + df * np.where(np.isfinite(var), var, 0)) / (df_prior + df)
    return SqueezedVariances(var_post=var_post, var_prior=var_prior, df_prior=df_prior)


@dataclass
class QLFit:
    """Quasi-likelihood GLM fit of one unit"""

    counts: np.ndarray
    design: np.ndarray
    offset: np.ndarray
    lib_size: np.ndarray
    dispersion: np.ndarray
    coefficients: np.ndarray
    unshrunk_coefficients: np.ndarray
    fitted: np.ndarray
    deviance: np.ndarray
    df_residual: np.ndarray
    s2_post: np.ndarray
    s2_prior: float
    df_prior: float
    ave_log_cpm: np.ndarray
    extras: Dict[str, np.ndarray] = field(default_factory=dict)

    @property
    def df_total(self) -> np.ndarray:
        return self.df_residual + self.df_prior


def glm_ql_fit(
    counts: np.ndarray,
    design: np.ndarray,
    lib_size: np.ndarray,
    dispersion,
    prior_count: float = 0.125,
    abundance: Optional[np.ndarray] = None,
) -> QLFit:
    """
    Fit the quasi-likelihood model with a fixed NB dispersion

    Args:
        counts: (rows x samples) counts
        design: Design matrix
        lib_size: Library size of every sample
        dispersion: Scalar or per-row NB dispersion (usually the trend)
        prior_count: Prior count added before computing reported coefficients
        abundance: Pre-computed average log-CPM of every row

    Returns:
        QLFit
    """
    counts = np.asarray(counts, dtype=float)
    design = np.asarray(design, dtype=float)
    lib_size = np.asarray(lib_size, dtype=float)
    offset = np.log(lib_size)
    dispersion = np.broadcast_to(np.asarray(dispersion, dtype=float), (counts.shape[0],)).copy()

    fit = fit_nb_glm(counts, design, offset, dispersion)
    augmented, augmented_offset = add_prior_count(counts, lib_size, prior_count)
    shrunk = fit_nb_glm(augmented, design, augmented_offset, dispersion, start=fit.coefficients)

    with np.errstate(divide="ignore", invalid="ignore"):
        s2 = np.where(fit.df_residual > 0, fit.deviance / fit.df_residual, 0.0)
    squeezed = squeeze_var(s2, fit.df_residual)

    if abundance is None:
        abundance = ave_log_cpm(counts, lib_size, dispersion=dispersion)

    return QLFit(
        counts=counts,
        design=design,
        offset=offset,
        lib_size=lib_size,
        dispersion=dispersion,
        coefficients=shrunk.coefficients,
        unshrunk_coefficients=fit.coefficients,
        fitted=fit.fitted,
        deviance=fit.deviance,
        df_residual=fit.df_residual,
        s2_post=np.maximum(squeezed.var_post, 1e-12),
        s2_prior=squeezed.var_prior,
        df_prior=squeezed.df_prior,
        ave_log_cpm=abundance,
    )


def _reparameterize(design: np.ndarray, selector: Selector) -> Tuple[np.ndarray, int]:
    """
    Design whose column ``index`` carries the tested effect

    Contrasts are rotated into the first column by a QR decomposition, with
    that column scaled so its coefficient equals the contrast itself.
    """
    if isinstance(selector, Coefficient):
        return design, selector.index

    contrast = selector.as_array()[:, None]
    q, r = np.linalg.qr(contrast, mode="complete")
    rotated = design @ q
    rotated[:, 0] /= r[0, 0]
    return rotated, 0


def _selected_effect(coefficients: np.ndarray, selector: Selector) -> np.ndarray:
    if isinstance(selector, Coefficient):
        return coefficients[:, selector.index]
    return coefficients @ selector.as_array()


def check_selector(design: np.ndarray, selector: Selector) -> None:
    """Configuration checks of a selector against a design"""
    n_coefs = np.asarray(design).shape[1]
    if isinstance(selector, Coefficient):
        if not 0 <= selector.index < n_coefs:
            raise ConfigurationError(
                f"coef {selector.index} is out of range for a design with "
                f"{n_coefs} columns"
            )
    elif len(selector.vector) != n_coefs:
        raise ConfigurationError(
            f"contrast has {len(selector.vector)} entries but the design has "
            f"{n_coefs} columns"
        )


def _null_deviance(fit: QLFit, selector: Selector, shift: float = 0.0) -> np.ndarray:
    design, index = _reparameterize(fit.design, selector)
    null_design = np.delete(design, index, axis=1)
    offset = fit.offset[None, :] + shift * design[:, index][None, :]
    offset = np.broadcast_to(offset, fit.counts.shape)
    if null_design.shape[1] == 0:
        mu = np.exp(offset)
        return nb_unit_deviance(fit.counts, mu, fit.dispersion[:, None]).sum(axis=1)
    null_fit = fit_nb_glm(fit.counts, null_design, offset, fit.dispersion)
    return null_fit.deviance


@dataclass
class GLMTestResult:
    """Per-row output of a GLM test (natural log fold changes)"""

    log_fc: np.ndarray
    log_cpm: np.ndarray
    statistic: np.ndarray
    p_value: np.ndarray


def glm_lrt(fit: QLFit, selector: Selector) -> GLMTestResult:
    """Likelihood ratio test of one coefficient or contrast"""
    check_selector(fit.design, selector)
    lr = np.maximum(_null_deviance(fit, selector) - fit.deviance, 0.0)
    return GLMTestResult(
        log_fc=_selected_effect(fit.coefficients, selector),
        log_cpm=fit.ave_log_cpm,
        statistic=lr,
        p_value=stats.chi2.sf(lr, 1),
    )


def glm_ql_ftest(fit: QLFit, selector: Selector) -> GLMTestResult:
    """Quasi-likelihood F-test of one coefficient or contrast"""
    check_selector(fit.design, selector)
    lr = np.maximum(_null_deviance(fit, selector) - fit.deviance, 0.0)
    f_stat = lr / fit.s2_post
    if np.isinf(fit.df_prior):
        p_value = stats.chi2.sf(f_stat, 1)
    else:
        p_value = stats.f.sf(f_stat, 1, fit.df_total)
    return GLMTestResult(
        log_fc=_selected_effect(fit.coefficients, selector),
        log_cpm=fit.ave_log_cpm,
        statistic=f_stat,
        p_value=p_value,
    )


def zscore_t(t_stat: np.ndarray, df) -> np.ndarray:
    """Normal deviates with the same tail probabilities as t statistics"""
    t_stat = np.asarray(t_stat, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), t_stat.shape)
    magnitude = np.abs(t_stat)
    finite = np.isfinite(df)
    z = magnitude.copy()
    if finite.any():
        z[finite] = stats.norm.isf(stats.t.sf(magnitude[finite], df[finite]))
    return np.sign(t_stat) * z


def glm_treat(fit: QLFit, selector: Selector, lfc: float = 1.0) -> GLMTestResult:
    """
    Test whether the absolute log2 fold change exceeds ``lfc``

    The likelihood ratio against each boundary of the null interval
    ``[-tau, tau]`` (``tau = lfc * log(2)``) is converted to a signed
    deviate; the p-value sums the tail beyond the nearer boundary and the
    tail beyond the farther one.
    """
    check_selector(fit.design, selector)
    tau = lfc * np.log(2)
    effect = _selected_effect(fit.unshrunk_coefficients, selector)

    if tau == 0:
        return glm_ql_ftest(fit, selector)

    lr_upper = np.maximum(_null_deviance(fit, selector, shift=tau) - fit.deviance, 0.0)
    lr_lower = np.maximum(_null_deviance(fit, selector, shift=-tau) - fit.deviance, 0.0)

    magnitude = np.abs(effect)
    positive = effect >= 0
    lr_near = np.where(positive, lr_upper, lr_lower)
    lr_far = np.where(positive, lr_lower, lr_upper)

    z_near = np.sign(magnitude - tau) * np.sqrt(lr_near / fit.s2_post)
    z_far = np.sqrt(lr_far / fit.s2_post)
    if not np.isinf(fit.df_prior):
        z_near = zscore_t(z_near, fit.df_total)
        z_far = zscore_t(z_far, fit.df_total)

    p_value = np.minimum(stats.norm.sf(z_near) + stats.norm.cdf(-z_far), 1.0)
    return GLMTestResult(
        log_fc=_selected_effect(fit.coefficients, selector),
        log_cpm=fit.ave_log_cpm,
        statistic=z_near,
        p_value=p_value,
    )


def run_glm_test(fit: QLFit, selector: Selector, method: TestMethod) -> GLMTestResult:
    """Dispatch a fitted unit to the requested test"""
    if isinstance(method, QLFTest):
        return glm_ql_ftest(fit, selector)
    if isinstance(method, LRTest):
        return glm_lrt(fit, selector)
    if isinstance(method, Treat):
        return glm_treat(fit, selector, lfc=method.lfc)
    raise ConfigurationError(f"Unknown test method {method!r}")
