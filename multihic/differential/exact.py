"""
Exact negative-binomial test between two groups

Counts are first mapped onto a common library size so that, within each
group, row sums follow a negative binomial whose size parameter only depends
on the number of samples. Conditional on the total, the group sums then give
an exact test for a difference in means (Robinson and Smyth, 2008).
"""

import logging
from dataclasses import dataclass

import numpy as np
from scipy import stats

from ..exceptions import ConfigurationError
from .glm import add_prior_count, ave_log_cpm, mglm_one_group

logger = logging.getLogger(__name__)

BIG_COUNT = 900


def q2q_nbinom(x: np.ndarray, input_mean: np.ndarray, output_mean: np.ndarray, dispersion) -> np.ndarray:
    """
    Map negative-binomial quantiles between means

    The result averages a normal and a gamma approximation of the
    negative-binomial distribution function.
    """
    x = np.asarray(x, dtype=float)
    input_mean = np.array(input_mean, dtype=float)
    output_mean = np.array(output_mean, dtype=float)
    dispersion = np.broadcast_to(np.asarray(dispersion, dtype=float), x.shape)

    zero = (input_mean < 1e-14) | (output_mean < 1e-14)
    input_mean[zero] += 0.25
    output_mean[zero] += 0.25

    ri = 1 + dispersion * input_mean
    vi = input_mean * ri
    ro = 1 + dispersion * output_mean
    vo = output_mean * ro

    # the normal quantile map is linear in x
    q_normal = output_mean + (x - input_mean) * np.sqrt(vo / vi)

    upper = x >= input_mean
    p = np.where(
        upper,
        stats.gamma.sf(x, input_mean / ri, scale=ri),
        stats.gamma.cdf(x, input_mean / ri, scale=ri),
    )
    with np.errstate(invalid="ignore"):
        q_gamma = np.where(
            upper,
            stats.gamma.isf(p, output_mean / ro, scale=ro),
            stats.gamma.ppf(p, output_mean / ro, scale=ro),
        )
    # tail probabilities that underflow fall back to the normal map
    usable = np.isfinite(q_gamma) & (p > 0)
    q_gamma = np.where(usable, q_gamma, q_normal)

    return (q_normal + q_gamma) / 2


@dataclass
class EqualizedCounts:
    pseudo_counts: np.ndarray
    common_lib_size: float


def equalize_lib_sizes(counts: np.ndarray, groups: np.ndarray, dispersion, lib_size: np.ndarray) -> EqualizedCounts:
    """
    Adjust counts to the geometric mean library size

    Args:
        counts: (rows x samples) counts
        groups: Integer group code of every sample
        dispersion: Scalar or per-row dispersion
        lib_size: Library size of every sample

    Returns:
        EqualizedCounts
    """
    counts = np.asarray(counts, dtype=float)
    lib_size = np.asarray(lib_size, dtype=float)
    groups = np.asarray(groups)
    common = float(np.exp(np.mean(np.log(lib_size))))
    dispersion = np.broadcast_to(np.asarray(dispersion, dtype=float), (counts.shape[0],))

    pseudo = np.zeros_like(counts)
    for level in np.unique(groups):
        columns = np.flatnonzero(groups == level)
        abundance = mglm_one_group(
            counts[:, columns], np.log(lib_size[columns]), dispersion
        )
        rate = np.exp(abundance)[:, None]
        input_mean = rate * lib_size[columns][None, :]
        output_mean = np.broadcast_to(rate * common, input_mean.shape)
        pseudo[:, columns] = q2q_nbinom(
            counts[:, columns], input_mean, output_mean, dispersion[:, None]
        )

    return EqualizedCounts(pseudo_counts=np.maximum(pseudo, 0), common_lib_size=common)


def _beta_approx(s1, s2, n1, n2, dispersion):
    s = s1 + s2
    mu = s / (n1 + n2)
    alpha1 = n1 * mu / (1 + dispersion * mu)
    alpha2 = n2 / n1 * alpha1
    median = stats.beta.median(alpha1, alpha2)

    p_value = np.ones(len(s))
    left = (s1 + 0.5) / s < median
    right = (s1 - 0.5) / s > median
    p_value[left] = 2 * stats.beta.cdf((s1[left] + 0.5) / s[left], alpha1[left], alpha2[left])
    p_value[right] = 2 * stats.beta.sf((s1[right] - 0.5) / s[right], alpha1[right], alpha2[right])
    return np.minimum(p_value, 1.0)


def _nb_pmf(x, size, mu):
    return stats.nbinom.pmf(x, size, size / (size + mu))


def exact_test_double_tail(y1: np.ndarray, y2: np.ndarray, dispersion, big_count: int = BIG_COUNT) -> np.ndarray:
    """
    Two-sided exact test for a difference between two groups of NB counts

    The p-value doubles the smaller tail of the distribution of the first
    group's sum given the total. Rows where both sums exceed ``big_count``
    use a beta approximation and rows with zero dispersion a binomial test.
    """
    y1 = np.atleast_2d(np.asarray(y1, dtype=float))
    y2 = np.atleast_2d(np.asarray(y2, dtype=float))
    n1, n2 = y1.shape[1], y2.shape[1]
    s1 = np.round(y1.sum(axis=1))
    s2 = np.round(y2.sum(axis=1))
    s = s1 + s2
    n_rows = len(s)
    dispersion = np.broadcast_to(np.asarray(dispersion, dtype=float), (n_rows,))

    mu = s / (n1 + n2)
    mu1 = n1 * mu
    mu2 = n2 * mu
    p_value = np.ones(n_rows)

    poisson = dispersion <= 0
    for row in np.flatnonzero(poisson & (s > 0)):
        p_value[row] = stats.binomtest(int(s1[row]), int(s[row]), n1 / (n1 + n2)).pvalue

    big = (s1 > big_count) & (s2 > big_count) & ~poisson
    if big.any():
        p_value[big] = _beta_approx(s1[big], s2[big], n1, n2, dispersion[big])

    remaining = ~poisson & ~big
    for row in np.flatnonzero(remaining & (s1 != mu1)):
        size1 = n1 / dispersion[row]
        size2 = n2 / dispersion[row]
        bottom = _nb_pmf(s[row], (n1 + n2) / dispersion[row], s[row])
        if s1[row] < mu1[row]:
            x = np.arange(0, s1[row] + 1)
        else:
            x = np.arange(s1[row], s[row] + 1)
        top = _nb_pmf(x, size1, mu1[row]) * _nb_pmf(s[row] - x, size2, mu2[row])
        p_value[row] = 2 * top.sum() / bottom

    return np.minimum(p_value, 1.0)


@dataclass
class ExactTestResult:
    """Per-row exact test output (natural log fold change of group 2 over 1)"""

    log_fc: np.ndarray
    log_cpm: np.ndarray
    p_value: np.ndarray


def exact_test(
    counts: np.ndarray,
    groups: np.ndarray,
    dispersion,
    lib_size: np.ndarray,
    prior_count: float = 0.125,
) -> ExactTestResult:
    """
    Exact test between the two groups of a unit

    Args:
        counts: (rows x samples) counts
        groups: Group code (0 or 1) of every sample
        dispersion: Scalar or per-row dispersion
        lib_size: Library size of every sample
        prior_count: Prior count used for the reported fold changes

    Returns:
        ExactTestResult
    """
    counts = np.asarray(counts, dtype=float)
    groups = np.asarray(groups)
    lib_size = np.asarray(lib_size, dtype=float)
    levels = np.unique(groups)
    if len(levels) != 2:
        raise ConfigurationError(
            f"The exact test needs exactly 2 groups, got {len(levels)}"
        )
    dispersion = np.broadcast_to(np.asarray(dispersion, dtype=float), (counts.shape[0],))

    first = groups == levels[0]
    second = groups == levels[1]

    augmented, augmented_offset = add_prior_count(counts, lib_size, prior_count)
    abundance1 = mglm_one_group(augmented[:, first], augmented_offset[first], dispersion)
    abundance2 = mglm_one_group(augmented[:, second], augmented_offset[second], dispersion)

    equalized = equalize_lib_sizes(counts, groups, dispersion, lib_size)
    p_value = exact_test_double_tail(
        equalized.pseudo_counts[:, first],
        equalized.pseudo_counts[:, second],
        dispersion,
    )

    return ExactTestResult(
        log_fc=abundance2 - abundance1,
        log_cpm=ave_log_cpm(counts, lib_size, dispersion=dispersion),
        p_value=p_value,
    )
