import numpy as np
import pytest
from scipy import stats

from multihic.differential.exact import (equalize_lib_sizes, exact_test,
                                         exact_test_double_tail, q2q_nbinom)
from multihic.exceptions import ConfigurationError


def test_q2q_is_identity_for_equal_means():
    x = np.array([[0.0, 5.0, 40.0]])
    mean = np.full(x.shape, 12.0)
    np.testing.assert_allclose(q2q_nbinom(x, mean, mean, 0.1), x, rtol=1e-6, atol=1e-6)


def test_q2q_scales_toward_the_output_mean():
    x = np.array([[10.0, 20.0]])
    mapped = q2q_nbinom(x, np.full(x.shape, 10.0), np.full(x.shape, 20.0), 0.05)
    assert mapped[0, 0] == pytest.approx(20.0, rel=0.05)
    assert mapped[0, 1] > mapped[0, 0]


def test_equalize_lib_sizes_uses_geometric_mean():
    counts = np.array([[10.0, 20.0, 15.0, 30.0]])
    lib_size = np.array([1e4, 2e4, 1e4, 2e4])
    equalized = equalize_lib_sizes(counts, np.array([0, 0, 1, 1]), 0.01, lib_size)
    assert equalized.common_lib_size == pytest.approx(np.sqrt(2) * 1e4)
    # counts proportional to library size map to one common value per group
    assert equalized.pseudo_counts[0, 0] == pytest.approx(equalized.pseudo_counts[0, 1], rel=0.05)
    assert equalized.pseudo_counts[0, 2] == pytest.approx(equalized.pseudo_counts[0, 3], rel=0.05)


def test_double_tail_balanced_sums():
    y1 = np.array([[10.0, 12.0]])
    y2 = np.array([[12.0, 10.0]])
    assert exact_test_double_tail(y1, y2, 0.1)[0] == pytest.approx(1.0)


def test_double_tail_detects_imbalance():
    y1 = np.array([[10.0, 12.0], [50.0, 55.0]])
    y2 = np.array([[60.0, 70.0], [52.0, 48.0]])
    p = exact_test_double_tail(y1, y2, 0.05)
    assert p[0] < 0.01
    assert p[1] > 0.5


def test_double_tail_zero_dispersion_is_binomial():
    y1 = np.array([[10.0, 5.0]])
    y2 = np.array([[20.0, 25.0]])
    p = exact_test_double_tail(y1, y2, 0.0)
    assert p[0] == pytest.approx(stats.binomtest(15, 60, 0.5).pvalue)


def test_double_tail_beta_approximation_for_large_counts():
    y1 = np.array([[1000.0, 1100.0], [1500.0, 1500.0]])
    y2 = np.array([[1050.0, 1050.0], [2500.0, 2600.0]])
    p = exact_test_double_tail(y1, y2, 0.01)
    assert p[0] > 0.5
    assert p[1] < 1e-3
    assert np.all((p >= 0) & (p <= 1))


def test_exact_test_log_fold_change_direction(rng):
    lam = rng.uniform(50, 100, size=40)
    counts = np.column_stack(
        [rng.poisson(lam), rng.poisson(lam), rng.poisson(4 * lam), rng.poisson(4 * lam)]
    ).astype(float)
    lib_size = np.full(4, counts.sum(axis=0).mean())

    result = exact_test(counts, np.array([0, 0, 1, 1]), 0.01, lib_size)

    np.testing.assert_allclose(np.median(result.log_fc), np.log(4), atol=0.15)
    assert np.all(result.p_value < 1e-4)
    assert result.log_cpm.shape == (40,)


def test_exact_test_needs_two_groups():
    with pytest.raises(ConfigurationError):
        exact_test(np.ones((3, 3)), np.array([0, 1, 2]), 0.1, np.ones(3))
