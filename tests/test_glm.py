import numpy as np
import pytest
from scipy import special

from multihic.differential.glm import (ave_log_cpm, estimate_disp,
                                       estimate_glm_common_disp_deviance,
                                       fit_nb_glm, glm_lrt, glm_ql_fit,
                                       glm_ql_ftest, glm_treat,
                                       maximize_interpolant, mglm_one_group,
                                       nb_unit_deviance, squeeze_var,
                                       trigamma_inverse, zscore_t)
from multihic.differential.models import Coefficient, Contrast
from multihic.exceptions import ConfigurationError, InsufficientDataError

GROUP_DESIGN = np.array([[1, 0], [1, 0], [1, 0], [1, 1], [1, 1], [1, 1]], dtype=float)


def _nb_counts(rng, means, dispersion, n_rows):
    """(rows x samples) negative-binomial counts with per-sample means"""
    means = np.broadcast_to(np.asarray(means, dtype=float), (n_rows, len(means)))
    size = 1 / dispersion
    return rng.negative_binomial(size, size / (size + means)).astype(float)


def test_unit_deviance_is_zero_at_the_observation():
    y = np.array([0.0, 1.0, 10.0, 250.0])
    np.testing.assert_allclose(nb_unit_deviance(y, y, 0.2), 0.0, atol=1e-8)
    np.testing.assert_allclose(nb_unit_deviance(y, y, 0.0), 0.0, atol=1e-8)
    assert np.all(nb_unit_deviance(y, y + 3, 0.2) > 0)


def test_fit_nb_glm_recovers_group_means():
    counts = np.array([[100, 100, 100, 400, 400, 400], [20, 20, 20, 10, 10, 10]], dtype=float)
    lib_size = np.full(6, 1e4)
    fit = fit_nb_glm(counts, GROUP_DESIGN, np.log(lib_size), 0.1)

    assert fit.converged.all()
    np.testing.assert_allclose(fit.coefficients[:, 1], [np.log(4), np.log(0.5)], atol=1e-3)
    np.testing.assert_allclose(fit.fitted, counts, rtol=1e-3)
    np.testing.assert_array_equal(fit.df_residual, [4, 4])


def test_residual_df_drops_all_zero_groups():
    counts = np.array([[0, 0, 0, 5, 7, 6]], dtype=float)
    fit = fit_nb_glm(counts, GROUP_DESIGN, np.zeros(6), 0.1)
    # the zero group contributes no residual information
    assert fit.df_residual[0] == 2


def test_mglm_one_group_poisson_is_closed_form():
    counts = np.array([[10.0, 20.0, 30.0], [0.0, 0.0, 0.0]])
    offset = np.log([100.0, 200.0, 300.0])
    beta = mglm_one_group(counts, offset, dispersion=0.0)
    assert beta[0] == pytest.approx(np.log(60 / 600))
    assert beta[1] == -np.inf


def test_ave_log_cpm_of_constant_rows():
    counts = np.full((3, 4), 50.0)
    lib_size = np.full(4, 1e6)
    abundance = ave_log_cpm(counts, lib_size, prior_count=0.0)
    np.testing.assert_allclose(abundance, np.log2(50.0), rtol=1e-6)


def test_maximize_interpolant_finds_interior_maximum():
    x = np.linspace(-2, 2, 21)
    y = np.vstack([-(x - 0.73) ** 2, -(x + 1.21) ** 2])
    np.testing.assert_allclose(maximize_interpolant(x, y), [0.73, -1.21], atol=1e-2)


def test_maximize_interpolant_at_boundary():
    x = np.linspace(0, 1, 11)
    assert maximize_interpolant(x, x[None, :])[0] == pytest.approx(1.0)


def test_trigamma_inverse_inverts_trigamma():
    x = np.array([1e-8, 0.05, 0.5, 3.0, 40.0])
    y = trigamma_inverse(x)
    np.testing.assert_allclose(special.polygamma(1, y[1:]), x[1:], rtol=1e-6)
    assert y[0] == pytest.approx(1e8)


def test_squeeze_var_shrinks_toward_prior(rng):
    df = np.full(500, 4.0)
    var = 2.0 * rng.chisquare(4, 500) / 4
    squeezed = squeeze_var(var, df)

    assert 1.5 < squeezed.var_prior < 2.5
    low = np.minimum(var, squeezed.var_prior) - 1e-12
    high = np.maximum(var, squeezed.var_prior) + 1e-12
    assert np.all((squeezed.var_post >= low) & (squeezed.var_post <= high))
    # moderated variances are less spread out
    assert squeezed.var_post.std() < var.std()


def test_squeeze_var_with_too_few_values():
    squeezed = squeeze_var(np.array([1.0]), np.array([3.0]))
    assert squeezed.df_prior == 0.0
    np.testing.assert_array_equal(squeezed.var_post, [1.0])


def test_estimate_disp_recovers_dispersion(rng):
    counts = _nb_counts(rng, [60] * 6, dispersion=0.1, n_rows=400)
    lib_size = np.full(6, counts.sum(axis=0).mean())

    estimate = estimate_disp(counts, GROUP_DESIGN, lib_size)

    assert 0.06 < estimate.common < 0.16
    assert estimate.trended.shape == (400,)
    assert estimate.tagwise.shape == (400,)
    assert np.all(estimate.tagwise > 0)
    assert np.all(np.isfinite(estimate.ave_log_cpm))
    assert estimate.prior_n == pytest.approx(10 / 4)


def test_estimate_disp_needs_residual_df(rng):
    counts = _nb_counts(rng, [60] * 2, dispersion=0.1, n_rows=20)
    with pytest.raises(InsufficientDataError):
        estimate_disp(counts, np.eye(2), np.full(2, 1e4))


def test_estimate_disp_needs_expressed_rows():
    counts = np.zeros((5, 6))
    counts[0, 0] = 1
    with pytest.raises(InsufficientDataError):
        estimate_disp(counts, GROUP_DESIGN, np.full(6, 1e4))


def test_deviance_common_dispersion_without_replicates(rng):
    counts = _nb_counts(rng, [80, 80], dispersion=0.2, n_rows=500)
    dispersion = estimate_glm_common_disp_deviance(
        counts, np.ones((2, 1)), np.full(2, 1e4), robust=True
    )
    assert 0.08 < dispersion < 0.4


def test_deviance_common_dispersion_poisson_data(rng):
    counts = rng.poisson(100, size=(300, 2)).astype(float)
    dispersion = estimate_glm_common_disp_deviance(counts, np.ones((2, 1)), np.full(2, 1e4))
    assert dispersion < 0.01


@pytest.fixture
def ql_fit(rng):
    null = _nb_counts(rng, [100] * 6, dispersion=0.05, n_rows=150)
    changed = _nb_counts(rng, [100, 100, 100, 800, 800, 800], dispersion=0.05, n_rows=50)
    counts = np.vstack([null, changed])
    lib_size = np.full(6, counts.sum(axis=0).mean())
    dispersion = estimate_disp(counts, GROUP_DESIGN, lib_size)
    return glm_ql_fit(counts, GROUP_DESIGN, lib_size, dispersion.trended)


def test_ql_ftest_separates_changed_rows(ql_fit):
    result = glm_ql_ftest(ql_fit, Coefficient(1))
    assert np.median(result.p_value[150:]) < 1e-4
    assert np.median(result.p_value[:150]) > 0.2
    np.testing.assert_allclose(np.median(result.log_fc[150:]), np.log(8), atol=0.2)


def test_lrt_and_ql_agree_on_direction(ql_fit):
    lrt = glm_lrt(ql_fit, Coefficient(1))
    ql = glm_ql_ftest(ql_fit, Coefficient(1))
    np.testing.assert_allclose(lrt.log_fc, ql.log_fc)
    assert np.all(lrt.statistic >= 0)
    assert np.median(lrt.p_value[150:]) < 1e-4


def test_contrast_matches_coefficient(ql_fit):
    by_coef = glm_ql_ftest(ql_fit, Coefficient(1))
    by_contrast = glm_ql_ftest(ql_fit, Contrast([0, 1]))
    np.testing.assert_allclose(by_contrast.log_fc, by_coef.log_fc, rtol=1e-8)
    np.testing.assert_allclose(by_contrast.p_value, by_coef.p_value, rtol=1e-3, atol=1e-10)


def test_treat_is_more_conservative(ql_fit):
    ql = glm_ql_ftest(ql_fit, Coefficient(1))
    treat = glm_treat(ql_fit, Coefficient(1), lfc=1.0)
    # most unchanged rows sit inside the null interval
    assert np.median(treat.p_value[:150]) > 0.5
    assert np.median(treat.p_value[:150]) > np.median(ql.p_value[:150])
    # log2(8) = 3 is well past the threshold
    assert np.median(treat.p_value[150:]) < 1e-3


def test_treat_with_zero_threshold_is_the_ql_test(ql_fit):
    treat = glm_treat(ql_fit, Coefficient(1), lfc=0.0)
    ql = glm_ql_ftest(ql_fit, Coefficient(1))
    np.testing.assert_allclose(treat.p_value, ql.p_value)


def test_selector_out_of_range(ql_fit):
    with pytest.raises(ConfigurationError):
        glm_ql_ftest(ql_fit, Coefficient(2))
    with pytest.raises(ConfigurationError):
        glm_lrt(ql_fit, Contrast([0, 1, 0]))


def test_zscore_t_matches_tail_probability():
    from scipy import stats

    z = zscore_t(np.array([-2.5, 0.0, 3.0]), 5)
    np.testing.assert_allclose(stats.norm.sf(np.abs(z)), stats.t.sf([2.5, 0.0, 3.0], 5))
    assert z[0] < 0 < z[2]
