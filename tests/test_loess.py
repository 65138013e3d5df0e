import numpy as np
import pytest

from multihic.exceptions import ConfigurationError, InsufficientDataError
from multihic.normalization.loess import (SPAN_RANGE, AdaptiveLoess,
                                          loess_criteria, loess_fit)


def test_local_linear_reproduces_a_line():
    x = np.linspace(0, 10, 60)
    y = 2 * x + 1
    fit = loess_fit(x, y, degree=1, span=0.3)
    np.testing.assert_allclose(fit.fitted, y, atol=1e-8)
    assert fit.rss < 1e-12


def test_constant_response_is_preserved_with_repeated_x():
    x = np.repeat(np.arange(8), 5).astype(float)
    fit = AdaptiveLoess(x, degree=0).fit(np.full(x.size, 3.5), span=0.5)
    np.testing.assert_allclose(fit.fitted, 3.5)


def test_automatic_span_is_within_search_range(rng):
    x = np.sort(rng.uniform(0, 1, 150))
    y = np.sin(6 * x) + rng.normal(0, 0.2, x.size)
    fit = loess_fit(x, y, span="auto")
    assert SPAN_RANGE[0] <= fit.span <= SPAN_RANGE[1]
    assert np.isfinite(fit.gcv)
    # the smooth explains most of the signal
    assert fit.rss < np.sum((y - y.mean()) ** 2) / 2


def test_aicc_criterion_selects_a_span(rng):
    x = np.arange(100, dtype=float)
    y = 0.01 * x + rng.normal(0, 1, x.size)
    fit = AdaptiveLoess(x, criterion="aicc").fit(y)
    assert SPAN_RANGE[0] <= fit.span <= SPAN_RANGE[1]
    assert fit.criterion == "aicc"


def test_vertex_interpolation_for_many_distinct_values(rng):
    x = rng.uniform(0, 100, 1000)
    y = 0.5 * x
    smoother = AdaptiveLoess(x, max_vertices=50)
    fit = smoother.fit(y, span=0.4)
    np.testing.assert_allclose(fit.fitted, y, rtol=1e-6, atol=1e-6)


def test_smooth_columns_matches_individual_fits(rng):
    x = rng.uniform(0, 5, 80)
    y = rng.normal(size=(80, 3))
    smoother = AdaptiveLoess(x, degree=0)
    columns = smoother.smooth_columns(y, span=0.5)
    for k in range(3):
        np.testing.assert_allclose(columns[:, k], smoother.fit(y[:, k], span=0.5).fitted)


def test_smooth_columns_needs_fixed_span():
    smoother = AdaptiveLoess(np.arange(10, dtype=float))
    with pytest.raises(ConfigurationError):
        smoother.smooth_columns(np.zeros((10, 2)), span="auto")


def test_loess_criteria_formulas():
    criteria = loess_criteria(rss=9.0, trace_hat=2.0, n=10)
    assert criteria["sigma2"] == pytest.approx(1.0)
    assert criteria["gcv"] == pytest.approx(10 * 1.0 / 64)
    assert criteria["aicc"] == pytest.approx(1 + 2 * 6 / 6)


def test_loess_criteria_degenerate_trace():
    criteria = loess_criteria(rss=1.0, trace_hat=10.0, n=10)
    assert criteria["gcv"] == np.inf
    assert criteria["aicc"] == np.inf


def test_length_mismatch():
    with pytest.raises(ConfigurationError):
        loess_fit(np.arange(5), np.arange(6))


def test_too_few_points():
    with pytest.raises(InsufficientDataError):
        AdaptiveLoess(np.array([1.0, 2.0]))


def test_non_finite_response():
    smoother = AdaptiveLoess(np.arange(5, dtype=float))
    with pytest.raises(InsufficientDataError):
        smoother.fit(np.array([1.0, np.nan, 2.0, 3.0, 4.0]), span=0.9)


@pytest.mark.parametrize("span", [0, 1.5, "wide"])
def test_invalid_span(span):
    with pytest.raises(ConfigurationError):
        loess_fit(np.arange(10), np.arange(10), span=span)


def test_invalid_degree():
    with pytest.raises(ConfigurationError):
        AdaptiveLoess(np.arange(10), degree=3)
