import numpy as np
import pandas as pd
import pytest

from multihic.data.models import RESULT_COLUMNS
from multihic.differential.results import (P_ADJUST_METHODS, adjust_pvalues,
                                           assemble_results, classify_results,
                                           summarize_results)
from multihic.exceptions import ConfigurationError


def _unit(chrom, region1, p_values, log_fc=np.log(2)):
    n = len(p_values)
    return pd.DataFrame(
        {
            "chr": chrom,
            "region1": region1,
            "region2": np.asarray(region1) + 1000,
            "D": 1,
            "logFC": log_fc,
            "logCPM": 5.0,
            "p_value": p_values,
        },
        index=range(n),
    )


@pytest.fixture
def unit_outputs():
    return {
        "chr2:pool0": _unit("chr2", [0, 5000], [0.01, 0.5]),
        "chr1:pool1": _unit("chr1", [3000, 1000], [0.2, 0.001]),
        "chr1:pool0": _unit("chr1", [2000], [0.04]),
    }


def test_assembled_table_is_sorted_with_result_columns(unit_outputs):
    result = assemble_results(unit_outputs)
    assert list(result.columns) == RESULT_COLUMNS
    assert result["chromosome"].tolist() == ["chr1", "chr1", "chr1", "chr2", "chr2"]
    assert result["region1"].tolist() == [1000, 2000, 3000, 0, 5000]


def test_assembled_log_fold_changes_are_log2(unit_outputs):
    result = assemble_results(unit_outputs)
    np.testing.assert_allclose(result["logFC"], 1.0)


def test_correction_is_applied_once_over_all_units(unit_outputs):
    result = assemble_results(unit_outputs, p_adjust="bonferroni")
    np.testing.assert_allclose(
        result["p_adjusted"], np.minimum(result["p_value"] * 5, 1.0)
    )


def test_assembly_does_not_depend_on_unit_order(unit_outputs):
    reversed_outputs = dict(reversed(list(unit_outputs.items())))
    pd.testing.assert_frame_equal(
        assemble_results(unit_outputs), assemble_results(reversed_outputs)
    )


def test_assembly_is_repeatable(unit_outputs):
    first = assemble_results(unit_outputs)
    second = assemble_results(unit_outputs)
    pd.testing.assert_frame_equal(first, second)
    assert np.all(first["p_adjusted"] >= first["p_value"])


def test_empty_assembly():
    result = assemble_results({})
    assert list(result.columns) == RESULT_COLUMNS
    assert len(result) == 0


@pytest.mark.parametrize("method", sorted(P_ADJUST_METHODS))
def test_every_adjustment_method(method):
    p = np.array([0.001, 0.01, 0.02, 0.5, 0.9])
    adjusted = adjust_pvalues(p, method)
    assert adjusted.shape == p.shape
    assert np.all(adjusted >= p - 1e-12)
    assert np.all(adjusted <= 1.0)


def test_fdr_is_benjamini_hochberg():
    p = np.array([0.01, 0.04, 0.03, 0.2])
    np.testing.assert_allclose(adjust_pvalues(p, "fdr"), adjust_pvalues(p, "BH"))
    np.testing.assert_allclose(adjust_pvalues(p, "fdr"), [0.04, 0.16 / 3, 0.16 / 3, 0.2])


def test_none_leaves_p_values():
    p = np.array([0.3, 0.01])
    np.testing.assert_array_equal(adjust_pvalues(p, "none"), p)


def test_missing_p_values_are_kept():
    adjusted = adjust_pvalues(np.array([0.01, np.nan, 0.02]), "bonferroni")
    assert np.isnan(adjusted[1])
    np.testing.assert_allclose(adjusted[[0, 2]], [0.02, 0.04])


def test_unknown_method():
    with pytest.raises(ConfigurationError, match="adjustment"):
        adjust_pvalues([0.1], "fdr_tsbh")


def test_classify_and_summarize():
    frame = pd.DataFrame(
        {
            "chromosome": ["chr1", "chr1", "chr2"],
            "logFC": [1.5, -2.0, 0.1],
            "p_adjusted": [0.01, 0.02, 0.5],
        }
    )
    labels = classify_results(frame, fdr_threshold=0.05, logfc_threshold=1.0)
    assert labels.tolist() == ["Up", "Down", "Not Significant"]

    stats = summarize_results(frame, fdr_threshold=0.05, logfc_threshold=1.0)
    assert stats["n_up"] == 1
    assert stats["n_down"] == 1
    assert stats["n_significant"] == 2
    assert stats["n_chromosomes"] == 2
    assert stats["max_abs_logfc"] == pytest.approx(2.0)


def test_significant_count_includes_unchanged_fold_changes():
    frame = pd.DataFrame(
        {
            "chromosome": ["chr1", "chr1", "chr1"],
            "logFC": [0.0, 2.0, 0.5],
            "p_adjusted": [0.001, 0.01, 0.9],
        }
    )
    stats = summarize_results(frame, fdr_threshold=0.05, logfc_threshold=0.0)
    assert stats["n_significant"] == 2
    assert stats["n_up"] == 1
    assert stats["n_down"] == 0
