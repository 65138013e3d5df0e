import pandas as pd
import pytest

from multihic import MultiHiCAnalysis
from multihic.exceptions import ConfigurationError
from multihic.utils import (load_hic_table, load_sample_sheet, save_table,
                            standardize_chromosomes)

SAMPLES = {
    "A1": {"group": "A"},
    "A2": {"group": "A"},
    "B1": {"group": "B"},
    "B2": {"group": "B"},
}


@pytest.fixture
def input_file(tmp_path, two_pool_table):
    return save_table(two_pool_table.frame, tmp_path / "contacts.tsv")


def _config(input_file, output_dir, **sections):
    return {
        "input_file": str(input_file),
        "output_dir": str(output_dir),
        "samples": SAMPLES,
        "normalization": {"span": 0.7},
        **sections,
    }


def test_load_and_save_round_trip(tmp_path, two_pool_table):
    path = save_table(two_pool_table.frame, tmp_path / "nested" / "table.csv")
    table = load_hic_table(path)
    assert table.samples == ["A1", "A2", "B1", "B2"]
    assert not table.is_normalized
    pd.testing.assert_frame_equal(table.frame, two_pool_table.frame, check_dtype=False)

    assert load_hic_table(path, normalized=True).is_normalized


def test_load_sample_sheet(tmp_path):
    path = tmp_path / "samples.tsv"
    path.write_text("sample\tgroup\tbatch\nA1\tA\t1\nB1\tB\t2\n")
    samples = load_sample_sheet(path)
    assert samples.names == ["A1", "B1"]
    assert samples.groups == ["A", "B"]
    assert list(samples.covariates.columns) == ["batch"]


def test_standardize_chromosomes():
    frame = pd.DataFrame({"chr": ["1", "chrX", "chr2"]})
    assert standardize_chromosomes(frame)["chr"].tolist() == ["chr1", "chrX", "chr2"]
    assert standardize_chromosomes(frame, add_prefix=False)["chr"].tolist() == ["1", "X", "2"]


def test_full_pipeline_writes_outputs(tmp_path, input_file):
    output_dir = tmp_path / "out"
    analysis = MultiHiCAnalysis(_config(input_file, output_dir), configure_logging=False)

    results = analysis.run_full_pipeline()

    assert list(results) == ["load", "normalization", "differential"]
    assert all(result["success"] for result in results.values())
    assert results["load"]["n_records"] == 100
    assert analysis.normalized.is_normalized

    comparison = pd.read_csv(output_dir / "comparison.txt", sep="\t")
    assert len(comparison) == 100
    assert (output_dir / "normalized_table.txt").exists()

    summary = (output_dir / "pipeline_summary.txt").read_text()
    assert "differential: SUCCESS" in summary
    assert "total" in analysis.get_execution_times()


def test_fastlo_glm_pipeline(tmp_path, input_file):
    config = _config(
        input_file,
        tmp_path / "out",
        normalization={"method": "fastlo", "span": 0.7},
        differential={"test": "glm", "method": "QLFTest", "coef": 1},
    )
    analysis = MultiHiCAnalysis(config, configure_logging=False)
    results = analysis.run_full_pipeline()
    assert results["differential"]["summary"]["n_tested"] == 100


def test_pipeline_without_normalization_warns(tmp_path, input_file):
    config = _config(input_file, tmp_path / "out", normalization={"method": "none"})
    analysis = MultiHiCAnalysis(config, configure_logging=False)
    with pytest.warns(UserWarning, match="normalize"):
        analysis.run_full_pipeline()


def test_invalid_configuration_is_rejected(tmp_path):
    config = _config(tmp_path / "missing.tsv", tmp_path / "out")
    with pytest.raises(ConfigurationError, match="does not exist"):
        MultiHiCAnalysis(config, configure_logging=False)


def test_unknown_pipeline_step(tmp_path, input_file):
    analysis = MultiHiCAnalysis(_config(input_file, tmp_path / "out"), configure_logging=False)
    with pytest.raises(ConfigurationError, match="bogus"):
        analysis.run_full_pipeline(["load", "bogus"])


def test_failed_step_is_recorded(tmp_path, input_file):
    output_dir = tmp_path / "out"
    config = _config(input_file, output_dir)
    config["samples"] = dict(SAMPLES, C1={"group": "B"})
    analysis = MultiHiCAnalysis(config, configure_logging=False)

    with pytest.raises(ValueError, match="C1"):
        analysis.run_full_pipeline()

    assert analysis.results["load"]["success"] is False
    assert "normalization" not in analysis.results
    assert "load: FAILED" in (output_dir / "pipeline_summary.txt").read_text()
