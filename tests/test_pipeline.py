"""End-to-end runs over files on disk."""
import pandas as pd
import pytest

from conftest import STABLE_FAMILIES, UNSTABLE_FAMILIES
from mirna_ptr.classify import STABLE, UNSTABLE
from mirna_ptr.cli import main
from mirna_ptr.config import AssaySpec, RunConfig
import mirna_ptr.pipeline as pipeline
from mirna_ptr.pipeline import load_assay, run_analysis

EXPECTED_FILES = [
    "sample_qc_nascent.tsv",
    "sample_qc_steady.tsv",
    "normalized_counts_nascent.tsv",
    "normalized_counts_steady.tsv",
    "de_nascent.tsv",
    "de_steady.tsv",
    "de_merged_nascent_vs_steady.tsv",
    "correlation.tsv",
    "merged_counts.tsv",
    "normalized_counts_two_factor.tsv",
    "interaction_results.tsv",
    "summary.tsv",
]


@pytest.fixture
def input_files(paired_assays, write_assay_files):
    return {assay: write_assay_files(assay, *tables) for assay, tables in paired_assays.items()}


def test_run_analysis_writes_every_artifact(input_files, tmp_path):
    out_dir = tmp_path / "results"
    config = RunConfig(
        nascent=AssaySpec("nascent", *input_files["nascent"]),
        steady=AssaySpec("steady", *input_files["steady"]),
        out_dir=out_dir,
    )
    result = run_analysis(config)

    for name in EXPECTED_FILES:
        assert (out_dir / name).exists(), name
    assert not list(out_dir.glob("*.tmp"))

    interaction = pd.read_csv(out_dir / "interaction_results.tsv", sep="\t")
    assert {"key", "id_nascent", "id_steady", "log2FoldChange", "padj", "call"} <= set(interaction.columns)
    stable = set(interaction.loc[interaction["call"] == STABLE, "key"])
    unstable = set(interaction.loc[interaction["call"] == UNSTABLE, "key"])
    assert {f"miR-{f}" for f in STABLE_FAMILIES} <= stable
    assert {f"miR-{f}" for f in UNSTABLE_FAMILIES} <= unstable

    de_steady = pd.read_csv(out_dir / "de_steady.tsv", sep="\t")
    assert list(de_steady.columns[:2]) == ["feature_id", "key"]
    assert "call" in de_steady.columns
    # ConditionC samples never reach the model
    normalized = pd.read_csv(out_dir / "normalized_counts_steady.tsv", sep="\t", index_col=0)
    assert not any(c.endswith("_C1") for c in normalized.columns)

    summary = pd.read_csv(out_dir / "summary.tsv", sep="\t", index_col=0)["count"]
    assert summary[STABLE] == result.summary[STABLE] >= len(STABLE_FAMILIES)
    assert set(result.outputs) >= {"interaction_results", "summary", "correlation"}


def test_min_total_count_filters_features(input_files, tmp_path):
    config = RunConfig(
        nascent=AssaySpec("nascent", *input_files["nascent"]),
        steady=AssaySpec("steady", *input_files["steady"]),
        out_dir=tmp_path / "filtered",
        min_total_count=200,
    )
    result = run_analysis(config)
    # miR-104 is barely expressed in the small-RNA assay
    assert "hsa-miR-104-5p" not in result.single_factor["steady"].table.index
    assert "miR-104" not in set(result.labeled["key"])


def test_cli_main(input_files, tmp_path, capsys):
    out_dir = tmp_path / "cli"
    argv = [
        "--nascent-counts", str(input_files["nascent"][0]),
        "--nascent-metadata", str(input_files["nascent"][1]),
        "--steady-counts", str(input_files["steady"][0]),
        "--steady-metadata", str(input_files["steady"][1]),
        "--conditions", "ConditionA", "ConditionB",
        "--out-dir", str(out_dir),
        "--log-level", "WARNING",
    ]
    assert main(argv) == 0
    assert (out_dir / "interaction_results.tsv").exists()
    assert "SUMMARY" in capsys.readouterr().out


def test_cli_reports_unknown_condition(input_files, tmp_path):
    argv = [
        "--nascent-counts", str(input_files["nascent"][0]),
        "--nascent-metadata", str(input_files["nascent"][1]),
        "--steady-counts", str(input_files["steady"][0]),
        "--steady-metadata", str(input_files["steady"][1]),
        "--conditions", "ConditionA", "ConditionZ",
        "--out-dir", str(tmp_path / "bad"),
    ]
    assert main(argv) == 1


def test_sample_qc_is_computed_once_per_assay(input_files, tmp_path, monkeypatch):
    calls = []
    original = pipeline.sample_qc

    def counting_sample_qc(counts):
        calls.append(list(counts.columns))
        return original(counts)

    monkeypatch.setattr(pipeline, "sample_qc", counting_sample_qc)
    out_dir = tmp_path / "qc"
    config = RunConfig(
        nascent=AssaySpec("nascent", *input_files["nascent"]),
        steady=AssaySpec("steady", *input_files["steady"]),
        out_dir=out_dir,
    )
    result = run_analysis(config)

    assert len(calls) == 2
    written = pd.read_csv(out_dir / "sample_qc_steady.tsv", sep="\t", index_col=0)
    assert list(written.index) == list(result.single_factor["steady"].fit.design.index)
    assert list(written.columns) == ["total", "zero_fraction", "size_factor"]


def test_load_assay_returns_its_qc_table(input_files):
    spec = AssaySpec("nascent", *input_files["nascent"])
    aligned, qc = load_assay(spec, ("ConditionA", "ConditionB"))
    assert list(qc.index) == list(aligned.counts.columns)
    assert (qc["total"] == aligned.counts.sum(axis=0)).all()
