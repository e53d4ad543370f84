"""Shared synthetic assays for the test suite.

Both assays measure the same 30 microRNAs (``miR-100`` .. ``miR-129``)
under ConditionA and ConditionB, plus a few features only one assay sees.
A third condition, ConditionC, is present in every table and must be
filtered out. Planted effects (ConditionA vs ConditionB, steady-state
assay only):

- miR-100, miR-101: 8x up in small-RNA, flat transcription (stable)
- miR-102, miR-103: 8x down in small-RNA, flat transcription (unstable)
- miR-104: 8x up in small-RNA but barely expressed (gated out)
"""
import numpy as np
import pandas as pd
import pytest

CONDITIONS = ("ConditionA", "ConditionB")
FAMILIES = list(range(100, 130))
STABLE_FAMILIES = (100, 101)
UNSTABLE_FAMILIES = (102, 103)
LOW_FAMILY = 104


def _nb(rng, mu, alpha=0.02):
    n = 1.0 / alpha
    return rng.negative_binomial(n, n / (n + np.asarray(mu, dtype=float)))


def _samples(prefix, n_a, n_b, n_c=1):
    ids, conds = [], []
    for cond, n in zip(("ConditionA", "ConditionB", "ConditionC"), (n_a, n_b, n_c)):
        for r in range(1, n + 1):
            ids.append(f"{prefix}_{cond[-1]}{r}")
            conds.append(cond)
    meta = pd.DataFrame({"condition": conds}, index=pd.Index(ids, name="sample_id"))
    return meta


def _simulate(rng, feature_means, fold_in_a, meta):
    depth = rng.uniform(0.8, 1.25, size=len(meta))
    rows = {}
    for fid, mu in feature_means.items():
        fold = np.where(meta["condition"] == "ConditionA", fold_in_a.get(fid, 1.0), 1.0)
        rows[fid] = _nb(rng, mu * fold * depth)
    counts = pd.DataFrame(rows, index=meta.index).T
    counts.index.name = "feature_id"
    return counts.astype(int)


def make_paired_assays(seed=7):
    rng = np.random.default_rng(seed)

    nascent_meta = _samples("PRO", 3, 4)
    steady_meta = _samples("SRNA", 3, 6)

    nascent_means = {f"MIR{f}": rng.uniform(300, 800) for f in FAMILIES}
    nascent_means["MIR900"] = 400.0
    nascent_means["SNORD3A"] = 500.0
    steady_means = {f"hsa-miR-{f}-5p": rng.uniform(800, 2000) for f in FAMILIES}
    steady_means[f"hsa-miR-{LOW_FAMILY}-5p"] = 1.0
    steady_means["hsa-miR-950-3p"] = 900.0
    steady_means["U6-snRNA"] = 3000.0

    steady_fold = {f"hsa-miR-{f}-5p": 8.0 for f in STABLE_FAMILIES + (LOW_FAMILY,)}
    steady_fold.update({f"hsa-miR-{f}-5p": 1.0 / 8.0 for f in UNSTABLE_FAMILIES})

    nascent_counts = _simulate(rng, nascent_means, {}, nascent_meta)
    steady_counts = _simulate(rng, steady_means, steady_fold, steady_meta)

    return {
        "nascent": (nascent_counts, nascent_meta),
        "steady": (steady_counts, steady_meta),
    }


@pytest.fixture(scope="session")
def paired_assays():
    return make_paired_assays()


@pytest.fixture(scope="session")
def aligned_assays(paired_assays):
    from mirna_ptr.preprocess import filter_and_align

    return {
        assay: filter_and_align(counts, meta, CONDITIONS, assay=assay)
        for assay, (counts, meta) in paired_assays.items()
    }


@pytest.fixture(scope="session")
def single_factor_results(aligned_assays):
    from mirna_ptr.single_factor import run_single_factor

    return {
        assay: run_single_factor(aligned, treatment="ConditionA", baseline="ConditionB")
        for assay, aligned in aligned_assays.items()
    }


@pytest.fixture(scope="session")
def two_factor_result(aligned_assays):
    from mirna_ptr.design import run_two_factor, stack_sample_metadata
    from mirna_ptr.merge import drop_incomplete, merge_count_matrices

    merged = merge_count_matrices(aligned_assays["nascent"].counts, aligned_assays["steady"].counts)
    complete = drop_incomplete(merged)
    stacked = stack_sample_metadata(aligned_assays["nascent"].metadata, aligned_assays["steady"].metadata)
    return run_two_factor(complete, stacked, baseline_condition="ConditionB")


@pytest.fixture
def write_assay_files(tmp_path):
    """Write an assay's counts and metadata as TSV files; returns their paths."""

    def _write(label, counts, meta):
        counts_path = tmp_path / f"{label}_counts.tsv"
        meta_path = tmp_path / f"{label}_samples.tsv"
        counts.to_csv(counts_path, sep="\t")
        meta.to_csv(meta_path, sep="\t")
        return counts_path, meta_path

    return _write
