"""Per-feature negative binomial GLM engine."""
import numpy as np
import pandas as pd
import pytest

from mirna_ptr.diagnostics import (
    dispersion_summary,
    estimate_alpha_nb2_moments,
    sample_qc,
    zero_fraction,
)
from mirna_ptr.model import build_design, factor_levels, fit_nb_glm_per_feature, relevel
from mirna_ptr.preprocess import AlignmentError


def _two_group(seed=3, n_per_group=4, fold=4.0, n_features=12):
    rng = np.random.default_rng(seed)
    samples = [f"s{i}" for i in range(2 * n_per_group)]
    meta = pd.DataFrame(
        {"condition": ["treated"] * n_per_group + ["control"] * n_per_group},
        index=pd.Index(samples, name="sample_id"),
    )
    mu = rng.uniform(200, 600, size=(n_features, 1)) * np.ones((1, len(samples)))
    mu[0, :n_per_group] *= fold
    alpha = 0.02
    counts = rng.negative_binomial(1.0 / alpha, 1.0 / (1.0 + alpha * mu))
    counts = pd.DataFrame(counts, index=[f"f{i}" for i in range(n_features)], columns=samples)
    counts.loc["zero"] = 0
    return counts, meta


def test_relevel_puts_reference_first():
    meta = pd.DataFrame({"condition": ["A", "B", "A", "C"]})
    out = relevel(meta, "condition", "B")
    assert factor_levels(out, "condition") == ["B", "A", "C"]
    # input untouched
    assert not isinstance(meta["condition"].dtype, pd.CategoricalDtype)


def test_relevel_rejects_unknown_level_or_column():
    meta = pd.DataFrame({"condition": ["A", "B"]})
    with pytest.raises(ValueError, match="not among levels"):
        relevel(meta, "condition", "Z")
    with pytest.raises(ValueError, match="missing factor column"):
        relevel(meta, "batch", "A")


def test_design_columns_follow_reference_level():
    meta = pd.DataFrame({"condition": ["control", "treated", "control", "treated"]})
    X = build_design(relevel(meta, "condition", "treated"), "~ condition")
    assert list(X.columns) == ["Intercept", "condition[T.control]"]
    X = build_design(relevel(meta, "condition", "control"), "~ condition")
    assert list(X.columns) == ["Intercept", "condition[T.treated]"]


def test_rank_deficient_design_is_rejected():
    # assay is fully confounded with condition
    meta = pd.DataFrame(
        {"condition": ["A", "A", "B", "B"], "assay": ["x", "x", "y", "y"]}
    )
    with pytest.raises(ValueError, match="rank deficient"):
        build_design(meta, "~ condition + assay")


def test_fit_recovers_planted_effect():
    counts, meta = _two_group()
    fit = fit_nb_glm_per_feature(counts, relevel(meta, "condition", "control"), "~ condition")

    assert fit.coefficient_names == ["Intercept", "condition[T.treated]"]
    assert fit.cov.shape == (len(counts), 2, 2)
    effect = fit.params.loc["f0", "condition[T.treated]"]
    assert abs(effect - np.log(4.0)) < 0.35
    assert fit.converged.loc["f0"]
    assert (fit.alpha.dropna() >= 1e-4).all()


def test_all_zero_feature_is_nan_not_fatal():
    counts, meta = _two_group()
    fit = fit_nb_glm_per_feature(counts, relevel(meta, "condition", "control"), "~ condition")

    assert fit.params.loc["zero"].isna().all()
    assert not fit.converged.loc["zero"]
    assert fit.base_mean.loc["zero"] == 0
    assert fit.n_failed == 0
    assert fit.converged.drop("zero").all()


def test_fit_reorders_metadata_to_counts():
    counts, meta = _two_group()
    shuffled = meta.iloc[::-1]
    fit = fit_nb_glm_per_feature(counts, relevel(shuffled, "condition", "control"), "~ condition")
    assert list(fit.design.index) == list(counts.columns)


def test_fit_requires_aligned_samples():
    counts, meta = _two_group()
    with pytest.raises(AlignmentError):
        fit_nb_glm_per_feature(counts.drop(columns=["s0"]), meta, "~ condition")


def test_size_factors_are_used_as_offset():
    counts, meta = _two_group()
    doubled = counts.copy()
    doubled[["s0", "s1"]] *= 2
    meta = relevel(meta, "condition", "control")

    fit = fit_nb_glm_per_feature(counts, meta, "~ condition")
    fit2 = fit_nb_glm_per_feature(doubled, meta, "~ condition")
    ratio = fit.size_factors["s0"] / fit.size_factors["s2"]
    ratio2 = fit2.size_factors["s0"] / fit2.size_factors["s2"]
    assert np.isclose(ratio2, 2 * ratio)
    assert np.allclose(fit.normalized["s0"], counts["s0"] / fit.size_factors["s0"])


def test_moment_dispersion_estimate():
    rng = np.random.default_rng(11)
    mu = np.full(4000, 200.0)
    alpha = 0.1
    y = rng.negative_binomial(1.0 / alpha, 1.0 / (1.0 + alpha * mu))
    est = estimate_alpha_nb2_moments(y, mu)
    assert abs(est - alpha) < 0.02

    # Poisson-like data clips at zero
    assert estimate_alpha_nb2_moments(np.array([10, 10, 10]), np.array([10, 10, 10])) == 0.0


def test_zero_fraction_per_sample():
    counts = pd.DataFrame({"S1": [0, 10, 0, 5], "S2": [1, 0, 3, 0]})
    assert zero_fraction(counts).tolist() == [0.5, 0.5]


def test_sample_qc_columns():
    counts = pd.DataFrame({"S1": [10, 20, 0], "S2": [20, 40, 5]})
    qc = sample_qc(counts)
    assert list(qc.columns) == ["total", "zero_fraction", "size_factor"]
    assert qc["total"].tolist() == [30, 65]
    assert np.isclose(qc.loc["S2", "size_factor"] / qc.loc["S1", "size_factor"], 2.0)


def test_dispersion_summary_skips_unfitted():
    alpha = pd.Series([0.01, 0.02, np.nan, 0.03, 0.04])
    summary = dispersion_summary(alpha)
    assert summary["n"] == 4
    assert np.isclose(summary["median"], 0.025)
    assert dispersion_summary(pd.Series([np.nan]))["n"] == 0
