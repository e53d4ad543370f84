"""Condition x assay model and its interaction term."""
import pandas as pd
import pytest

from conftest import STABLE_FAMILIES, UNSTABLE_FAMILIES
from mirna_ptr.design import (
    TWO_FACTOR_FORMULA,
    build_two_factor_metadata,
    interaction_coefficient,
    stack_sample_metadata,
)
from mirna_ptr.model import factor_levels


def _meta(samples, condition, assay):
    return pd.DataFrame({"condition": condition, "assay": assay}, index=samples)


def test_references_are_set_explicitly():
    # alphabetical order would make ConditionA and nascent the references
    stacked = stack_sample_metadata(
        _meta(["p1", "p2"], ["ConditionA", "ConditionB"], "nascent"),
        _meta(["s1", "s2"], ["ConditionA", "ConditionB"], "steady"),
    )
    meta = build_two_factor_metadata(stacked, baseline_condition="ConditionB", reference_assay="nascent")
    assert factor_levels(meta, "condition") == ["ConditionB", "ConditionA"]
    assert factor_levels(meta, "assay") == ["nascent", "steady"]

    coef, treatment, other = interaction_coefficient(meta)
    assert coef == "condition[T.ConditionA]:assay[T.steady]"
    assert (treatment, other) == ("ConditionA", "steady")


@pytest.mark.parametrize("steady_first", [False, True])
def test_references_do_not_depend_on_row_order(steady_first):
    # baseline condition listed last within each assay
    nascent = _meta(["p1", "p2", "p3"], ["ConditionA", "ConditionA", "ConditionB"], "nascent")
    steady = _meta(["s1", "s2", "s3"], ["ConditionA", "ConditionA", "ConditionB"], "steady")
    parts = (steady, nascent) if steady_first else (nascent, steady)

    meta = build_two_factor_metadata(
        stack_sample_metadata(*parts), baseline_condition="ConditionB", reference_assay="nascent"
    )
    assert factor_levels(meta, "condition") == ["ConditionB", "ConditionA"]
    assert factor_levels(meta, "assay") == ["nascent", "steady"]
    coef, _, _ = interaction_coefficient(meta)
    assert coef == "condition[T.ConditionA]:assay[T.steady]"


def test_stacking_rejects_shared_samples():
    with pytest.raises(ValueError, match="more than one assay"):
        stack_sample_metadata(
            _meta(["x1"], ["ConditionA"], "nascent"),
            _meta(["x1"], ["ConditionB"], "steady"),
        )


def test_stacking_requires_assay_column():
    with pytest.raises(ValueError, match="missing columns"):
        stack_sample_metadata(pd.DataFrame({"condition": ["ConditionA"]}, index=["p1"]))


def test_each_factor_needs_two_levels():
    stacked = stack_sample_metadata(
        _meta(["p1", "p2"], ["ConditionA", "ConditionB"], "nascent"),
        _meta(["s1", "s2"], ["ConditionA", "ConditionC"], "steady"),
    )
    with pytest.raises(ValueError, match="exactly two levels"):
        build_two_factor_metadata(stacked, baseline_condition="ConditionB")


def test_two_factor_fit(two_factor_result):
    res = two_factor_result
    assert res.fit.formula == TWO_FACTOR_FORMULA
    assert res.coefficient == "condition[T.ConditionA]:assay[T.steady]"
    assert res.fit.coefficient_names == [
        "Intercept",
        "condition[T.ConditionA]",
        "assay[T.steady]",
        "condition[T.ConditionA]:assay[T.steady]",
    ]
    assert list(res.table.columns[:3]) == ["key", "id_nascent", "id_steady"]
    # only keys seen in both assays survive the merge
    assert set(res.table["key"]) == {f"miR-{f}" for f in range(100, 130)}


def test_interaction_sign_tracks_post_transcriptional_change(two_factor_result):
    table = two_factor_result.table.set_index("key")
    for f in STABLE_FAMILIES:
        assert table.loc[f"miR-{f}", "log2FoldChange"] > 2
    for f in UNSTABLE_FAMILIES:
        assert table.loc[f"miR-{f}", "log2FoldChange"] < -2
