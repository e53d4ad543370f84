"""
Two-factor condition x assay model.

The merged count matrix of both assays is fitted with

    ~ condition + assay + condition:assay

where the condition reference is the baseline condition and the assay
reference is the nascent-transcription assay. Both references are set
explicitly; left to itself patsy takes the alphabetically first level.
The interaction coefficient ``condition[T.<treatment>]:assay[T.steady]``
measures how much more (or less) the condition changes steady-state
abundance than transcription, i.e. post-transcriptional regulation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

import pandas as pd

from .contrasts import interaction_coef_name
from .identifiers import NASCENT, STEADY_STATE
from .merge import split_composite_index
from .model import FitResult, factor_levels, fit_nb_glm_per_feature, relevel
from .stats import results_table

logger = logging.getLogger(__name__)

TWO_FACTOR_FORMULA = "~ condition + assay + condition:assay"


@dataclass
class TwoFactorResult:
    """Interaction-term result of the two-factor model."""

    #: Per merged feature: key, both original identifiers and the interaction statistics.
    table: pd.DataFrame
    #: The releveled, stacked sample metadata used for fitting.
    metadata: pd.DataFrame
    #: Name of the extracted interaction coefficient.
    coefficient: str
    fit: FitResult


def stack_sample_metadata(*metadata: pd.DataFrame) -> pd.DataFrame:
    """Row-stack per-assay sample metadata, keeping ``condition`` and ``assay``.

    Raises
    ------
    ValueError
        If a sample identifier occurs more than once or a table lacks the
        ``condition`` or ``assay`` column.
    """
    parts = []
    for m in metadata:
        missing = [c for c in ("condition", "assay") if c not in m.columns]
        if missing:
            raise ValueError(f"Sample metadata missing columns {missing}")
        part = m[["condition", "assay"]].astype(str)
        part.index = pd.Index(m.index).astype(str)
        parts.append(part)

    stacked = pd.concat(parts, axis=0)
    stacked.index.name = "sample_id"
    if stacked.index.duplicated().any():
        dups = stacked.index[stacked.index.duplicated()].unique().tolist()
        raise ValueError(f"Sample identifiers occur in more than one assay: {dups}")
    return stacked


def build_two_factor_metadata(
    stacked: pd.DataFrame,
    baseline_condition: str,
    reference_assay: str = NASCENT,
) -> pd.DataFrame:
    """Relevel condition and assay so the baselines come first.

    Raises
    ------
    ValueError
        If either factor does not have exactly two levels, or a reference
        is not one of them.
    """
    meta = relevel(stacked, "condition", baseline_condition)
    meta = relevel(meta, "assay", reference_assay)
    for factor in ("condition", "assay"):
        levels = factor_levels(meta, factor)
        if len(levels) != 2:
            raise ValueError(f"Factor '{factor}' must have exactly two levels, got {levels}")
    return meta


def interaction_coefficient(meta: pd.DataFrame) -> Tuple[str, str, str]:
    """(coefficient name, treatment condition, non-reference assay) of the interaction term."""
    treatment = factor_levels(meta, "condition")[1]
    other_assay = factor_levels(meta, "assay")[1]
    return interaction_coef_name("condition", treatment, "assay", other_assay), treatment, other_assay


def run_two_factor(
    merged_counts: pd.DataFrame,
    stacked_metadata: pd.DataFrame,
    baseline_condition: str,
    reference_assay: str = NASCENT,
    assays: Tuple[str, str] = (NASCENT, STEADY_STATE),
    max_iter: int = 8,
) -> TwoFactorResult:
    """Fit the condition x assay model and extract the interaction term.

    Parameters
    ----------
    merged_counts : pd.DataFrame
        Complete merged counts from :func:`~mirna_ptr.merge.drop_incomplete`,
        indexed by composite key.
    stacked_metadata : pd.DataFrame
        Output of :func:`stack_sample_metadata` covering every column of
        ``merged_counts``.
    baseline_condition : str
        Reference level of ``condition``.
    reference_assay : str, default "nascent"
        Reference level of ``assay``.
    assays : tuple of str
        Assay order of the composite key components.
    max_iter : int, default 8
        Maximum dispersion iterations per feature.

    Returns
    -------
    TwoFactorResult
        The table is indexed by composite key with ``key``, ``id_<assay>``
        columns followed by the result columns of the interaction term.
    """
    meta = build_two_factor_metadata(stacked_metadata, baseline_condition, reference_assay)
    fit = fit_nb_glm_per_feature(merged_counts, meta, TWO_FACTOR_FORMULA, max_iter=max_iter)
    logger.info(f"Two-factor coefficients: {fit.coefficient_names}")

    coef, treatment, other_assay = interaction_coefficient(meta)
    logger.info(
        f"Extracting '{coef}': {treatment} vs {baseline_condition} effect in "
        f"{other_assay} relative to {reference_assay}"
    )
    res = results_table(fit, coef=coef)
    ids = split_composite_index(res.index, assays=assays)
    table = pd.concat([ids, res.set_axis(ids.index)], axis=1)
    return TwoFactorResult(table=table, metadata=meta, coefficient=coef, fit=fit)
