"""
Post-transcriptional regulation calls from the interaction term.

Two predicates are applied to the interaction result:

- candidate regulated: ``pvalue < 0.05`` OR ``padj < 0.2``, a broad screen;
- stable / unstable: the feature's identifier passes the expression
  floor (``baseMean > 100``) in *both* assays' own single-factor tables
  (for a key summed from several identifiers, any one of them will do),
  AND ``pvalue < 0.05`` AND ``padj < 0.2``; the sign of the interaction
  log ratio separates stable (> 0) from unstable (< 0).

All cutoffs come from :class:`~mirna_ptr.config.Thresholds`.
"""
from __future__ import annotations

import logging
from typing import Mapping, Tuple

import pandas as pd

from .config import Thresholds
from .identifiers import NASCENT, STEADY_STATE
from .merge import id_col, split_identifiers
from .single_factor import FEATURE_COL

logger = logging.getLogger(__name__)

STABLE = "post_transcriptionally_stable"
UNSTABLE = "post_transcriptionally_unstable"
NOT_CLASSIFIED = "not_classified"


def expressed_features(table: pd.DataFrame, thresholds: Thresholds = Thresholds()) -> set[str]:
    """Identifiers of a single-factor table with ``baseMean`` above the expression floor."""
    keep = table["baseMean"] > thresholds.expression_floor
    return set(table.loc[keep, FEATURE_COL].astype(str))


def is_candidate(table: pd.DataFrame, thresholds: Thresholds = Thresholds()) -> pd.Series:
    """Broad screen: raw p-value OR adjusted p-value below its cutoff."""
    return (table["pvalue"] < thresholds.pvalue) | (table["padj"] < thresholds.padj)


def classify_interaction(
    interaction: pd.DataFrame,
    single_factor_tables: Mapping[str, pd.DataFrame],
    thresholds: Thresholds = Thresholds(),
    assays: Tuple[str, str] = (NASCENT, STEADY_STATE),
) -> pd.DataFrame:
    """Label every interaction-term row.

    Parameters
    ----------
    interaction : pd.DataFrame
        Table of :class:`~mirna_ptr.design.TwoFactorResult`, with
        ``id_<assay>`` columns and ``log2FoldChange``, ``pvalue``, ``padj``.
    single_factor_tables : mapping
        Single-factor result table per assay label.
    thresholds : Thresholds
    assays : tuple of str

    Returns
    -------
    pd.DataFrame
        ``interaction`` with added columns ``expressed`` (passes the floor
        in both assays), ``candidate`` (broad screen) and ``call`` (stable,
        unstable or not classified).
    """
    out = interaction.copy()

    expressed = pd.Series(True, index=out.index)
    for assay in assays:
        ok = expressed_features(single_factor_tables[assay], thresholds)
        expressed &= out[id_col(assay)].map(lambda ids: any(i in ok for i in split_identifiers(ids)))

    strict = (out["pvalue"] < thresholds.pvalue) & (out["padj"] < thresholds.padj)
    lfc = out["log2FoldChange"]
    stable = expressed & strict & (lfc > 0)
    unstable = expressed & strict & (lfc < 0)

    out["expressed"] = expressed
    out["candidate"] = is_candidate(out, thresholds)
    out["call"] = NOT_CLASSIFIED
    out.loc[stable, "call"] = STABLE
    out.loc[unstable, "call"] = UNSTABLE
    return out


def summarize_calls(labeled: pd.DataFrame) -> pd.Series:
    """Counts of each category of a :func:`classify_interaction` table."""
    summary = pd.Series(
        {
            "tested": int(labeled["pvalue"].notna().sum()),
            "post_transcriptionally_regulated": int(labeled["candidate"].sum()),
            STABLE: int((labeled["call"] == STABLE).sum()),
            UNSTABLE: int((labeled["call"] == UNSTABLE).sum()),
            NOT_CLASSIFIED: int((labeled["call"] == NOT_CLASSIFIED).sum()),
        },
        name="count",
    )
    for name, n in summary.items():
        logger.info(f"{name}: {n}")
    return summary
