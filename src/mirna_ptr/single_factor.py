"""
Single-assay, two-condition differential expression.

Wraps the per-feature GLM engine for one assay: relevels the condition so
the baseline is the reference, fits ``~ condition`` and extracts the
treatment-vs-baseline coefficient. The result table gets the original
feature identifier back as a column plus the canonical key used to join
the assays.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import pandas as pd

from .contrasts import coef_name_for_level
from .identifiers import canonical_keys, normalizer_for
from .model import FitResult, fit_nb_glm_per_feature, relevel
from .preprocess import AlignedAssay
from .stats import results_table

logger = logging.getLogger(__name__)

FEATURE_COL = "feature_id"
KEY_COL = "key"


@dataclass
class SingleFactorResult:
    """Differential result of one assay."""

    assay: str
    #: Per-feature results with ``feature_id`` and ``key`` columns added.
    table: pd.DataFrame
    #: Size-factor-normalized counts, features x samples.
    normalized: pd.DataFrame
    fit: FitResult


def run_single_factor(
    aligned: AlignedAssay,
    treatment: str,
    baseline: str,
    max_iter: int = 8,
) -> SingleFactorResult:
    """Differential expression of ``treatment`` vs ``baseline`` within one assay.

    Parameters
    ----------
    aligned : AlignedAssay
        Counts and metadata from :func:`~mirna_ptr.preprocess.filter_and_align`.
    treatment : str
        Numerator condition of the log ratio.
    baseline : str
        Reference condition.
    max_iter : int, default 8
        Maximum dispersion iterations per feature.

    Returns
    -------
    SingleFactorResult
    """
    meta = relevel(aligned.metadata, "condition", baseline)
    fit = fit_nb_glm_per_feature(aligned.counts, meta, "~ condition", max_iter=max_iter)

    table = results_table(fit, coef=coef_name_for_level("condition", treatment))
    table = add_identifier_columns(table, aligned.assay)

    n_miss = int(table[KEY_COL].isna().sum())
    if n_miss:
        logger.warning(f"{aligned.assay}: {n_miss} identifiers have no canonical key")
    logger.info(
        f"{aligned.assay}: {treatment} vs {baseline}, "
        f"{int(table['pvalue'].notna().sum())} of {len(table)} features tested"
    )
    return SingleFactorResult(assay=aligned.assay, table=table, normalized=fit.normalized, fit=fit)


def add_identifier_columns(table: pd.DataFrame, assay: str) -> pd.DataFrame:
    """Restore the feature identifier as a column and add its canonical key."""
    out = table.copy()
    out.insert(0, FEATURE_COL, out.index.astype(str))
    out.insert(1, KEY_COL, canonical_keys(out.index, normalizer_for(assay)).to_numpy())
    return out
