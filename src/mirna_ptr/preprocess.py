"""
Count matrix preprocessing.

This module restricts a count matrix and its sample metadata to the
compared conditions and aligns them sample by sample, computes
median-of-ratios size factors and normalized counts, and filters
low-abundance features.

Functions
---------
filter_and_align
    Restrict counts and metadata to two conditions and align columns to rows.
check_alignment
    Raise if the counts columns and metadata rows disagree.
median_ratio_size_factors
    Per-sample size factors by the median-of-ratios method.
normalize_counts
    Divide raw counts by per-sample size factors.
filter_features_by_total_counts
    Filter features by minimum total counts.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class AlignmentError(ValueError):
    """Raised when a count matrix and its sample metadata do not describe the same samples."""


@dataclass(frozen=True)
class AlignedAssay:
    """Count matrix whose columns match the metadata rows one to one, in order."""

    #: Assay label (``nascent`` or ``steady``).
    assay: str
    #: Raw counts, features x samples.
    counts: pd.DataFrame
    #: Sample metadata indexed by sample_id, with ``condition`` and ``assay`` columns.
    metadata: pd.DataFrame


def check_alignment(counts: pd.DataFrame, metadata: pd.DataFrame, where: str = "") -> None:
    """Raise :class:`AlignmentError` unless counts columns equal metadata rows as sets."""
    cols = pd.Index(counts.columns).astype(str)
    rows = pd.Index(metadata.index).astype(str)

    problems = []
    if cols.duplicated().any():
        problems.append(f"duplicated count columns {cols[cols.duplicated()].unique().tolist()}")
    if rows.duplicated().any():
        problems.append(f"duplicated metadata samples {rows[rows.duplicated()].unique().tolist()}")

    no_counts = sorted(set(rows) - set(cols))
    no_meta = sorted(set(cols) - set(rows))
    if no_counts:
        problems.append(f"metadata samples without a count column: {no_counts}")
    if no_meta:
        problems.append(f"count columns without a metadata row: {no_meta}")

    if problems:
        prefix = f"{where}: " if where else ""
        raise AlignmentError(prefix + "; ".join(problems))


def filter_and_align(
    counts: pd.DataFrame,
    metadata: pd.DataFrame,
    conditions: Sequence[str],
    assay: str,
    condition_col: str = "condition",
) -> AlignedAssay:
    """Restrict an assay to two conditions and align counts to metadata.

    Metadata rows are kept when their condition is one of ``conditions``;
    count columns are kept when they name a retained sample, then reordered
    so that column order equals metadata row order.

    Parameters
    ----------
    counts : pd.DataFrame
        Raw count matrix, features x samples.
    metadata : pd.DataFrame
        Sample metadata indexed by sample identifier.
    conditions : sequence of str
        Exactly two condition labels to retain.
    assay : str
        Assay label stored in the ``assay`` column of the output metadata.
    condition_col : str, default "condition"
        Metadata column holding the condition label.

    Returns
    -------
    AlignedAssay

    Raises
    ------
    AlignmentError
        If the sample identifiers of counts and metadata disagree, or if a
        retained condition has no samples.
    ValueError
        If ``conditions`` is not two distinct labels.

    Examples
    --------
    >>> counts = pd.DataFrame({"s2": [1, 2], "s1": [3, 4], "s3": [5, 6]}, index=["f1", "f2"])
    >>> meta = pd.DataFrame({"condition": ["A", "B", "C"]}, index=["s1", "s2", "s3"])
    >>> aligned = filter_and_align(counts, meta, ["A", "B"], assay="steady")
    >>> list(aligned.counts.columns)
    ['s1', 's2']
    """
    conditions = list(dict.fromkeys(conditions))
    if len(conditions) != 2:
        raise ValueError(f"Exactly two distinct conditions are required, got {conditions}.")
    if condition_col not in metadata.columns:
        raise ValueError(f"Sample metadata missing '{condition_col}' column.")

    counts = counts.copy()
    counts.columns = pd.Index(counts.columns).astype(str)
    metadata = metadata.copy()
    metadata.index = pd.Index(metadata.index).astype(str)

    # every sample must be described on both sides before anything is dropped
    check_alignment(counts, metadata, where=assay)

    keep = metadata[condition_col].astype(str).isin(conditions)
    smeta = metadata.loc[keep].copy()
    empty = [c for c in conditions if not (smeta[condition_col] == c).any()]
    if empty:
        raise AlignmentError(f"{assay}: no samples for condition(s) {empty}")

    counts = counts.loc[:, counts.columns.isin(smeta.index)]
    counts = counts.reindex(columns=smeta.index)
    check_alignment(counts, smeta, where=assay)

    smeta = smeta.rename(columns={condition_col: "condition"})
    smeta["assay"] = assay

    per_condition = smeta["condition"].value_counts()
    groups = ", ".join(f"{c}={int(per_condition.get(c, 0))}" for c in conditions)
    logger.info(f"{assay}: {counts.shape[0]} features x {counts.shape[1]} samples ({groups})")
    return AlignedAssay(assay=assay, counts=counts, metadata=smeta)


def median_ratio_size_factors(counts: pd.DataFrame) -> pd.Series:
    """Per-sample size factors by the median-of-ratios method.

    For each sample, the size factor is the median over features of the
    ratio between its count and the feature's geometric mean across
    samples. Features with a zero in any sample are excluded.

    Parameters
    ----------
    counts : pd.DataFrame
        Raw counts, features x samples.

    Returns
    -------
    pd.Series
        Size factor per sample, indexed like ``counts.columns``.

    Raises
    ------
    ValueError
        If no feature is non-zero in every sample.

    Examples
    --------
    >>> counts = pd.DataFrame({"S1": [10, 20], "S2": [20, 40]}, index=["a", "b"])
    >>> median_ratio_size_factors(counts).round(3).tolist()
    [0.707, 1.414]
    """
    values = counts.to_numpy(dtype=float)
    positive = (values > 0).all(axis=1)
    if not positive.any():
        raise ValueError("Cannot compute size factors: every feature has a zero count in some sample.")

    log_values = np.log(values[positive])
    log_geo_means = log_values.mean(axis=1, keepdims=True)
    sf = np.exp(np.median(log_values - log_geo_means, axis=0))
    return pd.Series(sf, index=counts.columns, name="size_factor")


def normalize_counts(counts: pd.DataFrame, size_factors: pd.Series) -> pd.DataFrame:
    """Divide raw counts by per-sample size factors."""
    sf = size_factors.reindex(counts.columns)
    if sf.isna().any() or (sf <= 0).any():
        raise ValueError("Size factors must be positive and cover every sample.")
    return counts.astype(float).div(sf, axis=1)


def filter_features_by_total_counts(
    counts_wide: pd.DataFrame,
    min_total: int = 0,
) -> pd.DataFrame:
    """Filter features by minimum total counts across all samples.

    Removes features (rows) with fewer than ``min_total`` counts summed
    across samples. ``min_total=0`` keeps everything.

    Examples
    --------
    >>> counts = pd.DataFrame(
    ...     {"S1": [10, 100], "S2": [5, 200]},
    ...     index=["low", "high"]
    ... )
    >>> filtered = filter_features_by_total_counts(counts, min_total=50)
    >>> list(filtered.index)
    ['high']
    """
    totals = counts_wide.sum(axis=1)
    keep = totals[totals >= min_total].index
    dropped = len(counts_wide) - len(keep)
    if dropped:
        logger.info(f"Dropped {dropped} features with total count < {min_total}")
    return counts_wide.loc[keep]
