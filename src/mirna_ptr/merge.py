"""
Cross-assay merging on the canonical microRNA key.

Two joins are needed. Differential result tables are inner-joined on the
canonical key, after an expression floor on each side, to compare the
condition effect between assays. Count matrices are outer-joined on the
canonical key to feed the two-factor model. Each assay is first
collapsed to one row per key by summing the counts of identifiers sharing
it, so a key never yields more than one merged row. Each merged row is keyed by a
composite ``key|id_nascent|id_steady`` string so that both original
identifiers can be recovered later, and rows missing from either assay
are dropped before fitting.

Functions
---------
make_composite_key
    Join a canonical key and both assays' identifiers.
split_composite_key
    Recover the three components of a composite key.
split_composite_index
    Split every composite key of an index into columns.
collapse_by_key
    Sum the counts of identifiers sharing a canonical key.
split_identifiers
    Identifiers collapsed into one id component.
merge_result_tables
    Inner join of two single-factor result tables on the canonical key.
result_correlation
    Pearson and Spearman correlation of the two assays' log ratios.
merge_count_matrices
    Outer join of two count matrices on the canonical key.
drop_incomplete
    Keep only merged rows observed in both assays.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .config import Thresholds
from .identifiers import NASCENT, STEADY_STATE, Normalizer, canonical_keys, normalizer_for
from .single_factor import FEATURE_COL, KEY_COL

logger = logging.getLogger(__name__)

#: Reserved separator of composite keys; must not occur in any identifier.
SEPARATOR = "|"
#: Joins the identifiers of one assay that were summed into a single key.
ID_JOINER = ";"


def id_col(assay: str) -> str:
    return f"id_{assay}"


def make_composite_key(key: str, id_a: Optional[str], id_b: Optional[str], sep: str = SEPARATOR) -> str:
    """Join a canonical key and both assays' identifiers with ``sep``.

    A missing identifier becomes an empty component, so the key always has
    exactly three components.

    Raises
    ------
    ValueError
        If a component already contains ``sep``.

    Examples
    --------
    >>> make_composite_key("miR-24-2", "MIR24-2", "hsa-miR-24-2-3p")
    'miR-24-2|MIR24-2|hsa-miR-24-2-3p'
    """
    parts = []
    for part in (key, id_a, id_b):
        part = "" if part is None or (not isinstance(part, str) and pd.isna(part)) else str(part)
        if sep in part:
            raise ValueError(f"Identifier '{part}' contains the reserved separator '{sep}'.")
        parts.append(part)
    return sep.join(parts)


def split_composite_key(composite: str, sep: str = SEPARATOR) -> Tuple[str, str, str]:
    """Recover ``(key, id_a, id_b)`` from a composite key.

    Raises
    ------
    ValueError
        If the key does not have exactly three components.
    """
    parts = str(composite).split(sep)
    if len(parts) != 3:
        raise ValueError(f"Composite key '{composite}' has {len(parts)} components, expected 3.")
    return parts[0], parts[1], parts[2]


def split_composite_index(
    index: Sequence[str],
    assays: Tuple[str, str] = (NASCENT, STEADY_STATE),
    sep: str = SEPARATOR,
) -> pd.DataFrame:
    """Split composite keys into ``key``, ``id_<assay a>`` and ``id_<assay b>`` columns."""
    rows = [split_composite_key(c, sep=sep) for c in index]
    return pd.DataFrame(
        rows,
        index=pd.Index(index, name="composite_key"),
        columns=[KEY_COL, id_col(assays[0]), id_col(assays[1])],
    )


def merge_result_tables(
    table_a: pd.DataFrame,
    table_b: pd.DataFrame,
    thresholds: Thresholds = Thresholds(),
    assays: Tuple[str, str] = (NASCENT, STEADY_STATE),
) -> pd.DataFrame:
    """Inner join of two single-factor result tables on the canonical key.

    Each side is first restricted to features with a canonical key and
    ``baseMean > thresholds.correlation_floor``.

    Parameters
    ----------
    table_a, table_b : pd.DataFrame
        Result tables from :func:`~mirna_ptr.single_factor.run_single_factor`,
        holding ``feature_id``, ``key``, ``baseMean`` and ``log2FoldChange``.
    thresholds : Thresholds
        Supplies the expression floor.
    assays : tuple of str
        Labels used as column suffixes (``_nascent``, ``_steady``).

    Returns
    -------
    pd.DataFrame
        One row per matched pair with ``key`` and suffixed ``feature_id``,
        ``baseMean`` and ``log2FoldChange`` columns of both assays.
    """
    cols = [FEATURE_COL, KEY_COL, "baseMean", "log2FoldChange"]

    def _side(table: pd.DataFrame) -> pd.DataFrame:
        keep = table[KEY_COL].notna() & (table["baseMean"] > thresholds.correlation_floor)
        return table.loc[keep, cols].reset_index(drop=True)

    a, b = _side(table_a), _side(table_b)
    merged = a.merge(b, on=KEY_COL, how="inner", suffixes=(f"_{assays[0]}", f"_{assays[1]}"))
    logger.info(
        f"Result merge: {len(a)} {assays[0]} x {len(b)} {assays[1]} features above "
        f"baseMean {thresholds.correlation_floor:g} -> {len(merged)} matched rows"
    )
    return merged


def result_correlation(
    merged: pd.DataFrame,
    assays: Tuple[str, str] = (NASCENT, STEADY_STATE),
) -> Dict[str, float]:
    """Pearson and Spearman correlation of the two assays' log2 fold changes.

    Rows with an undefined fold change on either side are ignored. With
    fewer than three usable rows every statistic is NaN.
    """
    x_col, y_col = (f"log2FoldChange_{a}" for a in assays)
    sub = merged[[x_col, y_col]].dropna()
    n = len(sub)
    if n < 3:
        logger.warning(f"Only {n} matched features with defined fold changes; correlation undefined")
        return {"n": n, "pearson_r": np.nan, "pearson_p": np.nan, "spearman_r": np.nan, "spearman_p": np.nan}

    pr, pp = stats.pearsonr(sub[x_col], sub[y_col])
    sr, sp = stats.spearmanr(sub[x_col], sub[y_col])
    return {
        "n": n,
        "pearson_r": float(pr),
        "pearson_p": float(pp),
        "spearman_r": float(sr),
        "spearman_p": float(sp),
    }


def collapse_by_key(counts: pd.DataFrame, keys: Sequence[str], assay: str) -> pd.DataFrame:
    """Sum the counts of identifiers sharing a canonical key.

    Returns one row per key with ``key`` and ``id_<assay>`` columns ahead of
    the samples; ``id_<assay>`` lists the collapsed identifiers joined by
    :data:`ID_JOINER` in input order.
    """
    ids = pd.Index(counts.index).astype(str)
    bad = [i for i in ids if ID_JOINER in i]
    if bad:
        raise ValueError(f"{assay} identifiers contain the reserved joiner '{ID_JOINER}': {bad[:10]}")

    key_index = pd.Index(keys, name=KEY_COL)
    summed = counts.groupby(key_index, sort=False).sum()
    members = pd.Series(ids, index=key_index).groupby(level=0, sort=False).agg(ID_JOINER.join)
    if len(summed) < len(ids):
        logger.info(f"{assay}: summed {len(ids)} identifiers into {len(summed)} canonical keys")
    summed.insert(0, id_col(assay), members.loc[summed.index].to_numpy())
    return summed.reset_index()


def split_identifiers(ids: str) -> list[str]:
    """Identifiers collapsed into one ``id_<assay>`` component."""
    return [i for i in str(ids).split(ID_JOINER) if i]


def merge_count_matrices(
    counts_a: pd.DataFrame,
    counts_b: pd.DataFrame,
    assays: Tuple[str, str] = (NASCENT, STEADY_STATE),
    normalizers: Optional[Tuple[Normalizer, Normalizer]] = None,
    sep: str = SEPARATOR,
) -> pd.DataFrame:
    """Outer join of two count matrices on the canonical key.

    Parameters
    ----------
    counts_a, counts_b : pd.DataFrame
        Count matrices (features x samples) of the two assays, indexed by
        their native identifiers. Sample identifiers must not overlap.
    assays : tuple of str
        Assay labels of ``counts_a`` and ``counts_b``.
    normalizers : tuple of callables, optional
        Identifier normalizers; looked up from ``assays`` when omitted.
    sep : str
        Composite key separator.

    Returns
    -------
    pd.DataFrame
        One row per canonical key, indexed by composite key
        ``key|id_a|id_b``; columns are the samples of assay a followed by
        those of assay b. Identifiers of one assay sharing a key are summed
        and listed in the id component joined by ``;``. Counts of an assay
        in which the key was not found are NaN. Identifiers without a
        canonical key are left out.

    Raises
    ------
    ValueError
        If sample identifiers overlap or an identifier contains ``sep`` or ``;``.
    """
    overlap = sorted(set(map(str, counts_a.columns)) & set(map(str, counts_b.columns)))
    if overlap:
        raise ValueError(f"Sample identifiers occur in both assays: {overlap}")

    if normalizers is None:
        normalizers = (normalizer_for(assays[0]), normalizer_for(assays[1]))

    sides = []
    for counts, assay, norm in zip((counts_a, counts_b), assays, normalizers):
        ids = pd.Index(counts.index).astype(str)
        bad = [i for i in ids if sep in i]
        if bad:
            raise ValueError(f"{assay} identifiers contain the reserved separator '{sep}': {bad[:10]}")

        keys = canonical_keys(ids, norm)
        n_miss = int(keys.isna().sum())
        if n_miss:
            logger.warning(f"{assay}: {n_miss} identifiers without a canonical key left out of the merge")

        side = counts.copy()
        side.index = ids
        side = side.loc[keys.notna().to_numpy()]
        sides.append(collapse_by_key(side, keys.dropna().to_numpy(), assay))

    merged = sides[0].merge(sides[1], on=KEY_COL, how="outer")
    merged.index = [
        make_composite_key(k, a, b, sep=sep)
        for k, a, b in zip(merged[KEY_COL], merged[id_col(assays[0])], merged[id_col(assays[1])])
    ]
    merged.index.name = "composite_key"
    merged = merged.drop(columns=[KEY_COL, id_col(assays[0]), id_col(assays[1])])

    n_keys_a = sides[0][KEY_COL].nunique()
    n_keys_b = sides[1][KEY_COL].nunique()
    logger.info(
        f"Count merge: {n_keys_a} {assays[0]} keys, {n_keys_b} {assays[1]} keys -> {len(merged)} rows"
    )
    return merged


def drop_incomplete(merged: pd.DataFrame) -> pd.DataFrame:
    """Keep only merged rows with a count in every sample of both assays."""
    complete = merged.dropna(axis=0, how="any")
    dropped = len(merged) - len(complete)
    logger.info(f"Dropped {dropped} merged rows observed in only one assay; {len(complete)} remain")
    return complete.astype(int)
