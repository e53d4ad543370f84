from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

logger = logging.getLogger(__name__)

_EXCEL_SUFFIXES = {".xlsx", ".xls"}


def _read_table(path: Path, sheet_name: str | int = 0) -> pd.DataFrame:
    """Read a delimited or Excel table; tab vs comma is sniffed from the suffix."""
    suffix = "".join(path.suffixes[-2:]) if path.suffix == ".gz" else path.suffix
    suffix = suffix.replace(".gz", "").lower()
    if suffix in _EXCEL_SUFFIXES:
        return pd.read_excel(path, sheet_name=sheet_name)
    sep = "," if suffix == ".csv" else "\t"
    return pd.read_csv(path, sep=sep)


def load_counts_matrix(
    counts_path: str | Path,
    feature_id_col: Optional[str] = None,
    sheet_name: str | int = 0,
) -> pd.DataFrame:
    """
    Reads a raw count table (features x samples).

    Expected:
      - one column holding feature identifiers (``feature_id_col``, or the
        first column when not given).
      - remaining columns are sample identifiers, values are raw integer counts.
    """
    counts_path = Path(counts_path)
    df = _norm_cols(_read_table(counts_path, sheet_name=sheet_name))

    if feature_id_col is not None:
        if feature_id_col not in df.columns:
            raise ValueError(f"{counts_path} missing '{feature_id_col}' column.")
        id_col = feature_id_col
    else:
        id_col = df.columns[0]

    df[id_col] = df[id_col].astype(str)
    df = df.set_index(id_col)
    df.index.name = "feature_id"

    if df.index.duplicated().any():
        dups = df.index[df.index.duplicated()].unique().tolist()
        raise ValueError(f"{counts_path} has duplicated feature identifiers: {dups[:10]}")

    # coerce to int raw counts
    df = df.apply(pd.to_numeric, errors="raise").fillna(0)
    if (df < 0).any().any():
        raise ValueError(f"{counts_path} contains negative counts.")
    df = df.round().astype(int)

    logger.info(f"Loaded counts {counts_path.name}: {df.shape[0]} features x {df.shape[1]} samples")
    return df


def load_sample_metadata(
    metadata_path: str | Path,
    sample_id_col: str = "sample_id",
    required: Iterable[str] = ("condition",),
    sheet_name: str | int = 0,
) -> pd.DataFrame:
    """
    Reads a sample metadata table, one row per sample.

    Expected columns:
      sample_id, condition (plus anything else, carried through)
    """
    metadata_path = Path(metadata_path)
    smeta = _norm_cols(_read_table(metadata_path, sheet_name=sheet_name))

    id_col_found = None
    if sample_id_col in smeta.columns:
        id_col_found = sample_id_col
    else:
        # unnamed index column written by DataFrame.to_csv(index=True)
        for candidate in ["Unnamed: 0", "index"]:
            if candidate in smeta.columns:
                id_col_found = candidate
                break

    if id_col_found is None:
        raise ValueError(f"{metadata_path} missing '{sample_id_col}' column.")

    smeta[id_col_found] = smeta[id_col_found].astype(str).str.strip()
    smeta = smeta.set_index(id_col_found)
    smeta.index.name = "sample_id"

    missing = [c for c in required if c not in smeta.columns]
    if missing:
        raise ValueError(f"{metadata_path} missing required columns: {missing}")

    for c in required:
        smeta[c] = smeta[c].astype(str).str.strip()

    return smeta


def load_annotation(annotation_path: str | Path, name_col: str = "name") -> pd.DataFrame:
    """
    Reads a BED-like locus annotation (chrom, start, end, name[, strand]).

    Headerless 4- to 6-column BED files are accepted as well.
    """
    annotation_path = Path(annotation_path)
    ann = pd.read_csv(annotation_path, sep="\t", comment="#", header=None)
    if str(ann.iloc[0, 1]).isdigit():
        cols = ["chrom", "start", "end", name_col, "score", "strand"][: ann.shape[1]]
        ann.columns = cols
    else:
        ann.columns = [_norm_col(c) for c in ann.iloc[0]]
        ann = ann.iloc[1:].reset_index(drop=True)

    required = ["chrom", "start", "end", name_col]
    missing = [c for c in required if c not in ann.columns]
    if missing:
        raise ValueError(f"{annotation_path} missing required columns: {missing}")

    ann["start"] = pd.to_numeric(ann["start"], errors="raise").astype(int)
    ann["end"] = pd.to_numeric(ann["end"], errors="raise").astype(int)
    if "strand" not in ann.columns:
        ann["strand"] = "+"
    return ann.set_index(name_col)


def write_table(df: pd.DataFrame, out_path: str | Path, index: bool = True) -> Path:
    """
    Write ``df`` as a tab-delimited table.

    The table goes to a temporary file next to ``out_path`` and is moved
    into place once complete, so readers never see a partial file.
    """
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    tmp = out_path.with_name(out_path.name + ".tmp")
    try:
        df.to_csv(tmp, sep="\t", index=index)
        os.replace(tmp, out_path)
    finally:
        if tmp.exists():
            tmp.unlink()
    logger.info(f"Wrote {out_path} ({len(df)} rows)")
    return out_path


def _norm_col(c: object) -> str:
    # strip whitespace; preserve internal chars
    return str(c).strip()


def _norm_cols(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [_norm_col(c) for c in df.columns]
    return df
