"""
MicroRNA identifier normalization.

The two assays name microRNAs in different vocabularies. Small-RNA
sequencing reports isoform-qualified mature reads in miRBase style
(``hsa-miR-24-2-3p_-_1``), while the nascent-transcription counts are
keyed by gene symbols of the precursor loci (``MIR24-2``, ``MIR125B1``,
``MIRLET7A1``). Each vocabulary gets a small normalizer mapping its
identifiers onto a shared canonical key (``miR-24-2``, ``miR-125b-1``,
``let-7a-1``) that is used to join the assays.

Both normalizers are pure and idempotent: applying one to its own output
returns the output unchanged.

Functions
---------
normalize_steady_state_id
    Canonical key for a small-RNA sequencing read label.
normalize_nascent_id
    Canonical key for a gene-symbol-style transcriptional locus label.
normalizer_for
    Look up the normalizer registered for an assay label.
"""
from __future__ import annotations

import re
from typing import Callable, Dict, Optional

import pandas as pd

Normalizer = Callable[[str], Optional[str]]

NASCENT = "nascent"
STEADY_STATE = "steady"

_SPECIES_PREFIX = re.compile(r"^[a-z]{3,4}-(?=(?:mir|let)-)", re.IGNORECASE)
_MIR_ROOT = re.compile(r"^mir-", re.IGNORECASE)
_LET_ROOT = re.compile(r"^let-", re.IGNORECASE)
_ISOFORM_SUFFIX = re.compile(r"[_|.].*$")
_ARM_SUFFIX = re.compile(r"-[35]p\*?$", re.IGNORECASE)
_CORE_TOKEN = re.compile(r"(miR-\d+[a-z]*(?:-\d+)?|let-7[a-z]*(?:-\d+)?)")

_GENE_LET7 = re.compile(r"^(?:mir-?)?let-?7")
_GENE_MIR = re.compile(r"^mir-?(?=\d)")


def _is_missing(identifier: object) -> bool:
    return identifier is None or (not isinstance(identifier, str) and pd.isna(identifier))


def normalize_steady_state_id(identifier: str) -> Optional[str]:
    """Canonical key for a small-RNA sequencing read label.

    Strips the species prefix, unifies the casing of the ``miR``/``let``
    root, drops isoform-read suffixes (anything after ``_``, ``|`` or
    ``.``) and the 3p/5p arm annotation, then keeps only the core
    family-number-and-letter token with an optional paralog number.

    Parameters
    ----------
    identifier : str
        Read label such as ``"hsa-mir-24-2-3p_-_1"``.

    Returns
    -------
    str or None
        The canonical key, or None if no microRNA token can be found.

    Examples
    --------
    >>> normalize_steady_state_id("hsa-mir-24-2-3p_-_1")
    'miR-24-2'
    >>> normalize_steady_state_id("hsa-let-7a-5p")
    'let-7a'
    >>> normalize_steady_state_id("U6") is None
    True
    """
    if _is_missing(identifier):
        return None

    s = str(identifier).strip()
    s = _SPECIES_PREFIX.sub("", s)
    s = _ISOFORM_SUFFIX.sub("", s)
    s = _ARM_SUFFIX.sub("", s)

    if _MIR_ROOT.match(s):
        s = "miR-" + s[4:].lower()
    elif _LET_ROOT.match(s):
        s = "let-" + s[4:].lower()
    else:
        return None

    m = _CORE_TOKEN.match(s)
    if m is None:
        return None
    return m.group(1)


def _insert_paralog_hyphen(s: str) -> str:
    """Separate a trailing paralog number from the family letter(s).

    Gene symbols drop the hyphen miRBase puts before the paralog number,
    so ``125b1`` becomes ``125b-1`` and ``548aa1`` becomes ``548aa-1``.
    Only applies when the tail reads digit, letter(s), digit(s); anything
    else, including strings too short to carry that tail, is returned as is.
    """
    end = len(s)

    digits_start = end
    while digits_start > 0 and s[digits_start - 1].isdigit():
        digits_start -= 1
    if digits_start == end:
        return s

    letters_start = digits_start
    while letters_start > 0 and s[letters_start - 1].isalpha():
        letters_start -= 1
    if letters_start == digits_start or letters_start == 0:
        return s

    if not s[letters_start - 1].isdigit():
        return s
    return s[:digits_start] + "-" + s[digits_start:]


def normalize_nascent_id(identifier: str) -> str:
    """Canonical key for a gene-symbol-style transcriptional locus label.

    Lowercases the symbol, rewrites the ``MIR`` prefix as the ``miR-``
    root, maps ``MIRLET7`` onto the ``let-7`` family and reinserts the
    hyphen before a trailing paralog number.

    Examples
    --------
    >>> normalize_nascent_id("MIR125B1")
    'miR-125b-1'
    >>> normalize_nascent_id("MIRLET7A1")
    'let-7a-1'
    >>> normalize_nascent_id("MIR24-2")
    'miR-24-2'
    """
    if _is_missing(identifier):
        return ""

    s = str(identifier).strip().lower()
    s = _GENE_LET7.sub("let-7", s)
    s = _GENE_MIR.sub("miR-", s)
    return _insert_paralog_hyphen(s)


NORMALIZERS: Dict[str, Normalizer] = {
    NASCENT: normalize_nascent_id,
    STEADY_STATE: normalize_steady_state_id,
}


def normalizer_for(assay: str) -> Normalizer:
    """Return the identifier normalizer registered for ``assay``."""
    try:
        return NORMALIZERS[assay]
    except KeyError:
        raise ValueError(
            f"No identifier normalizer for assay '{assay}'. "
            f"Known assays: {sorted(NORMALIZERS)}"
        ) from None


def canonical_keys(identifiers, normalizer: Normalizer) -> pd.Series:
    """Apply ``normalizer`` to each identifier; misses become None."""
    idx = pd.Index(identifiers)
    keys = [normalizer(i) or None for i in idx]
    return pd.Series(keys, index=idx, dtype=object, name="key")
