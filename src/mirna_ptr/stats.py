"""
Statistical utilities for result extraction and multiple comparison correction.

Functions
---------
bh_fdr
    Benjamini-Hochberg FDR adjustment.
results_table
    Per-feature differential result for a named coefficient or contrast.
label_single_factor
    Up / down / not-significant call for a single-factor result table.
"""
from __future__ import annotations

import math
from typing import Optional

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

from .config import Thresholds
from .contrasts import coefficient_vector, wald_contrast

RESULT_COLUMNS = ["baseMean", "log2FoldChange", "lfcSE", "stat", "pvalue", "padj"]

UP = "up"
DOWN = "down"
NOT_SIGNIFICANT = "not_significant"


def bh_fdr(pvals) -> np.ndarray:
    """Benjamini-Hochberg adjusted p-values over the finite entries of ``pvals``.

    Features without a fit carry a NaN p-value; they are not counted as
    tests and their adjusted value stays NaN, as DESeq2 reports them.

    Examples
    --------
    >>> bh_fdr(np.array([0.001, np.nan, 0.01, 0.05, 0.1]))
    array([0.004     ,        nan, 0.02      , 0.06666667, 0.1       ])
    """
    pvals = np.asarray(pvals, dtype=float)
    qvals = np.full(pvals.shape, np.nan)
    ok = np.isfinite(pvals)
    if ok.any():
        _, qvals[ok], _, _ = multipletests(pvals[ok], method="fdr_bh")
    return qvals


def results_table(
    fit,
    coef: Optional[str] = None,
    contrast: Optional[np.ndarray] = None,
    *,
    log_base: float = 2.0,
) -> pd.DataFrame:
    """Per-feature differential result for a named coefficient or contrast.

    Parameters
    ----------
    fit : FitResult
        Fitted model from :func:`~mirna_ptr.model.fit_nb_glm_per_feature`.
    coef : str, optional
        Name of the coefficient to test (see ``fit.coefficient_names``).
    contrast : np.ndarray, optional
        Contrast vector over ``fit.data_cols``; used when ``coef`` is None.
    log_base : float, default 2.0
        Base of the reported fold change.

    Returns
    -------
    pd.DataFrame
        Indexed like the count matrix, with columns
        - baseMean: mean of normalized counts
        - log2FoldChange: effect in ``log_base`` units
        - lfcSE: its standard error
        - stat: Wald statistic
        - pvalue: raw Wald p-value
        - padj: BH-adjusted p-value

        Features without a usable fit carry NaN in every column but baseMean.

    Raises
    ------
    KeyError
        If ``coef`` is not among the fitted coefficients.
    """
    if coef is None and contrast is None:
        raise ValueError("Either coef or contrast must be given.")
    L = coefficient_vector(fit, coef) if coef is not None else contrast

    est_ln, se_ln, pval = wald_contrast(fit, L)

    ln_base = math.log(float(log_base))
    df = pd.DataFrame(
        {
            "baseMean": fit.base_mean,
            "log2FoldChange": est_ln / ln_base,
            "lfcSE": se_ln / ln_base,
            "stat": est_ln / se_ln,
            "pvalue": pval,
        },
        index=fit.params.index,
    )
    df["padj"] = bh_fdr(df["pvalue"].to_numpy())
    return df[RESULT_COLUMNS]


def label_single_factor(table: pd.DataFrame, thresholds: Thresholds = Thresholds()) -> pd.Series:
    """Up / down / not-significant call per feature.

    A feature is called when ``padj < thresholds.padj``; the sign of
    ``log2FoldChange`` decides the direction. Undefined statistics are
    not significant.
    """
    sig = (table["padj"] < thresholds.padj).fillna(False)
    lfc = table["log2FoldChange"]
    labels = np.where(sig & (lfc > 0), UP, np.where(sig & (lfc < 0), DOWN, NOT_SIGNIFICANT))
    return pd.Series(labels, index=table.index, name="call")
