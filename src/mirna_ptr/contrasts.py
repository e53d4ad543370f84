from __future__ import annotations

from typing import Tuple

import numpy as np
import pandas as pd
from scipy import stats


def coef_name_for_level(factor: str, level: str) -> str:
    # patsy names a treatment-coded level "factor[T.level]"
    return f"{factor}[T.{level}]"


def interaction_coef_name(factor_a: str, level_a: str, factor_b: str, level_b: str) -> str:
    return f"{coef_name_for_level(factor_a, level_a)}:{coef_name_for_level(factor_b, level_b)}"


def contrast_vector(fit, weights: dict[str, float]) -> np.ndarray:
    """
    weights: mapping from coefficient name -> weight
    Returns length-P contrast vector aligned to fit.data_cols.
    """
    cols = fit.data_cols
    missing = [k for k in weights.keys() if k not in cols]
    if missing:
        raise KeyError(f"Missing coefficients in model: {missing}. Available: {cols}")

    L = np.zeros(len(cols), dtype=float)
    for name, w in weights.items():
        L[cols.index(name)] = float(w)
    return L


def coefficient_vector(fit, coef: str) -> np.ndarray:
    """Contrast vector selecting a single named coefficient."""
    return contrast_vector(fit, {coef: 1.0})


def wald_contrast(fit, L: np.ndarray) -> Tuple[pd.Series, pd.Series, pd.Series]:
    """
    Returns (estimate, standard error, pvalue) of L' beta for every feature.

    Estimates are on the natural-log scale; features without a fit are NaN.
    """
    L = np.asarray(L, dtype=float).ravel()
    beta = fit.params.to_numpy(dtype=float)
    est = beta @ L
    var = np.einsum("i,fij,j->f", L, fit.cov, L)
    with np.errstate(invalid="ignore", divide="ignore"):
        se = np.sqrt(var)
        z = est / se
    p = 2.0 * stats.norm.sf(np.abs(z))

    idx = fit.params.index
    return (
        pd.Series(est, index=idx, name="estimate"),
        pd.Series(se, index=idx, name="se"),
        pd.Series(p, index=idx, name="pvalue"),
    )
