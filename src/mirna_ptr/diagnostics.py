"""
Dispersion estimation and count-level QC.

Functions
---------
estimate_alpha_nb2_moments
    Moment estimate of the NB2 dispersion of one feature.
zero_fraction
    Fraction of zero counts per sample.
sample_qc
    Library size, zero fraction and size factor per sample.
dispersion_summary
    Quantiles of the fitted per-feature dispersions.
"""
from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd

from .preprocess import median_ratio_size_factors


def estimate_alpha_nb2_moments(
    y: np.ndarray,
    mu: np.ndarray,
    df_resid: Optional[int] = None,
) -> float:
    """Moment estimate of alpha in ``Var(Y) = mu + alpha * mu^2``.

    Matches the excess of the squared residuals over the Poisson variance
    to ``alpha * sum(mu^2)``. With ``df_resid`` the estimate is inflated by
    ``n / df_resid`` for the fitted coefficients, which is not negligible
    for the handful of replicates a single microRNA has.

    Returns
    -------
    float
        Non-negative alpha; 0 when the counts are no more variable than
        Poisson.

    Examples
    --------
    >>> round(estimate_alpha_nb2_moments(np.array([10, 30]), np.array([20, 20])), 3)
    0.2
    """
    y = np.asarray(y, dtype=float)
    mu = np.clip(np.asarray(mu, dtype=float), 1e-9, None)
    excess = np.sum((y - mu) ** 2 - mu)
    alpha = excess / max(np.sum(mu**2), 1e-12)
    if df_resid is not None and df_resid > 0:
        alpha *= y.size / df_resid
    return float(max(alpha, 0.0))


def zero_fraction(counts_wide: pd.DataFrame) -> pd.Series:
    """Fraction of features with a zero count, per sample."""
    return (counts_wide == 0).mean(axis=0)


def sample_qc(counts_wide: pd.DataFrame) -> pd.DataFrame:
    """Per-sample library size, zero fraction and median-of-ratios size factor.

    A size factor far from the others, or a zero fraction well above them,
    usually marks a failed library rather than biology.

    Examples
    --------
    >>> counts = pd.DataFrame({"S1": [10, 20, 0], "S2": [20, 40, 5]})
    >>> sample_qc(counts)["total"].tolist()
    [30, 65]
    """
    return pd.DataFrame(
        {
            "total": counts_wide.sum(axis=0),
            "zero_fraction": zero_fraction(counts_wide),
            "size_factor": median_ratio_size_factors(counts_wide),
        }
    )


def dispersion_summary(alpha: pd.Series) -> pd.Series:
    """Count and quantiles of fitted dispersions, ignoring unfitted features."""
    fitted = alpha.dropna()
    if fitted.empty:
        return pd.Series({"n": 0}, dtype=float, name="alpha")
    q = fitted.quantile([0.1, 0.5, 0.9])
    return pd.Series(
        {"n": len(fitted), "q10": q.loc[0.1], "median": q.loc[0.5], "q90": q.loc[0.9]},
        name="alpha",
    )
