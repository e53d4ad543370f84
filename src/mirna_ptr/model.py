"""
Per-feature negative binomial GLM fitting with iterative dispersion estimation.

This module is the statistical engine behind every comparison: given a
count matrix, the sample metadata and a patsy formula over metadata
factors, it fits one negative binomial GLM per feature with the log size
factors as offset, and keeps coefficients and their covariance so that
any named coefficient or linear contrast can be tested afterwards.

Functions
---------
relevel
    Turn a metadata column into a categorical with a chosen reference level.
factor_levels
    Report the levels of a factor in model order (reference first).
build_design
    Build the patsy design matrix for a formula.
fit_nb_glm_per_feature
    Fit a negative binomial GLM to every feature of a count matrix.

Classes
-------
FitResult
    Container for fitted model results.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import patsy
import statsmodels.api as sm
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    PerfectSeparationError,
    PerfectSeparationWarning,
)

from .diagnostics import estimate_alpha_nb2_moments
from .preprocess import check_alignment, median_ratio_size_factors, normalize_counts

logger = logging.getLogger(__name__)

_FIT_ERRORS = (ValueError, np.linalg.LinAlgError, PerfectSeparationError, FloatingPointError)


@dataclass
class FitResult:
    """Container for per-feature negative binomial GLM results."""

    #: Coefficients on the natural-log scale, features x coefficients (NaN where the fit failed).
    params: pd.DataFrame
    #: Coefficient covariance matrices, shape (features, coefficients, coefficients).
    cov: np.ndarray
    #: Estimated NB2 dispersion per feature.
    alpha: pd.Series
    #: Whether the fit for each feature converged.
    converged: pd.Series
    #: Mean of the normalized counts per feature.
    base_mean: pd.Series
    #: Median-of-ratios size factor per sample.
    size_factors: pd.Series
    #: Size-factor-normalized counts, features x samples.
    normalized: pd.DataFrame
    #: Design matrix, samples x coefficients.
    design: pd.DataFrame
    #: The patsy formula string used for fitting.
    formula: str
    #: Column names from the design matrix, used for contrast construction.
    data_cols: list[str]

    @property
    def coefficient_names(self) -> list[str]:
        """Named coefficients available for result extraction."""
        return list(self.data_cols)

    @property
    def n_failed(self) -> int:
        """Number of features with an expressed signal but no usable fit."""
        return int((~self.converged & (self.base_mean > 0)).sum())


def relevel(metadata: pd.DataFrame, factor: str, reference: str) -> pd.DataFrame:
    """Make ``reference`` the first (reference) level of ``factor``.

    Remaining levels keep their order of first appearance. Treatment coding
    in patsy uses the first categorical level as the reference, so the
    coefficient for every other level is its log ratio against ``reference``.

    Raises
    ------
    ValueError
        If ``factor`` is not a column or ``reference`` is not one of its levels.

    Examples
    --------
    >>> meta = pd.DataFrame({"condition": ["B", "A", "B"]})
    >>> factor_levels(relevel(meta, "condition", "B"), "condition")
    ['B', 'A']
    """
    if factor not in metadata.columns:
        raise ValueError(f"Sample metadata missing factor column '{factor}'.")

    values = metadata[factor].astype(str)
    levels = list(dict.fromkeys(values))
    if reference not in levels:
        raise ValueError(f"Reference level '{reference}' not among levels of '{factor}': {levels}")

    ordered = [reference] + [lv for lv in levels if lv != reference]
    out = metadata.copy()
    out[factor] = pd.Categorical(values, categories=ordered)
    return out


def factor_levels(metadata: pd.DataFrame, factor: str) -> list[str]:
    """Levels of ``factor`` in model order; the first is the reference."""
    col = metadata[factor]
    if isinstance(col.dtype, pd.CategoricalDtype):
        return [str(c) for c in col.cat.categories]
    return sorted(col.astype(str).unique())


def build_design(metadata: pd.DataFrame, formula: str) -> pd.DataFrame:
    """Build the patsy design matrix for a right-hand-side formula.

    Raises
    ------
    ValueError
        If the design is not of full column rank.
    """
    X = patsy.dmatrix(formula, data=metadata, return_type="dataframe")
    X.index = metadata.index
    rank = np.linalg.matrix_rank(X.to_numpy())
    if rank < X.shape[1]:
        raise ValueError(
            f"Design for '{formula}' is rank deficient ({rank} < {X.shape[1]} columns: "
            f"{list(X.columns)})."
        )
    return X


def _fit_glm(model: sm.GLM, start_params: Optional[np.ndarray] = None):
    try:
        return model.fit(maxiter=100, start_params=start_params)
    except _FIT_ERRORS:
        # L2 regularization only to get start_params, then refit unregularized
        reg_res = model.fit_regularized(alpha=0.01, L1_wt=0)
        return model.fit(start_params=np.asarray(reg_res.params), maxiter=200)


def _fit_feature(
    y: np.ndarray,
    X: np.ndarray,
    offset: np.ndarray,
    max_iter: int = 8,
    alpha_init: float = 0.1,
) -> Tuple[np.ndarray, np.ndarray, float, bool]:
    """Fit one feature; returns (params, cov, alpha, converged)."""
    df_resid = X.shape[0] - X.shape[1]
    alpha = float(alpha_init)
    start = None

    for _ in range(max_iter):
        model = sm.GLM(y, X, family=sm.families.NegativeBinomial(alpha=alpha), offset=offset)
        res = _fit_glm(model, start)
        start = np.asarray(res.params)

        alpha_new = estimate_alpha_nb2_moments(y, np.asarray(res.fittedvalues), df_resid)
        # stabilize updates
        alpha_new = float(np.clip(0.5 * alpha + 0.5 * alpha_new, 1e-4, 100.0))
        if abs(alpha_new - alpha) / (alpha + 1e-9) < 0.05:
            alpha = alpha_new
            break
        alpha = alpha_new

    # Final refit with the final alpha so that params match alpha
    model = sm.GLM(y, X, family=sm.families.NegativeBinomial(alpha=alpha), offset=offset)
    res = _fit_glm(model, start)

    params = np.asarray(res.params, dtype=float)
    cov = np.asarray(res.cov_params(), dtype=float)
    converged = bool(getattr(res, "converged", True))
    converged = converged and np.isfinite(params).all() and np.isfinite(np.diag(cov)).all()
    return params, cov, alpha, converged


def fit_nb_glm_per_feature(
    counts: pd.DataFrame,
    metadata: pd.DataFrame,
    formula: str,
    max_iter: int = 8,
    alpha_init: float = 0.1,
    size_factors: Optional[pd.Series] = None,
) -> FitResult:
    """Fit a negative binomial GLM to every feature of a count matrix.

    For each feature the NB2 dispersion alpha is estimated iteratively:

    1. Fit GLM with current alpha
    2. Update alpha using method-of-moments from the fitted means
    3. Repeat until the relative change drops below 5%

    The log of the median-of-ratios size factors enters as offset, so
    coefficients are log ratios of normalized expression.

    Parameters
    ----------
    counts : pd.DataFrame
        Raw counts, features x samples. Columns must match ``metadata`` rows.
    metadata : pd.DataFrame
        Sample metadata indexed by sample_id holding the formula's factors.
        Use :func:`relevel` beforehand to fix reference levels.
    formula : str
        Right-hand-side patsy formula, e.g. ``"~ condition * assay"``.
    max_iter : int, default 8
        Maximum iterations for alpha estimation.
    alpha_init : float, default 0.1
        Initial dispersion parameter value.
    size_factors : pd.Series, optional
        Precomputed size factors; median-of-ratios when omitted.

    Returns
    -------
    FitResult
        Per-feature coefficients, covariances and dispersions. Features
        whose fit fails or does not converge carry NaN coefficients; they
        never abort the batch.

    Raises
    ------
    AlignmentError
        If counts columns and metadata rows are not the same samples.

    Examples
    --------
    >>> meta = relevel(meta, "condition", "ConditionB")
    >>> fit = fit_nb_glm_per_feature(counts, meta, "~ condition")
    >>> fit.coefficient_names
    ['Intercept', 'condition[T.ConditionA]']
    """
    check_alignment(counts, metadata, where="model fit")
    counts = counts.copy()
    counts.columns = pd.Index(counts.columns).astype(str)
    metadata = metadata.copy()
    metadata.index = pd.Index(metadata.index).astype(str)
    metadata = metadata.loc[counts.columns]

    X_df = build_design(metadata, formula)
    X = X_df.to_numpy(dtype=float)
    n_coef = X.shape[1]

    sf = median_ratio_size_factors(counts) if size_factors is None else size_factors
    sf = sf.reindex(counts.columns)
    normalized = normalize_counts(counts, sf)
    base_mean = normalized.mean(axis=1).rename("baseMean")
    offset = np.log(sf.to_numpy(dtype=float))

    n_feat = counts.shape[0]
    params = np.full((n_feat, n_coef), np.nan)
    cov = np.full((n_feat, n_coef, n_coef), np.nan)
    alphas = np.full(n_feat, np.nan)
    converged = np.zeros(n_feat, dtype=bool)

    values = counts.to_numpy(dtype=float)
    failures = []

    logger.info(f"Fitting '{formula}' for {n_feat} features x {X.shape[0]} samples")
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ConvergenceWarning)
        warnings.simplefilter("ignore", PerfectSeparationWarning)
        warnings.simplefilter("ignore", RuntimeWarning)
        for i in range(n_feat):
            y = values[i]
            if not y.any():
                continue
            try:
                p, c, a, ok = _fit_feature(y, X, offset, max_iter=max_iter, alpha_init=alpha_init)
            except _FIT_ERRORS as e:
                failures.append((counts.index[i], str(e)))
                continue
            alphas[i] = a
            if ok:
                params[i] = p
                cov[i] = c
                converged[i] = True
            else:
                failures.append((counts.index[i], "did not converge"))

    if failures:
        logger.warning(
            f"{len(failures)} of {n_feat} features could not be fitted and are reported "
            f"with undefined statistics (first: {failures[0][0]}: {failures[0][1]})"
        )

    return FitResult(
        params=pd.DataFrame(params, index=counts.index, columns=list(X_df.columns)),
        cov=cov,
        alpha=pd.Series(alphas, index=counts.index, name="alpha"),
        converged=pd.Series(converged, index=counts.index, name="converged"),
        base_mean=base_mean,
        size_factors=sf.rename("size_factor"),
        normalized=normalized,
        design=X_df,
        formula=formula,
        data_cols=list(X_df.columns),
    )
