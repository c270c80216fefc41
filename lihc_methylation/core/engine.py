#!/usr/bin/env python
# coding: utf-8

"""
Differential Methylation Engine
Per-probe linear models with empirical Bayes variance moderation

Sign convention
---------------
Designs built by :func:`build_design` code the *second* group level (in
sorted order) as 1. For TCGA labels this is ``Solid Tissue Normal``, so
``logFC`` and ``delta_beta`` are normal minus tumor: a negative value
means the locus is hypermethylated in tumor.
"""

import warnings
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import linalg, optimize, stats
from scipy.special import digamma, polygamma
from statsmodels.stats.multitest import multipletests

from lihc_methylation.core.errors import warn_if_empty
from lihc_methylation.core.preprocessing import m_to_beta


# ============================================================================
# DESIGN CONSTRUCTION AND VALIDATION
# ============================================================================


def build_design(
    metadata: pd.DataFrame,
    group_col: str = "sample_type",
    levels: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Two-group design matrix (intercept + indicator).

    Parameters
    ----------
    metadata : pd.DataFrame
        Samples x attributes; the index becomes the design index
    group_col : str
        Column holding the group label
    levels : sequence of str, optional
        (reference, test). Defaults to the sorted unique labels.

    Returns
    -------
    pd.DataFrame
        Columns ``Intercept`` and the test level name (0/1)

    Examples
    --------
    >>> meta = pd.DataFrame({"sample_type": ["Primary Tumor", "Solid Tissue Normal"]})
    >>> build_design(meta).columns.tolist()
    ['Intercept', 'Solid Tissue Normal']
    """
    if group_col not in metadata.columns:
        raise ValueError(f"metadata has no column '{group_col}'")

    labels = metadata[group_col].astype(str)
    if levels is None:
        levels = sorted(labels.unique())
    levels = list(levels)

    if len(levels) != 2:
        raise ValueError(
            f"Two-group design needs exactly 2 levels, got {len(levels)}: {levels}"
        )
    unknown = set(labels) - set(levels)
    if unknown:
        raise ValueError(f"Labels not among levels: {sorted(unknown)}")

    ref, test = levels
    design = pd.DataFrame(
        {"Intercept": 1, test: (labels == test).astype(int)},
        index=metadata.index,
    )
    return design


def validate_design(design: pd.DataFrame, M: pd.DataFrame) -> None:
    """Validate design matrix against data."""
    if not isinstance(design, pd.DataFrame):
        raise TypeError("design must be a pandas DataFrame")

    if design.shape[1] >= design.shape[0]:
        raise ValueError(
            f"Too many covariates ({design.shape[1]}) for sample "
            f"size ({design.shape[0]})"
        )

    if design.shape[0] != M.shape[1]:
        raise ValueError(
            f"design rows ({design.shape[0]}) != data columns ({M.shape[1]})"
        )

    if not np.array_equal(design.index.values, M.columns.values):
        raise ValueError("design index must exactly match M columns")

    if design.isnull().any().any():
        raise ValueError("design contains missing values")

    if (design.dtypes == object).any():
        non_numeric = design.select_dtypes(include=[object]).columns.tolist()
        raise ValueError(f"design contains non-numeric columns: {non_numeric}")


def validate_contrast(contrast: np.ndarray, design: pd.DataFrame) -> None:
    """Validate contrast vector against design matrix."""
    contrast = np.asarray(contrast).reshape(-1)

    if contrast.shape[0] != design.shape[1]:
        raise ValueError(
            f"Contrast length ({contrast.shape[0]}) != "
            f"design columns ({design.shape[1]})"
        )

    if not np.isfinite(contrast).all():
        raise ValueError("Contrast contains non-finite values")


# ============================================================================
# CORE STATISTICAL FUNCTIONS
# ============================================================================


def _winsorize_array(
    x: np.ndarray, lower_q: float = 0.05, upper_q: float = 0.95
) -> np.ndarray:
    """Clip array values to specified quantiles to reduce outlier influence."""
    lo = np.nanquantile(x, lower_q)
    hi = np.nanquantile(x, upper_q)
    return np.clip(x, lo, hi)


def _estimate_smyth_prior(
    s2: np.ndarray, df_resid: float, robust: bool = True, max_d0: float = 50.0
) -> Tuple[float, float]:
    """
    Estimate empirical Bayes prior (d0, s0²) by matching the moments of
    log(s²).

    Parameters
    ----------
    s2 : np.ndarray
        Raw variance estimates
    df_resid : float
        Residual degrees of freedom
    robust : bool
        Use winsorization for target variance
    max_d0 : float
        Maximum prior df (prevents over-shrinkage in small samples)

    Returns
    -------
    Tuple[float, float]
        (d0, s0_squared) - prior degrees of freedom and prior variance
    """
    s2 = np.asarray(s2, dtype=float)
    s2 = s2[np.isfinite(s2)]
    if s2.size == 0:
        raise ValueError("No finite variances provided")

    if (s2 <= 0).any():
        warnings.warn("Non-positive variances detected in prior estimation.")
        return float(min(10.0, df_resid)), float(np.median(s2[s2 > 0]))

    s2_for_target = _winsorize_array(s2, 0.05, 0.95) if robust else s2

    log_s2 = np.log(s2_for_target)
    m = np.mean(log_s2)
    v = np.var(log_s2, ddof=1)

    # Var[log s²] for pure sampling noise is trigamma(df/2)
    excess = v - polygamma(1, df_resid / 2.0)

    if excess <= 0:
        # no extra heterogeneity: variances are effectively common
        d0_est = max_d0
    else:

        def f(d0):
            return polygamma(1, d0 / 2.0) - excess

        try:
            d0_est = optimize.brentq(f, 1e-8, max_d0 * 1e3, maxiter=200)
        except ValueError:
            d0_est = max_d0

    d0_est = float(min(d0_est, max_d0))
    log_s0sq = m - (digamma(df_resid / 2.0) - np.log(df_resid / 2.0)) + (
        digamma(d0_est / 2.0) - np.log(d0_est / 2.0)
    )
    s0_sq = float(max(np.exp(log_s0sq), 1e-12))

    return d0_est, s0_sq


def _ols_dense(Y: np.ndarray, X: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Fit every row of ``Y`` at once; returns (coefficients p x G, residuals)."""
    XtX_inv = linalg.pinv(X.T @ X)
    coef = XtX_inv @ X.T @ Y.T
    resid = Y - (X @ coef).T
    return coef, resid


def _ols_per_probe(
    Y: np.ndarray, X: np.ndarray, index: pd.Index, min_count: int
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Row-by-row fit that tolerates missing values."""
    G, n = Y.shape
    p = X.shape[1]
    coef = np.full((p, G), np.nan)
    s2 = np.full(G, np.nan)
    n_obs = np.zeros(G, dtype=int)
    resid = np.full_like(Y, np.nan)

    for g in range(G):
        y = Y[g, :]
        mask = ~np.isnan(y)
        n_present = int(mask.sum())
        if n_present < min_count or n_present <= p:
            continue

        y_obs = y[mask]
        X_obs = X[mask, :]
        if np.var(y_obs) < 1e-12:
            warnings.warn(f"Probe {index[g]} has near-zero variance")
            continue

        try:
            beta = linalg.pinv(X_obs.T @ X_obs) @ (X_obs.T @ y_obs)
        except linalg.LinAlgError:
            warnings.warn(f"Failed to fit probe {index[g]}: singular matrix")
            continue

        r = y_obs - X_obs @ beta
        coef[:, g] = beta
        resid[g, mask] = r
        s2[g] = np.sum(r**2) / (n_present - p)
        n_obs[g] = n_present

    return coef, s2, n_obs, resid


def _indicator_levels(
    design: pd.DataFrame, contrast: np.ndarray, groups: pd.Series
) -> Optional[Tuple[str, str]]:
    """(test, reference) levels when the contrast selects one 0/1 column."""
    nonzero = np.flatnonzero(np.asarray(contrast).reshape(-1))
    if len(nonzero) != 1:
        return None
    col = design.iloc[:, nonzero[0]]
    if set(col.unique()) != {0, 1}:
        return None
    test = groups[col == 1].unique()
    ref = groups[col == 0].unique()
    if len(test) != 1 or len(ref) != 1:
        return None
    return str(test[0]), str(ref[0])


def _add_group_means(
    res: pd.DataFrame,
    M_df: pd.DataFrame,
    groups: pd.Series,
    add_beta: bool = True,
) -> pd.DataFrame:
    """
    Add per-group average M-values and beta-values to results.

    ``M_df`` must contain all probes in ``res.index``.
    """
    if not res.index.isin(M_df.index).all():
        missing = set(res.index) - set(M_df.index)
        raise ValueError(f"M_df missing {len(missing)} probes from results.")

    groups = groups.loc[M_df.columns].astype(str)
    M_subset = M_df.loc[res.index]

    meanM = M_subset.T.groupby(groups).mean().T
    for g in meanM.columns:
        res[f"meanM_{g}"] = meanM[g]

    if add_beta:
        meanB = m_to_beta(M_subset).T.groupby(groups).mean().T
        for g in meanB.columns:
            res[f"meanB_{g}"] = meanB[g]

    return res


def _groups_from_design(design: pd.DataFrame) -> pd.Series:
    candidates = [c for c in design.columns if 1 < design[c].nunique() <= 5]
    if not candidates:
        raise ValueError("No suitable grouping column found in design.")
    return design[candidates[0]].astype(int).astype(str)


# ============================================================================
# MAIN DIFFERENTIAL ANALYSIS
# ============================================================================


def fit_differential(
    M: pd.DataFrame,
    design: pd.DataFrame,
    contrast: Optional[np.ndarray] = None,
    groups: Optional[pd.Series] = None,
    shrink: Union[str, float] = "smyth",
    robust: bool = True,
    eps: float = 1e-8,
    return_residuals: bool = False,
    min_count: int = 3,
    max_d0: float = 50.0,
    winsor_lower: float = 0.05,
    winsor_upper: float = 0.95,
) -> Union[pd.DataFrame, Tuple[pd.DataFrame, pd.DataFrame]]:
    """
    Fit linear models with empirical Bayes variance shrinkage.

    Parameters
    ----------
    M : pd.DataFrame
        Probe x samples matrix of M-values (may contain NaN)
    design : pd.DataFrame
        Samples x covariates design matrix
    contrast : np.ndarray, optional
        Contrast vector for a single-coefficient moderated t-test
    groups : pd.Series, optional
        Sample -> group label, used for per-group means. Derived from the
        first 0/1 design column when omitted.
    shrink : str or float
        'auto', 'none', 'median', 'smyth', or a numeric d0
    robust : bool
        Winsorize variances before estimating the prior location
    return_residuals : bool
        If True, return (results, residuals)
    min_count : int
        Minimum non-missing samples required per probe

    Returns
    -------
    pd.DataFrame or Tuple
        Results sorted by p-value. With a contrast: ``logFC``, ``se``, ``t``,
        ``pval``, ``padj`` plus ``meanM_*``, ``meanB_*`` and, for a 0/1
        indicator contrast, ``delta_beta`` (test minus reference level).

    Examples
    --------
    >>> design = build_design(metadata)
    >>> res = fit_differential(M, design, contrast=np.array([0, 1]),
    ...                        groups=metadata["sample_type"])
    """
    validate_design(design, M)

    if contrast is not None:
        validate_contrast(contrast, design)

    if groups is None:
        groups = _groups_from_design(design)
    else:
        groups = groups.loc[M.columns].astype(str)

    Y = M.values.astype(float)
    G, n = Y.shape
    X = design.values.astype(float)
    p = X.shape[1]
    df_resid = n - p

    if df_resid <= 0:
        raise ValueError(
            f"Residual degrees of freedom <= 0 (n={n}, p={p}). "
            "Reduce number of covariates or increase sample size."
        )

    if np.isnan(Y).any():
        warnings.warn(
            "M contains missing values. Using per-probe fitting to handle missingness."
        )
        beta_hat_all, s2_all, n_obs, residuals = _ols_per_probe(
            Y, X, M.index, min_count
        )
    else:
        beta_hat_all, residuals = _ols_dense(Y, X)
        s2_all = np.sum(residuals**2, axis=1) / df_resid
        n_obs = np.full(G, n)
        flat = s2_all < 1e-12
        if flat.any():
            warnings.warn(f"{int(flat.sum())} probes have near-zero variance")
            s2_all[flat] = np.nan

    valid = np.isfinite(s2_all)
    if valid.sum() == 0:
        raise ValueError("No probes could be fit successfully")

    beta_hat = beta_hat_all[:, valid]
    s2 = s2_all[valid]
    M_valid = M.iloc[valid]
    residuals_valid = residuals[valid, :]

    if shrink == "auto":
        if n < 10:
            shrink = "none"
            warnings.warn(
                f"Small sample size (n={n}). Using shrink='none' to "
                "avoid over-shrinkage."
            )
        else:
            shrink = "smyth"

    if isinstance(shrink, (int, float)) and not isinstance(shrink, bool) and shrink > 0:
        d0 = float(min(shrink, max_d0))
        if robust:
            s2_for_target = _winsorize_array(s2, winsor_lower, winsor_upper)
        else:
            s2_for_target = s2
        s0sq = float(np.median(s2_for_target))

    elif shrink == "median":
        if robust:
            s0sq = float(np.median(_winsorize_array(s2, winsor_lower, winsor_upper)))
        else:
            s0sq = float(np.median(s2))
        d0 = float(max(2.0, min(max_d0, n / 2.0)))

    elif shrink == "smyth":
        d0, s0sq = _estimate_smyth_prior(s2, df_resid, robust=robust, max_d0=max_d0)

    elif shrink == "none":
        d0, s0sq = 0.0, 0.0

    else:
        raise ValueError(
            f"Unsupported shrink option: {shrink}. "
            "Use 'auto', 'smyth', 'median', 'none', or a numeric value."
        )

    s2_post = (df_resid * s2 + d0 * s0sq) / (df_resid + d0)
    df_total = df_resid + d0

    if contrast is not None:
        contrast = np.asarray(contrast, dtype=float).reshape(-1)
        XtX_inv = linalg.pinv(X.T @ X)

        logFC = contrast @ beta_hat
        cc = contrast @ XtX_inv @ contrast
        se = np.sqrt(np.maximum(cc * s2, eps))
        se_post = np.sqrt(np.maximum(cc * s2_post, eps))
        t_stat = logFC / se_post

        pvals = 2.0 * stats.t.sf(np.abs(t_stat), df=df_total)
        _, padj, _, _ = multipletests(pvals, method="fdr_bh")

        res = pd.DataFrame(
            {
                "logFC": logFC,
                "se": se,
                "t": t_stat,
                "pval": pvals,
                "padj": padj,
                "df_resid": df_resid,
                "df_total": df_total,
                "s2": s2,
                "s2_post": s2_post,
                "d0": d0,
                "n_obs": n_obs[valid],
            },
            index=M_valid.index,
        )
    else:
        res = pd.DataFrame(
            {
                "df_resid": df_resid,
                "s2": s2,
                "s2_post": s2_post,
                "d0": d0,
                "n_obs": n_obs[valid],
            },
            index=M_valid.index,
        )

    res = _add_group_means(res, M_valid, groups, add_beta=True)

    if contrast is not None:
        levels = _indicator_levels(design, contrast, groups)
        if levels is not None:
            test, ref = levels
            sign = np.sign(contrast[contrast != 0][0])
            res["delta_beta"] = sign * (res[f"meanB_{test}"] - res[f"meanB_{ref}"])
        res = res.sort_values("pval")

    if return_residuals:
        resid_df = pd.DataFrame(residuals_valid, index=M_valid.index, columns=M.columns)
        return res, resid_df

    return res


# ============================================================================
# RESULTS ANALYSIS
# ============================================================================


def methylation_direction(diff) -> Union[str, np.ndarray]:
    """
    Label methylation change direction from a (normal - tumor) difference.

    Negative differences are hypermethylated in the case group, positive
    differences hypomethylated.

    Examples
    --------
    >>> methylation_direction(-0.3)
    'hyper'
    """
    arr = np.asarray(diff, dtype=float)
    labels = np.select([arr < 0, arr > 0], ["hyper", "hypo"], default="none")
    return str(labels) if labels.ndim == 0 else labels


def get_differential_loci(
    res: pd.DataFrame,
    padj_threshold: float = 0.005,
    delta_beta_threshold: float = 0.2,
    pval_col: str = "padj",
    delta_col: str = "delta_beta",
) -> pd.DataFrame:
    """
    Apply the significance and effect-size filter.

    Parameters
    ----------
    res : pd.DataFrame
        Results from :func:`fit_differential`
    padj_threshold : float
        Keep rows with adjusted p-value strictly below this
    delta_beta_threshold : float
        Keep rows with absolute beta difference strictly above this

    Returns
    -------
    pd.DataFrame
        Retained rows sorted ascending by adjusted p-value, with a
        ``direction`` column
    """
    if delta_col not in res.columns:
        raise ValueError(
            f"Results have no '{delta_col}' column; fit with a 0/1 indicator contrast"
        )

    keep = (res[pval_col] < padj_threshold) & (res[delta_col].abs() > delta_beta_threshold)
    sig = res.loc[keep].sort_values(pval_col, kind="mergesort").copy()
    sig["direction"] = methylation_direction(sig[delta_col].values)

    return warn_if_empty(sig, "get_differential_loci")


def summarize_differential_results(
    res: pd.DataFrame,
    padj_threshold: float = 0.005,
    delta_beta_threshold: float = 0.2,
) -> Dict:
    """Generate summary statistics of a differential analysis."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        sig = get_differential_loci(res, padj_threshold, delta_beta_threshold)

    summary = {
        "total_tested": len(res),
        "significant": len(sig),
        "pct_significant": len(sig) / len(res) * 100 if len(res) > 0 else 0,
        "hypermethylated": int((sig["direction"] == "hyper").sum()),
        "hypomethylated": int((sig["direction"] == "hypo").sum()),
        "median_abs_delta_beta_sig": (
            float(sig["delta_beta"].abs().median()) if len(sig) > 0 else 0
        ),
        "min_pval": float(res["pval"].min()) if "pval" in res.columns else 1,
        "shrinkage_factor": (
            float(res["s2_post"].median() / res["s2"].median())
            if "s2" in res.columns
            else 1
        ),
        "d0": float(res["d0"].iloc[0]) if "d0" in res.columns and len(res) else 0,
    }

    return summary


def export_results(
    res: pd.DataFrame,
    output_path: str,
    format: str = "csv",
    include_all: bool = False,
):
    """Export results to file."""
    if not include_all:
        cols = ["logFC", "t", "pval", "padj", "delta_beta", "direction"]
        cols += [c for c in res.columns if c.startswith("meanB_")]
        res_export = res[[c for c in cols if c in res.columns]]
    else:
        res_export = res

    if format == "csv":
        res_export.to_csv(output_path)
    elif format == "excel":
        res_export.to_excel(output_path, engine="openpyxl")
    elif format == "tsv":
        res_export.to_csv(output_path, sep="\t")
    else:
        raise ValueError(f"Unsupported format: {format}")

    print(f"✔ Results exported to {output_path}")


def top_loci(res: pd.DataFrame, n: int = 10, by: str = "padj") -> List[str]:
    """Probe IDs of the ``n`` best-ranked loci."""
    return res.nsmallest(n, by).index.tolist()
