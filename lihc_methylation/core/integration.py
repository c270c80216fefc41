#!/usr/bin/env python
# coding: utf-8

"""
Methylation / Expression Integration
Join promoter DMR genes with differential expression results
"""

from typing import Dict

import numpy as np
import pandas as pd
from scipy import stats

from lihc_methylation.core.engine import methylation_direction
from lihc_methylation.core.errors import warn_if_empty


def read_expression_results(
    path: str,
    gene_col: str = "gene_name",
    lfc_col: str = "log2FoldChange",
    padj_col: str = "padj",
) -> pd.DataFrame:
    """
    Read a differential expression table (CSV).

    Returns
    -------
    pd.DataFrame
        Columns ``gene``, ``expr_logFC``, ``expr_padj``; one row per gene
        (first occurrence kept)
    """
    raw = pd.read_csv(path)
    return standardize_expression(raw, gene_col=gene_col, lfc_col=lfc_col, padj_col=padj_col)


def standardize_expression(
    raw: pd.DataFrame,
    gene_col: str = "gene_name",
    lfc_col: str = "log2FoldChange",
    padj_col: str = "padj",
) -> pd.DataFrame:
    """Rename expression columns to the standard schema."""
    missing = [c for c in (gene_col, lfc_col, padj_col) if c not in raw.columns]
    if missing:
        raise ValueError(f"Expression table is missing columns: {missing}")

    expr = pd.DataFrame(
        {
            "gene": raw[gene_col].astype("string").str.strip(),
            "expr_logFC": pd.to_numeric(raw[lfc_col], errors="coerce"),
            "expr_padj": pd.to_numeric(raw[padj_col], errors="coerce"),
        }
    )
    expr = expr[expr["gene"].notna() & (expr["gene"] != "")]
    expr["gene"] = expr["gene"].astype(str)
    return expr.drop_duplicates(subset="gene", keep="first").reset_index(drop=True)


def merge_methylation_expression(
    meth_genes: pd.DataFrame,
    expression: pd.DataFrame,
    padj_threshold: float = 0.05,
) -> pd.DataFrame:
    """
    Inner-join gene-level methylation and expression results.

    Parameters
    ----------
    meth_genes : pd.DataFrame
        One row per gene with ``gene`` and ``meandiff``
        (e.g. from ``promoter_gene_table``)
    expression : pd.DataFrame
        Standardized expression table (``gene``, ``expr_logFC``,
        ``expr_padj``)
    padj_threshold : float
        Expression adjusted p-value below which a gene is ``significant``

    Returns
    -------
    pd.DataFrame
        Genes present in both inputs with a ``significance`` label
    """
    for col in ("gene", "meandiff"):
        if col not in meth_genes.columns:
            raise ValueError(f"methylation table has no '{col}' column")

    merged = meth_genes.merge(expression, on="gene", how="inner")
    merged["significance"] = np.where(
        merged["expr_padj"] < padj_threshold, "significant", "not significant"
    )
    return warn_if_empty(merged, "merge_methylation_expression")


def correlate_methylation_expression(
    merged: pd.DataFrame,
    method: str = "spearman",
    x_col: str = "meandiff",
    y_col: str = "expr_logFC",
) -> Dict[str, Dict[str, float]]:
    """
    Correlation of methylation difference against expression change,
    for all merged genes and for the expression-significant subset.
    """
    if method == "spearman":
        corr = stats.spearmanr
    elif method == "pearson":
        corr = stats.pearsonr
    else:
        raise ValueError(f"Unknown correlation method: {method}")

    subsets = {
        "all": merged,
        "significant": merged[merged["significance"] == "significant"],
    }
    out = {}
    for name, df in subsets.items():
        df = df[[x_col, y_col]].dropna()
        if len(df) < 3 or df[x_col].nunique() < 2 or df[y_col].nunique() < 2:
            out[name] = {"n": len(df), "r": np.nan, "pval": np.nan}
            continue
        r, p = corr(df[x_col], df[y_col])
        out[name] = {"n": len(df), "r": float(r), "pval": float(p)}
    return out


def classify_quadrants(
    merged: pd.DataFrame,
    x_col: str = "meandiff",
    y_col: str = "expr_logFC",
) -> pd.DataFrame:
    """
    Label each gene by methylation direction and expression direction,
    e.g. ``hyper_down`` for promoter hypermethylation with lower expression.
    """
    out = merged.copy()
    meth = methylation_direction(out[x_col].values)
    expr = np.select([out[y_col] > 0, out[y_col] < 0], ["up", "down"], default="none")
    out["quadrant"] = [f"{m}_{e}" for m, e in zip(meth, expr)]
    return out
