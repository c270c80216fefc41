#!/usr/bin/env python
# coding: utf-8

"""
Visualization
Presentation plots for each pipeline stage
"""

from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.decomposition import PCA

from lihc_methylation.core.engine import methylation_direction

DIRECTION_COLORS = {
    "hyper": "red",
    "hypo": "blue",
    "not significant": "grey",
}


def _group_colors(groups: pd.Series) -> dict:
    palette = ["salmon", "skyblue", "mediumseagreen", "orchid", "goldenrod"]
    return {g: palette[i % len(palette)] for i, g in enumerate(sorted(groups.unique()))}


def _finish(fig, save_path: Optional[str], dpi: int, show: bool):
    import matplotlib.pyplot as plt

    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=dpi, bbox_inches="tight")
    if show:
        plt.show()
    return fig


def plot_beta_density(
    beta: pd.DataFrame,
    groups: pd.Series,
    max_points: int = 50000,
    save_path: Optional[str] = None,
    dpi: int = 300,
    show: bool = False,
):
    """Kernel density of beta values, one curve per sample coloured by group."""
    import matplotlib.pyplot as plt

    groups = groups.loc[beta.columns].astype(str)
    colors = _group_colors(groups)
    grid = np.linspace(0, 1, 200)
    rng = np.random.default_rng(1500)

    fig, ax = plt.subplots(figsize=(8, 5))
    for sample in beta.columns:
        values = beta[sample].dropna().values
        if len(values) < 2 or np.var(values) == 0:
            continue
        if len(values) > max_points:
            values = rng.choice(values, max_points, replace=False)
        density = stats.gaussian_kde(values)(grid)
        ax.plot(grid, density, color=colors[groups[sample]], alpha=0.5, lw=0.8)

    for g, c in colors.items():
        ax.plot([], [], color=c, label=g)
    ax.set_xlabel("Beta value")
    ax.set_ylabel("Density")
    ax.set_title("Beta Value Distribution")
    ax.legend()
    ax.grid(alpha=0.3)

    return _finish(fig, save_path, dpi, show)


def plot_sample_ordination(
    M: pd.DataFrame,
    groups: pd.Series,
    top_n: int = 1000,
    save_path: Optional[str] = None,
    dpi: int = 300,
    show: bool = False,
):
    """PCA of samples on the ``top_n`` most variable probes."""
    import matplotlib.pyplot as plt

    groups = groups.loc[M.columns].astype(str)
    complete = M.dropna()
    if len(complete) < 2:
        raise ValueError("Need at least 2 complete probes for ordination")

    top = complete.loc[complete.var(axis=1).nlargest(top_n).index]
    pca = PCA(n_components=2)
    coords = pca.fit_transform(top.T.values)

    fig, ax = plt.subplots(figsize=(6, 6))
    for g, color in _group_colors(groups).items():
        mask = (groups == g).values
        ax.scatter(
            coords[mask, 0],
            coords[mask, 1],
            label=g,
            alpha=0.7,
            s=60,
            color=color,
            edgecolor="k",
        )

    ax.set_xlabel(f"PC1 ({pca.explained_variance_ratio_[0]:.1%})")
    ax.set_ylabel(f"PC2 ({pca.explained_variance_ratio_[1]:.1%})")
    ax.set_title(f"Sample Ordination (top {len(top):,} variable probes)")
    ax.legend()
    ax.grid(alpha=0.3)

    return _finish(fig, save_path, dpi, show)


def plot_volcano(
    res: pd.DataFrame,
    padj_threshold: float = 0.005,
    delta_beta_threshold: float = 0.2,
    top_n: int = 10,
    alpha: float = 0.7,
    save_path: Optional[str] = None,
    dpi: int = 300,
    show: bool = False,
):
    """Volcano plot of delta beta against -log10 adjusted p-value."""
    import matplotlib.pyplot as plt

    res = res.copy()
    res["neg_log10_p"] = -np.log10(res["padj"].clip(lower=np.nextafter(0, 1)))

    sig = (res["padj"] < padj_threshold) & (res["delta_beta"].abs() > delta_beta_threshold)
    res["Group"] = np.where(
        sig, methylation_direction(res["delta_beta"].values), "not significant"
    )

    fig, ax = plt.subplots(figsize=(10, 6))
    labels = {"hyper": "Hypermethylated", "hypo": "Hypomethylated"}
    for group, color in DIRECTION_COLORS.items():
        subset = res[res["Group"] == group]
        ax.scatter(
            subset["delta_beta"],
            subset["neg_log10_p"],
            c=color,
            alpha=alpha,
            edgecolor="k",
            linewidth=0.3,
            s=20,
            label=labels.get(group, "Not significant"),
        )

    ax.axvline(-delta_beta_threshold, color="black", linestyle="--", lw=1, alpha=0.5)
    ax.axvline(delta_beta_threshold, color="black", linestyle="--", lw=1, alpha=0.5)
    ax.axhline(-np.log10(padj_threshold), color="black", linestyle="--", lw=1, alpha=0.5)

    if top_n > 0:
        hits = res[res["Group"] != "not significant"].nsmallest(top_n, "padj")
        for idx, row in hits.iterrows():
            ax.annotate(
                idx,
                xy=(row["delta_beta"], row["neg_log10_p"]),
                xytext=(5, 5),
                textcoords="offset points",
                fontsize=7,
                alpha=0.7,
            )

    ax.set_xlabel("Delta beta (normal - tumor)", fontsize=12)
    ax.set_ylabel("-log10(adjusted p-value)", fontsize=12)
    ax.set_title("Volcano Plot: Differential Methylation", fontsize=14)
    ax.legend(loc="upper center")
    ax.grid(alpha=0.3)

    return _finish(fig, save_path, dpi, show)


def plot_region_track(
    beta: pd.DataFrame,
    positions: pd.DataFrame,
    membership: pd.DataFrame,
    region_id: str,
    groups: pd.Series,
    save_path: Optional[str] = None,
    dpi: int = 300,
    show: bool = False,
):
    """
    Genomic track of one DMR: per-sample beta values by CpG position
    (thin lines) with group means (thick lines).
    """
    import matplotlib.pyplot as plt

    probes = membership.loc[membership["region_id"] == region_id, "probe_id"]
    if len(probes) == 0:
        raise ValueError(f"Unknown region: {region_id}")

    pos = positions.loc[probes, ["chrom", "pos"]].sort_values("pos")
    values = beta.loc[pos.index]
    groups = groups.loc[beta.columns].astype(str)
    colors = _group_colors(groups)
    x = pos["pos"].values

    fig, ax = plt.subplots(figsize=(10, 4))
    for sample in values.columns:
        ax.plot(x, values[sample].values, color=colors[groups[sample]], alpha=0.2, lw=0.6)
    for g, color in colors.items():
        mean = values.loc[:, (groups == g).values].mean(axis=1)
        ax.plot(x, mean.values, color=color, lw=2.5, marker="o", label=f"{g} mean")

    for xi in x:
        ax.axvline(xi, color="lightgrey", lw=0.5, zorder=0)

    ax.set_ylim(0, 1)
    ax.set_xlabel(f"{pos['chrom'].iloc[0]} position")
    ax.set_ylabel("Beta value")
    ax.set_title(f"{region_id} ({len(pos)} CpGs)")
    ax.legend(loc="upper right", fontsize=8)
    ax.grid(alpha=0.3)

    return _finish(fig, save_path, dpi, show)


def plot_annotation_counts(
    counts: pd.DataFrame,
    save_path: Optional[str] = None,
    dpi: int = 300,
    show: bool = False,
):
    """Horizontal bar chart from ``summarize_annotations`` output."""
    import matplotlib.pyplot as plt

    counts = counts.sort_values("n_regions")
    fig, ax = plt.subplots(figsize=(8, max(3, 0.4 * len(counts))))
    ax.barh(counts["annot_type"], counts["n_regions"], color="steelblue")
    ax.set_xlabel("Number of DMRs")
    ax.set_title("DMR Annotation")
    ax.grid(alpha=0.3, axis="x")

    return _finish(fig, save_path, dpi, show)


def plot_methylation_expression(
    merged: pd.DataFrame,
    top_n: int = 10,
    save_path: Optional[str] = None,
    dpi: int = 300,
    show: bool = False,
):
    """Promoter methylation difference against expression log fold change."""
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=(7, 6))
    colors = {"significant": "firebrick", "not significant": "grey"}
    for label, color in colors.items():
        subset = merged[merged["significance"] == label]
        ax.scatter(
            subset["meandiff"],
            subset["expr_logFC"],
            c=color,
            alpha=0.7,
            s=25,
            edgecolor="k",
            linewidth=0.3,
            label=label,
        )

    if top_n > 0:
        sig = merged[merged["significance"] == "significant"]
        for _, row in sig.nsmallest(top_n, "expr_padj").iterrows():
            ax.annotate(
                row["gene"],
                xy=(row["meandiff"], row["expr_logFC"]),
                xytext=(4, 4),
                textcoords="offset points",
                fontsize=7,
            )

    ax.axhline(0, color="black", lw=0.8)
    ax.axvline(0, color="black", lw=0.8)
    ax.set_xlabel("Promoter mean delta beta (normal - tumor)")
    ax.set_ylabel("Expression log2 fold change")
    ax.set_title("Methylation vs Expression")
    ax.legend()
    ax.grid(alpha=0.3)

    return _finish(fig, save_path, dpi, show)
