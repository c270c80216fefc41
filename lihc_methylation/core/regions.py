#!/usr/bin/env python
# coding: utf-8

"""
Differentially Methylated Region (DMR) Detection

Probe-level moderated t-statistics are smoothed along each chromosome
with a Gaussian kernel (bandwidth ``lambda_ / C``, truncated at
``lambda_`` bases). The kernel-weighted sum of squared statistics is
compared against its null expectation using a Satterthwaite chi-square
approximation, giving a smoothed p-value per probe. Probes passing the
smoothed cutoff are agglomerated into regions whenever neighbouring hits
lie within ``lambda_`` bases.

Region coordinates are half-open: ``start`` is the first CpG position and
``end`` is one past the last CpG position.

``meandiff`` / ``maxdiff`` carry the same (normal - tumor) sign as the
probe-level ``delta_beta``: negative values are hypermethylated in tumor.
"""

from typing import Tuple, Union

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

from lihc_methylation.core.engine import methylation_direction
from lihc_methylation.core.errors import DataIntegrityError, warn_if_empty

REGION_COLUMNS = [
    "region_id",
    "chrom",
    "start",
    "end",
    "width",
    "no_cpgs",
    "min_smoothed_fdr",
    "stouffer",
    "hmfdr",
    "maxdiff",
    "meandiff",
    "direction",
]


# ============================================================================
# PROBE-LEVEL INPUT
# ============================================================================


def annotate_loci(
    res: pd.DataFrame,
    positions: pd.DataFrame,
    fdr: float = 0.05,
    stat_col: str = "t",
    diff_col: str = "delta_beta",
    padj_col: str = "padj",
) -> pd.DataFrame:
    """
    Attach genomic positions to every tested probe.

    Parameters
    ----------
    res : pd.DataFrame
        Full (unfiltered) results from ``fit_differential``
    positions : pd.DataFrame
        Indexed by probe ID with ``chrom`` and ``pos`` in the build used
        for clustering
    fdr : float
        Individual adjusted p-value cutoff defining ``is_sig``

    Returns
    -------
    pd.DataFrame
        Indexed by probe ID, sorted by (chrom, pos), with columns
        ``chrom``, ``pos``, ``stat``, ``diff``, ``ind_fdr``, ``is_sig``
    """
    for col in (stat_col, diff_col, padj_col):
        if col not in res.columns:
            raise ValueError(f"results have no '{col}' column")

    located = res.index.isin(positions.index)
    if not located.all():
        missing = res.index[~located].tolist()
        raise DataIntegrityError(
            f"{len(missing)} probes have no genomic position: {missing[:5]}"
        )
    if positions.index.has_duplicates:
        raise DataIntegrityError("position table has duplicated probe IDs")

    pos = positions.loc[res.index, ["chrom", "pos"]]
    if pos["pos"].isna().any() or pos["chrom"].isna().any():
        unmapped = pos.index[pos["pos"].isna() | pos["chrom"].isna()].tolist()
        raise DataIntegrityError(
            f"{len(unmapped)} probes have no genomic position: {unmapped[:5]}"
        )

    loci = pd.DataFrame(
        {
            "chrom": pos["chrom"].astype(str),
            "pos": pos["pos"].astype(np.int64),
            "stat": res[stat_col].astype(float),
            "diff": res[diff_col].astype(float),
            "ind_fdr": res[padj_col].astype(float),
        },
        index=res.index,
    )
    loci["is_sig"] = loci["ind_fdr"] < fdr
    loci.index.name = "probe_id"
    return loci.sort_values(["chrom", "pos"], kind="mergesort")


# ============================================================================
# KERNEL SMOOTHING
# ============================================================================


def _kernel_sums(
    x: np.ndarray, y: np.ndarray, lambda_: float, sigma: float
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-probe sum(K*y), sum(K), sum(K^2) over the +/- lambda_ window."""
    lo = np.searchsorted(x, x - lambda_, side="left")
    hi = np.searchsorted(x, x + lambda_, side="right")

    s_ky = np.empty(len(x))
    s_k = np.empty(len(x))
    s_k2 = np.empty(len(x))
    for i in range(len(x)):
        d = x[lo[i]:hi[i]] - x[i]
        k = np.exp(-0.5 * (d / sigma) ** 2)
        s_ky[i] = np.dot(k, y[lo[i]:hi[i]])
        s_k[i] = k.sum()
        s_k2[i] = np.dot(k, k)
    return s_ky, s_k, s_k2


def smooth_statistics(
    loci: pd.DataFrame, lambda_: float = 1000, C: float = 2
) -> pd.DataFrame:
    """
    Kernel-smooth squared statistics and compute smoothed significance.

    Parameters
    ----------
    loci : pd.DataFrame
        Output of :func:`annotate_loci`
    lambda_ : float
        Kernel support in bases (also the maximum gap inside a region)
    C : float
        Scaling factor; the Gaussian bandwidth is ``lambda_ / C``

    Returns
    -------
    pd.DataFrame
        Copy of ``loci`` with ``weighted_stat``, ``smoothed_p`` and
        ``smoothed_fdr``
    """
    if lambda_ <= 0 or C <= 0:
        raise ValueError("lambda_ and C must be positive")

    out = loci.copy()
    if len(out) == 0:
        for col in ("weighted_stat", "smoothed_p", "smoothed_fdr"):
            out[col] = pd.Series(dtype=float)
        return out

    sigma = lambda_ / C
    y_all = out["stat"].values ** 2
    y_bar = float(np.mean(y_all))
    if y_bar <= 0:
        y_bar = 1.0

    weighted = np.empty(len(out))
    pvals = np.empty(len(out))

    chrom = out["chrom"].values
    for ch in pd.unique(chrom):
        idx = np.flatnonzero(chrom == ch)
        x = out["pos"].values[idx].astype(float)
        y = y_all[idx]
        s_ky, s_k, s_k2 = _kernel_sums(x, y, lambda_, sigma)

        # Satterthwaite: S ~ a * chi2(b) with y ~ y_bar * chi2(1)
        a = y_bar * s_k2 / s_k
        b = s_k**2 / s_k2
        weighted[idx] = s_ky / s_k
        pvals[idx] = stats.chi2.sf(s_ky / a, b)

    _, fdr, _, _ = multipletests(pvals, method="fdr_bh")
    out["weighted_stat"] = weighted
    out["smoothed_p"] = pvals
    out["smoothed_fdr"] = fdr
    return out


# ============================================================================
# REGION CALLING
# ============================================================================


def _stouffer(p: np.ndarray) -> float:
    p = np.clip(p, 1e-300, 1.0)
    z = stats.norm.isf(p)
    return float(stats.norm.sf(z.sum() / np.sqrt(len(z))))


def _harmonic_mean(p: np.ndarray) -> float:
    p = np.clip(p, 1e-300, 1.0)
    return float(len(p) / np.sum(1.0 / p))


def _empty_regions() -> Tuple[pd.DataFrame, pd.DataFrame]:
    regions = pd.DataFrame(columns=REGION_COLUMNS)
    membership = pd.DataFrame(columns=["region_id", "probe_id"])
    return regions, membership


def find_regions(
    loci: pd.DataFrame,
    lambda_: float = 1000,
    C: float = 2,
    min_cpgs: int = 2,
    pcutoff: Union[str, float] = "fdr",
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Agglomerate significant probes into DMRs.

    Parameters
    ----------
    loci : pd.DataFrame
        Output of :func:`annotate_loci` (smoothed on demand)
    lambda_ : float
        Maximum gap in bases between neighbouring probes of one region
    C : float
        Kernel scaling factor
    min_cpgs : int
        Minimum probes per region
    pcutoff : 'fdr' or float
        'fdr' selects as many probes (best smoothed p-values first) as
        there are individually significant loci; a float selects probes
        with ``smoothed_fdr < pcutoff``

    Returns
    -------
    Tuple[pd.DataFrame, pd.DataFrame]
        (regions, membership). ``membership`` maps ``region_id`` to
        ``probe_id``.

    Notes
    -----
    With ``pcutoff='fdr'`` the number of regions never exceeds the number
    of individually significant loci.
    """
    if "smoothed_fdr" not in loci.columns:
        loci = smooth_statistics(loci, lambda_=lambda_, C=C)

    n_sig = int(loci["is_sig"].sum())

    if isinstance(pcutoff, str):
        if pcutoff != "fdr":
            raise ValueError("pcutoff must be 'fdr' or a number")
        order = np.lexsort((-loci["stat"].abs().values, loci["smoothed_p"].values))
        selected = np.zeros(len(loci), dtype=bool)
        selected[order[:n_sig]] = True
    else:
        selected = (loci["smoothed_fdr"] < float(pcutoff)).values

    hits = loci.loc[selected]
    if len(hits) == 0:
        regions, membership = _empty_regions()
        return warn_if_empty(regions, "find_regions"), membership

    records = []
    members = []
    for ch, block in hits.groupby("chrom", sort=True):
        block = block.sort_values("pos", kind="mergesort")
        gaps = np.diff(block["pos"].values)
        cluster = np.concatenate([[0], np.cumsum(gaps > lambda_)])

        for _, grp in block.groupby(cluster):
            if len(grp) < min_cpgs:
                continue
            diffs = grp["diff"].values
            records.append(
                {
                    "chrom": ch,
                    "start": int(grp["pos"].min()),
                    "end": int(grp["pos"].max()) + 1,
                    "no_cpgs": len(grp),
                    "min_smoothed_fdr": float(grp["smoothed_fdr"].min()),
                    "stouffer": _stouffer(grp["ind_fdr"].values),
                    "hmfdr": _harmonic_mean(grp["ind_fdr"].values),
                    "maxdiff": float(diffs[np.argmax(np.abs(diffs))]),
                    "meandiff": float(np.mean(diffs)),
                    "probes": grp.index.tolist(),
                }
            )

    if not records:
        regions, membership = _empty_regions()
        return warn_if_empty(regions, "find_regions"), membership

    regions = pd.DataFrame(records)
    regions = regions.sort_values(
        ["min_smoothed_fdr", "stouffer"], kind="mergesort"
    ).reset_index(drop=True)
    regions["region_id"] = [f"DMR{i + 1:05d}" for i in range(len(regions))]
    regions["width"] = regions["end"] - regions["start"]
    regions["direction"] = methylation_direction(regions["meandiff"].values)

    membership = (
        regions[["region_id", "probes"]]
        .explode("probes")
        .rename(columns={"probes": "probe_id"})
        .reset_index(drop=True)
    )
    regions = regions[REGION_COLUMNS]
    return regions, membership


# ============================================================================
# COORDINATE REMAPPING
# ============================================================================


def remap_regions(
    regions: pd.DataFrame,
    membership: pd.DataFrame,
    manifest: pd.DataFrame,
    genome: str = "hg38",
) -> pd.DataFrame:
    """
    Rebuild region boundaries from a manifest of another genome build.

    Each member probe is joined one-to-one against ``manifest`` by probe
    ID; the region is re-spanned from the first to the last remapped
    position.

    Parameters
    ----------
    regions : pd.DataFrame
        Output of :func:`find_regions`
    membership : pd.DataFrame
        ``region_id`` -> ``probe_id`` pairs from :func:`find_regions`
    manifest : pd.DataFrame
        Standardized manifest (``chrom``, ``pos``) of the target build
    genome : str
        Name of the target build, stored in the ``genome`` column

    Returns
    -------
    pd.DataFrame
        Regions with updated ``chrom``, ``start``, ``end``, ``width``
        and the pre-remap coordinate in ``source_coord``

    Raises
    ------
    DataIntegrityError
        If a probe is absent from or duplicated in the manifest, lacks a
        position there, or a region's probes map to several chromosomes
    """
    if manifest.index.has_duplicates:
        dups = manifest.index[manifest.index.duplicated()].unique().tolist()
        raise DataIntegrityError(
            f"Manifest has {len(dups)} duplicated probe IDs: {dups[:5]}"
        )

    unknown = set(membership["region_id"]) - set(regions["region_id"])
    if unknown:
        raise DataIntegrityError(
            f"membership references unknown regions: {sorted(unknown)[:5]}"
        )
    orphan = set(regions["region_id"]) - set(membership["region_id"])
    if orphan:
        raise DataIntegrityError(
            f"{len(orphan)} regions have no member probes: {sorted(orphan)[:5]}"
        )

    absent = ~membership["probe_id"].isin(manifest.index)
    if absent.any():
        missing = membership.loc[absent, "probe_id"].tolist()
        raise DataIntegrityError(
            f"{len(missing)} region probes are missing from the manifest: "
            f"{missing[:5]}"
        )

    joined = membership.merge(
        manifest[["chrom", "pos"]],
        left_on="probe_id",
        right_index=True,
        how="left",
        validate="many_to_one",
    )
    if len(joined) != len(membership):
        raise DataIntegrityError("manifest join changed the number of probes")

    unmapped = joined["chrom"].isna() | joined["pos"].isna()
    if unmapped.any():
        raise DataIntegrityError(
            f"{int(unmapped.sum())} region probes have no position in {genome}: "
            f"{joined.loc[unmapped, 'probe_id'].tolist()[:5]}"
        )

    span = joined.groupby("region_id").agg(
        n_chrom=("chrom", "nunique"),
        chrom=("chrom", "first"),
        start=("pos", "min"),
        last=("pos", "max"),
    )
    split = span.index[span["n_chrom"] > 1].tolist()
    if split:
        raise DataIntegrityError(
            f"{len(split)} regions span several chromosomes in {genome}: {split[:5]}"
        )

    remapped = regions.copy()
    remapped["source_coord"] = region_coordinates(remapped)
    span = span.reindex(remapped["region_id"])
    remapped["chrom"] = span["chrom"].values
    remapped["start"] = span["start"].astype(np.int64).values
    remapped["end"] = span["last"].astype(np.int64).values + 1
    remapped["width"] = remapped["end"] - remapped["start"]
    remapped["genome"] = genome

    return remapped.reset_index(drop=True)


def region_coordinates(regions: pd.DataFrame) -> pd.Series:
    """'chrom:start-end' strings."""
    return (
        regions["chrom"].astype(str)
        + ":"
        + regions["start"].astype(str)
        + "-"
        + regions["end"].astype(str)
    )
