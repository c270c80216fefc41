#!/usr/bin/env python
# coding: utf-8

"""
Probe Filtering and Value Transformation
Manifest-driven probe QC and beta <-> M conversion
"""

import warnings
from typing import Dict, Iterable, Optional, Tuple, Union

import numpy as np
import pandas as pd

from lihc_methylation.core.errors import DataIntegrityError, warn_if_empty

ArrayLike = Union[pd.DataFrame, pd.Series, np.ndarray, float]


# ============================================================================
# MANIFEST
# ============================================================================


def clean_chrom(ch) -> Optional[str]:
    """Normalize chromosome names to UCSC style ('1' -> 'chr1', 'x' -> 'chrX')."""
    if ch is None or (isinstance(ch, float) and np.isnan(ch)):
        return None
    ch = str(ch).strip()
    if not ch.lower().startswith("chr"):
        ch = "chr" + ch
    suffix = ch[3:]
    if suffix.lower() in {"x", "y", "m"}:
        return "chr" + suffix.upper()
    return "chr" + suffix


def read_manifest(
    path: str,
    probe_col: str = "probeID",
    chrom_col: str = "CpG_chrm",
    pos_col: str = "CpG_beg",
    mask_col: Optional[str] = "MASK_general",
    maf_col: Optional[str] = None,
) -> pd.DataFrame:
    """
    Read an array manifest (gzipped TSV) for one genome build.

    Parameters
    ----------
    path : str
        Manifest file; compression inferred from the extension
    probe_col, chrom_col, pos_col : str
        Source column names for probe ID, chromosome and CpG position
    mask_col : str, optional
        Boolean SNP/quality mask column
    maf_col : str, optional
        Minor allele frequency of the overlapping SNP

    Returns
    -------
    pd.DataFrame
        Indexed by ``probe_id`` with columns ``chrom``, ``pos``, ``mask``
        and, when available, ``maf``
    """
    raw = pd.read_csv(path, sep="\t", low_memory=False)
    return standardize_manifest(
        raw,
        probe_col=probe_col,
        chrom_col=chrom_col,
        pos_col=pos_col,
        mask_col=mask_col,
        maf_col=maf_col,
    )


def standardize_manifest(
    raw: pd.DataFrame,
    probe_col: str = "probeID",
    chrom_col: str = "CpG_chrm",
    pos_col: str = "CpG_beg",
    mask_col: Optional[str] = "MASK_general",
    maf_col: Optional[str] = None,
) -> pd.DataFrame:
    """Rename manifest columns to the standard schema and validate keys."""
    required = [probe_col, chrom_col, pos_col]
    missing = [c for c in required if c not in raw.columns]
    if missing:
        raise ValueError(f"Manifest is missing columns: {missing}")

    manifest = pd.DataFrame(
        {
            "chrom": raw[chrom_col].map(clean_chrom).values,
            "pos": pd.to_numeric(raw[pos_col], errors="coerce").values,
        },
        index=pd.Index(raw[probe_col].astype(str).values, name="probe_id"),
    )

    if mask_col is not None and mask_col in raw.columns:
        manifest["mask"] = raw[mask_col].fillna(False).astype(bool).values
    else:
        manifest["mask"] = False

    if maf_col is not None and maf_col in raw.columns:
        manifest["maf"] = pd.to_numeric(raw[maf_col], errors="coerce").values

    if manifest.index.has_duplicates:
        dups = manifest.index[manifest.index.duplicated()].unique().tolist()
        raise DataIntegrityError(
            f"Manifest has {len(dups)} duplicated probe IDs: {dups[:5]}"
        )

    return manifest


# ============================================================================
# PROBE FILTER
# ============================================================================


def filter_probes(
    beta: pd.DataFrame,
    manifest: pd.DataFrame,
    sex_chromosomes: Iterable[str] = ("chrX", "chrY"),
    maf_threshold: float = 0.0,
    drop_missing: bool = True,
    verbose: bool = True,
) -> Tuple[pd.DataFrame, Dict[str, int]]:
    """
    Remove unreliable probes from a beta matrix.

    A probe is dropped when it has any missing value, is absent from the
    manifest, lies on a sex chromosome, is masked, or overlaps a SNP whose
    minor allele frequency exceeds ``maf_threshold``.

    Parameters
    ----------
    beta : pd.DataFrame
        Probes x samples beta matrix
    manifest : pd.DataFrame
        Standardized manifest (see :func:`read_manifest`)
    sex_chromosomes : iterable of str
        Chromosomes to exclude
    maf_threshold : float
        SNP probes with MAF above this value are removed
    drop_missing : bool
        Remove probes with any NaN
    verbose : bool
        Print per-reason counts

    Returns
    -------
    Tuple[pd.DataFrame, Dict[str, int]]
        (filtered beta in original row order, removal counts)
    """
    values = beta.values
    keep = np.ones(len(beta), dtype=bool)

    has_missing = np.isnan(values).any(axis=1)
    if drop_missing:
        keep &= ~has_missing

    ann = manifest.reindex(beta.index)
    in_manifest = (ann["chrom"].notna() & ann["pos"].notna()).to_numpy(dtype=bool)
    keep &= in_manifest

    on_sex = ann["chrom"].isin(list(sex_chromosomes)).to_numpy(dtype=bool)
    keep &= ~on_sex

    masked = ann["mask"].fillna(False).astype(bool).to_numpy(copy=True)
    if "maf" in ann.columns:
        masked = masked | (ann["maf"] > maf_threshold).to_numpy(dtype=bool)
    keep &= ~masked

    if not in_manifest.all():
        warnings.warn(
            f"{int((~in_manifest).sum())} probes have no manifest position "
            "and were removed"
        )

    summary = {
        "n_input": int(len(beta)),
        "missing_values": int(has_missing.sum()) if drop_missing else 0,
        "not_in_manifest": int((~in_manifest).sum()),
        "sex_chromosome": int(on_sex.sum()),
        "snp_masked": int(masked.sum()),
        "n_retained": int(keep.sum()),
    }

    if verbose:
        print(
            f"filter_probes: kept {summary['n_retained']:,} / {len(beta):,} probes "
            f"(missing={summary['missing_values']:,}, "
            f"sex_chr={summary['sex_chromosome']:,}, "
            f"snp={summary['snp_masked']:,}, "
            f"unannotated={summary['not_in_manifest']:,})"
        )

    filtered = warn_if_empty(beta.loc[keep], "filter_probes")
    return filtered, summary


# ============================================================================
# VALUE TRANSFORMATION
# ============================================================================


def clip_beta(beta: ArrayLike, eps: float = 1e-6) -> ArrayLike:
    """Clip beta values into [eps, 1 - eps] so the logit stays finite."""
    if isinstance(beta, (pd.DataFrame, pd.Series)):
        return beta.clip(lower=eps, upper=1 - eps)
    return np.clip(beta, eps, 1 - eps)


def beta_to_m(beta: ArrayLike, offset: float = 0.0) -> ArrayLike:
    """
    Convert beta values to M-values.

    M = log2((beta + offset) / (1 - beta + offset))

    Examples
    --------
    >>> beta_to_m(0.5)
    0.0
    >>> round(beta_to_m(0.8), 12)
    2.0
    """
    if isinstance(beta, (pd.DataFrame, pd.Series)):
        return np.log2((beta + offset) / (1 - beta + offset))
    beta = np.asarray(beta, dtype=float)
    m = np.log2((beta + offset) / (1 - beta + offset))
    return float(m) if m.ndim == 0 else m


def m_to_beta(m: ArrayLike) -> ArrayLike:
    """Inverse of :func:`beta_to_m` (logistic in base 2)."""
    if isinstance(m, (pd.DataFrame, pd.Series)):
        return 2**m / (1 + 2**m)
    m = np.asarray(m, dtype=float)
    beta = 2**m / (1 + 2**m)
    return float(beta) if beta.ndim == 0 else beta
