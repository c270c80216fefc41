#!/usr/bin/env python
# coding: utf-8

"""
Data Loading
Beta matrices, TCGA sample metadata, pairing and checkpoints
"""

import os
from typing import Dict, Iterable, Optional

import pandas as pd

from lihc_methylation.core.config import SAMPLE_TYPES
from lihc_methylation.core.errors import DataIntegrityError, warn_if_empty

NORMAL_LABEL = "Solid Tissue Normal"


# ============================================================================
# FILE READERS
# ============================================================================


def _separator(path: str) -> str:
    name = path[:-3] if path.endswith(".gz") else path
    return "\t" if name.endswith((".tsv", ".txt")) else ","


def read_beta_matrix(path: str) -> pd.DataFrame:
    """
    Read a probes x samples beta-value matrix.

    Parameters
    ----------
    path : str
        CSV or TSV file (optionally gzipped). First column holds probe IDs,
        remaining columns are samples.

    Returns
    -------
    pd.DataFrame
        Float matrix indexed by probe ID; missing values kept as NaN
    """
    beta = pd.read_csv(path, sep=_separator(path), index_col=0)
    beta.index = beta.index.astype(str)
    beta.index.name = "probe_id"
    beta.columns = beta.columns.astype(str)
    return beta.apply(pd.to_numeric, errors="coerce").astype(float)


def read_sample_metadata(path: str, sample_col: Optional[str] = None) -> pd.DataFrame:
    """
    Read clinical metadata, one row per sample.

    If ``patient`` or ``sample_type`` are absent they are derived from the
    TCGA barcode in the index.
    """
    meta = pd.read_csv(path, sep=_separator(path))
    if sample_col is None:
        sample_col = meta.columns[0]
    meta = meta.set_index(sample_col)
    meta.index = meta.index.astype(str)
    meta.index.name = "sample"

    if "patient" not in meta.columns or "sample_type" not in meta.columns:
        derived = metadata_from_barcodes(meta.index)
        for col in ("patient", "sample_type"):
            if col not in meta.columns:
                meta[col] = derived[col]
    return meta


# ============================================================================
# TCGA BARCODES
# ============================================================================


def parse_tcga_barcode(barcode: str) -> Dict[str, str]:
    """
    Split a TCGA aliquot/sample barcode.

    Examples
    --------
    >>> parse_tcga_barcode("TCGA-DD-A4NG-11A-11D-A261-05")["sample_type"]
    'Solid Tissue Normal'
    """
    parts = str(barcode).split("-")
    if len(parts) < 4 or len(parts[3]) < 2:
        raise ValueError(f"Not a TCGA sample barcode: {barcode}")

    code = parts[3][:2]
    return {
        "patient": "-".join(parts[:3]),
        "sample_code": code,
        "sample_type": SAMPLE_TYPES.get(code, "Unknown"),
    }


def metadata_from_barcodes(samples: Iterable[str]) -> pd.DataFrame:
    """Build clinical metadata (patient, sample_type) from barcodes."""
    samples = [str(s) for s in samples]
    meta = pd.DataFrame([parse_tcga_barcode(s) for s in samples], index=samples)
    meta.index.name = "sample"
    return meta


# ============================================================================
# SAMPLE SELECTION
# ============================================================================


def select_paired_samples(
    metadata: pd.DataFrame,
    patient_col: str = "patient",
    sample_type_col: str = "sample_type",
    normal_label: str = NORMAL_LABEL,
    verbose: bool = False,
) -> pd.DataFrame:
    """
    Keep only the samples of patients with at least one normal sample.

    Parameters
    ----------
    metadata : pd.DataFrame
        Samples x attributes
    patient_col : str
        Column identifying the patient
    sample_type_col : str
        Column holding tumor/normal labels
    normal_label : str
        Label of the normal sample type

    Returns
    -------
    pd.DataFrame
        Subset of ``metadata``, original row order preserved
    """
    for col in (patient_col, sample_type_col):
        if col not in metadata.columns:
            raise ValueError(f"metadata is missing column '{col}'")

    is_normal = metadata[sample_type_col] == normal_label
    paired_patients = set(metadata.loc[is_normal, patient_col])
    keep = metadata[patient_col].isin(paired_patients)
    selected = metadata.loc[keep]

    if verbose:
        print(
            f"select_paired_samples: kept {len(selected):,} / {len(metadata):,} "
            f"samples from {len(paired_patients):,} patients with a normal sample"
        )

    return warn_if_empty(selected, "select_paired_samples")


def align_samples(beta: pd.DataFrame, metadata: pd.DataFrame) -> pd.DataFrame:
    """
    Reorder beta columns to match the metadata row order.

    Beta columns not described in ``metadata`` are dropped. A metadata
    sample without a beta column is a fatal mismatch.
    """
    missing = [s for s in metadata.index if s not in beta.columns]
    if missing:
        raise DataIntegrityError(
            f"{len(missing)} samples in metadata have no beta column: "
            f"{missing[:5]}"
        )
    if metadata.index.has_duplicates:
        raise DataIntegrityError("metadata index contains duplicated samples")

    return beta.loc[:, list(metadata.index)]


# ============================================================================
# CHECKPOINTS
# ============================================================================


def save_checkpoint(obj, path: str):
    """Pickle an intermediate table (or dict of tables) for restarting."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    pd.to_pickle(obj, path)


def load_checkpoint(path: str):
    """Load a checkpoint written by :func:`save_checkpoint`."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"No checkpoint at {path}")
    return pd.read_pickle(path)
