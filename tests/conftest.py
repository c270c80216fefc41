#!/usr/bin/env python
# coding: utf-8

"""
Shared synthetic cohort for the pipeline tests.

Six paired patients (tumor + normal) plus one tumor-only patient. Two
five-probe blocks on chr1 are differentially methylated:

- block at 100,000: tumor ~0.8, normal ~0.2 (hypermethylated in tumor)
- block at 300,000: tumor ~0.2, normal ~0.8 (hypomethylated in tumor)

Background probes sit every 5 kb so they never cluster with each other.
The target-build manifest shifts every position by +1,000.
"""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from lihc_methylation.core.loader import metadata_from_barcodes

N_PAIRED = 6
HYPER_START = 100_000
HYPO_START = 300_000
SHIFT = 1_000


def _barcode(i, code):
    return f"TCGA-DD-{i:04d}-{code}A-11D-A261-05"


@pytest.fixture
def cohort():
    """Beta matrix, metadata and source/target manifests."""
    rng = np.random.default_rng(1500)

    samples = []
    for i in range(N_PAIRED):
        samples += [_barcode(i, "01"), _barcode(i, "11")]
    samples.append(_barcode(99, "01"))
    metadata = metadata_from_barcodes(samples)
    tumor = (metadata["sample_type"] == "Primary Tumor").values

    n_background = 200
    probe_ids = [f"cg{i:08d}" for i in range(n_background)]
    positions = [2_500 + 5_000 * i for i in range(n_background)]
    beta = 0.5 + rng.normal(0, 0.05, size=(n_background, len(samples)))

    blocks = []
    for name, start, tumor_level in (("hyper", HYPER_START, 0.8), ("hypo", HYPO_START, 0.2)):
        ids = [f"cg{name}{j}" for j in range(5)]
        pos = [start + 200 * j for j in range(5)]
        level = np.where(tumor, tumor_level, 1 - tumor_level)
        values = level + rng.normal(0, 0.03, size=(5, len(samples)))
        probe_ids += ids
        positions += pos
        blocks.append(values)

    beta = pd.DataFrame(
        np.clip(np.vstack([beta] + blocks), 0.01, 0.99),
        index=pd.Index(probe_ids, name="probe_id"),
        columns=samples,
    )

    source = pd.DataFrame(
        {"chrom": "chr1", "pos": positions, "mask": False},
        index=pd.Index(probe_ids, name="probe_id"),
    )
    target = source.copy()
    target["pos"] = target["pos"] + SHIFT

    return {
        "beta": beta,
        "metadata": metadata,
        "source_manifest": source,
        "target_manifest": target,
    }


@pytest.fixture
def genes():
    """Target-build genes: GENEA promoter covers the hyper block,
    GENEB (minus strand) the hypo block, GENEC overlaps nothing."""
    return pd.DataFrame(
        {
            "chrom": ["chr1", "chr1", "chr1"],
            "start": [HYPER_START + SHIFT + 500, 280_000, 1_500_000],
            "end": [120_000, HYPO_START + SHIFT + 200, 1_510_000],
            "strand": ["+", "-", "+"],
            "gene_name": ["GENEA", "GENEB", "GENEC"],
        }
    )


@pytest.fixture
def chromsizes():
    return {"chr1": 2_000_000}


@pytest.fixture
def expression():
    return pd.DataFrame(
        {
            "gene": ["GENEA", "GENEB", "GENED"],
            "expr_logFC": [-2.5, 1.8, 0.4],
            "expr_padj": [0.001, 0.2, 0.03],
        }
    )
