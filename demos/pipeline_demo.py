#!/usr/bin/env python
# coding: utf-8

"""
Paired Tumor/Normal Differential Methylation Demo
Synthetic 450K-like cohort run end to end with a PDF report
"""

import os
from datetime import datetime

import numpy as np
import pandas as pd

from lihc_methylation.core.config import PipelineConfig
from lihc_methylation.core.engine import export_results
from lihc_methylation.core.loader import metadata_from_barcodes, save_checkpoint
from lihc_methylation.core.pipeline import run_pipeline
from lihc_methylation.core.plots import (
    plot_annotation_counts,
    plot_beta_density,
    plot_methylation_expression,
    plot_region_track,
    plot_sample_ordination,
    plot_volcano,
)
from lihc_methylation.core.report import AnalysisReport

# ============================================================================
# CONFIGURATION
# ============================================================================

CONFIG = {
    "random_seed": 1500,
    "n_patients": 20,
    "n_unpaired": 5,
    "n_chromosomes": 5,
    "probes_per_chrom": 4000,
    "n_blocks": 30,  # DMR blocks per chromosome
    "block_size": 6,
    "block_effect": 0.35,
    "noise_sd": 0.06,
    "liftover_shift": 2500,  # hg19 -> hg38 offset used for the toy manifest
}

rng = np.random.default_rng(CONFIG["random_seed"])

timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
report_path = f"log/{timestamp}"
os.makedirs(report_path, exist_ok=True)
report = AnalysisReport(f"{report_path}/report.pdf", echo=True)

report.heading("Paired Tumor/Normal Methylation Demo")
report.paragraph(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
report.key_values(CONFIG, title="Simulation settings")

# ============================================================================
# SIMULATE COHORT
# ============================================================================

samples = []
for i in range(CONFIG["n_patients"]):
    samples += [f"TCGA-XX-{i:04d}-01A", f"TCGA-XX-{i:04d}-11A"]
for i in range(CONFIG["n_unpaired"]):
    samples.append(f"TCGA-YY-{i:04d}-01A")
metadata = metadata_from_barcodes(samples)
is_tumor = (metadata["sample_type"] == "Primary Tumor").values

probe_ids, chroms, positions, rows = [], [], [], []
for c in range(1, CONFIG["n_chromosomes"] + 1):
    n = CONFIG["probes_per_chrom"]
    pos = np.sort(rng.choice(np.arange(10_000, 50_000_000), n, replace=False))
    baseline = rng.beta(2, 2, n)
    block_starts = rng.choice(np.arange(0, n - CONFIG["block_size"]), CONFIG["n_blocks"], replace=False)

    values = np.repeat(baseline[:, None], len(samples), axis=1)
    for k, b in enumerate(block_starts):
        # tight spacing so block probes cluster
        pos[b:b + CONFIG["block_size"]] = pos[b] + 150 * np.arange(CONFIG["block_size"])
        sign = 1 if k % 2 == 0 else -1
        values[b:b + CONFIG["block_size"], is_tumor] += sign * CONFIG["block_effect"]
    values += rng.normal(0, CONFIG["noise_sd"], values.shape)

    pos, keep = np.unique(pos, return_index=True)
    values = values[keep]
    n = len(pos)

    probe_ids += [f"cg{c:02d}{j:06d}" for j in range(n)]
    chroms += [f"chr{c}"] * n
    positions += pos.tolist()
    rows.append(values)

beta = pd.DataFrame(np.clip(np.vstack(rows), 0.01, 0.99), index=probe_ids, columns=samples)
beta.index.name = "probe_id"
beta.iloc[rng.choice(len(beta), 50, replace=False), 0] = np.nan

hg19 = pd.DataFrame(
    {"chrom": chroms, "pos": positions, "mask": rng.random(len(beta)) < 0.01},
    index=beta.index,
)
hg38 = hg19.assign(pos=hg19["pos"] + CONFIG["liftover_shift"])

# ============================================================================
# FEATURES
# ============================================================================

gene_rows = []
for c in range(1, CONFIG["n_chromosomes"] + 1):
    starts = np.sort(rng.choice(np.arange(20_000, 49_000_000), 300, replace=False))
    for j, s in enumerate(starts):
        gene_rows.append(
            {
                "chrom": f"chr{c}",
                "start": int(s),
                "end": int(s + rng.integers(5_000, 80_000)),
                "strand": "+" if rng.random() < 0.5 else "-",
                "gene_name": f"G{c}_{j:03d}",
            }
        )
genes = pd.DataFrame(gene_rows)
chromsizes = {f"chr{c}": 50_100_000 for c in range(1, CONFIG["n_chromosomes"] + 1)}

islands = genes.assign(start=genes["start"] - 500, end=genes["start"] + 700)[
    ["chrom", "start", "end"]
]

expression = pd.DataFrame(
    {
        "gene": genes["gene_name"],
        "expr_logFC": rng.normal(0, 1.5, len(genes)),
        "expr_padj": rng.uniform(0, 1, len(genes)) ** 3,
    }
)

# ============================================================================
# RUN
# ============================================================================

config = PipelineConfig()
config.save_to_file(f"{report_path}/config.json")

out = run_pipeline(
    beta,
    metadata,
    hg38,
    expression=expression,
    genes=genes,
    islands=islands,
    chromsizes=chromsizes,
    source_positions=hg19,
    config=config,
    report=report,
    verbose=True,
)
save_checkpoint(out, f"{report_path}/checkpoint.pkl")
export_results(out["loci"], f"{report_path}/differential_loci.csv")
out["regions"].to_csv(f"{report_path}/regions.csv", index=False)

# ============================================================================
# FIGURES
# ============================================================================

groups = out["metadata"]["sample_type"]
report.heading("Figures", level=2)
report.figure(plot_beta_density(out["beta"], groups), caption="Beta value density")
report.figure(plot_sample_ordination(out["M"], groups), caption="Sample PCA")
report.figure(plot_volcano(out["results"]), caption="Volcano plot")

if len(out["regions"]) > 0:
    top = out["regions"].iloc[0]["region_id"]
    report.figure(
        plot_region_track(out["beta"], hg19, out["membership"], top, groups),
        caption=f"Top region {top} (hg19 positions)",
    )
if "annotation_counts" in out:
    report.figure(plot_annotation_counts(out["annotation_counts"]), caption="DMR annotation")
if "merged" in out and len(out["merged"]) > 0:
    report.figure(
        plot_methylation_expression(out["merged"]),
        caption="Promoter methylation vs expression",
    )

report.save()
