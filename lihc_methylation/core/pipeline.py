#!/usr/bin/env python
# coding: utf-8

"""
End-to-end workflow: paired samples -> probe filter -> M-values ->
differential loci -> DMRs -> annotation -> expression integration
"""

from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from lihc_methylation.core.annotation import (
    ChromSizes,
    annotate_regions,
    attach_overlapping_genes,
    build_cpg_annotations,
    build_gene_annotations,
    promoter_gene_table,
    summarize_annotations,
)
from lihc_methylation.core.config import PipelineConfig, get_config
from lihc_methylation.core.engine import (
    build_design,
    fit_differential,
    get_differential_loci,
    summarize_differential_results,
)
from lihc_methylation.core.integration import (
    classify_quadrants,
    correlate_methylation_expression,
    merge_methylation_expression,
    read_expression_results,
    standardize_expression,
)
from lihc_methylation.core.loader import align_samples, select_paired_samples
from lihc_methylation.core.preprocessing import (
    beta_to_m,
    clip_beta,
    filter_probes,
    read_manifest,
    standardize_manifest,
)
from lihc_methylation.core.regions import (
    annotate_loci,
    find_regions,
    remap_regions,
    smooth_statistics,
)
from lihc_methylation.core.report import AnalysisReport

EXPRESSION_COLUMNS = ("gene", "expr_logFC", "expr_padj")


# ============================================================================
# CONFIG-DRIVEN INPUTS
# ============================================================================


def _manifest_args(columns: Dict[str, Optional[str]]) -> Dict[str, Optional[str]]:
    return {
        "probe_col": columns["probe_id"],
        "chrom_col": columns["chrom"],
        "pos_col": columns["pos"],
        "mask_col": columns.get("mask"),
        "maf_col": columns.get("maf"),
    }


def _expression_args(section: Dict[str, Any]) -> Dict[str, str]:
    return {
        "gene_col": section["gene_col"],
        "lfc_col": section["lfc_col"],
        "padj_col": section["padj_col"],
    }


def load_manifest(path: str, config: Optional[PipelineConfig] = None) -> pd.DataFrame:
    """Read a manifest using the ``probe_filter.manifest_columns`` mapping."""
    cfg = config or get_config()
    return read_manifest(path, **_manifest_args(cfg.probe_filter["manifest_columns"]))


def load_expression(path: str, config: Optional[PipelineConfig] = None) -> pd.DataFrame:
    """Read expression results using the ``integration`` column mapping."""
    cfg = config or get_config()
    return read_expression_results(path, **_expression_args(cfg.integration))


def as_manifest(manifest: pd.DataFrame, config: Optional[PipelineConfig] = None) -> pd.DataFrame:
    """
    Return ``manifest`` in the standard schema.

    Tables that already carry ``chrom`` and ``pos`` are returned as is;
    raw tables are renamed with ``probe_filter.manifest_columns``.
    """
    if {"chrom", "pos"} <= set(manifest.columns):
        return manifest
    cfg = config or get_config()
    return standardize_manifest(
        manifest, **_manifest_args(cfg.probe_filter["manifest_columns"])
    )


def as_expression(expression: pd.DataFrame, config: Optional[PipelineConfig] = None) -> pd.DataFrame:
    """Same as :func:`as_manifest` for expression results."""
    if set(EXPRESSION_COLUMNS) <= set(expression.columns):
        return expression
    cfg = config or get_config()
    return standardize_expression(expression, **_expression_args(cfg.integration))


def build_annotations(
    genes: pd.DataFrame,
    islands: Optional[pd.DataFrame] = None,
    chromsizes: Optional[ChromSizes] = None,
    config: Optional[PipelineConfig] = None,
) -> pd.DataFrame:
    """Gene and CpG feature sets with the ``annotation`` section settings."""
    an = (config or get_config()).annotation
    parts = [
        build_gene_annotations(
            genes,
            chromsizes=chromsizes,
            genome=an["genome"],
            upstream=an["promoter_upstream"],
            downstream=an["promoter_downstream"],
        )
    ]
    if islands is not None:
        parts.append(
            build_cpg_annotations(
                islands,
                chromsizes=chromsizes,
                genome=an["genome"],
                shore_width=an["shore_width"],
                shelf_width=an["shelf_width"],
            )
        )
    return pd.concat(parts, ignore_index=True)


# ============================================================================
# WORKFLOW
# ============================================================================


def run_pipeline(
    beta: pd.DataFrame,
    metadata: pd.DataFrame,
    manifest: pd.DataFrame,
    expression: Optional[pd.DataFrame] = None,
    annotations: Optional[pd.DataFrame] = None,
    genes: Optional[pd.DataFrame] = None,
    islands: Optional[pd.DataFrame] = None,
    chromsizes: Optional[ChromSizes] = None,
    source_positions: Optional[pd.DataFrame] = None,
    config: Optional[PipelineConfig] = None,
    report: Optional[AnalysisReport] = None,
    verbose: bool = True,
) -> Dict[str, Any]:
    """
    Run the full differential methylation workflow.

    Parameters
    ----------
    beta : pd.DataFrame
        Probes x samples beta values
    metadata : pd.DataFrame
        Clinical metadata indexed by sample with ``patient`` and the
        configured group column
    manifest : pd.DataFrame
        Manifest of the target build, standardized or raw (renamed with
        ``probe_filter.manifest_columns``)
    expression : pd.DataFrame, optional
        Expression results, standardized (``gene``, ``expr_logFC``,
        ``expr_padj``) or raw (renamed with the ``integration`` columns)
    annotations : pd.DataFrame, optional
        Feature table from ``build_gene_annotations`` /
        ``build_cpg_annotations``; built from ``genes`` and ``islands``
        with the ``annotation`` settings when omitted
    genes : pd.DataFrame, optional
        Gene bodies, used to list overlapping genes per region
    islands : pd.DataFrame, optional
        CpG islands for the CpG context features
    chromsizes : dict or pd.Series, optional
        Chromosome lengths for the intergenic and open-sea features
    source_positions : pd.DataFrame, optional
        Probe positions (``chrom``, ``pos``) in the build used for region
        clustering; defaults to the manifest
    config : PipelineConfig, optional
        Defaults to the global configuration
    report : AnalysisReport, optional
        Receives a narrative of every stage

    Returns
    -------
    Dict[str, Any]
        Every intermediate table keyed by stage name, plus summaries
    """
    cfg = config or get_config()
    pf = cfg.probe_filter
    dm = cfg.differential
    rg = cfg.regions
    an = cfg.annotation
    ig = cfg.integration
    out: Dict[str, Any] = {
        "genomes": {"source": rg["source_genome"], "target": rg["target_genome"]}
    }

    manifest = as_manifest(manifest, cfg)
    if source_positions is not None:
        source_positions = as_manifest(source_positions, cfg)
    if expression is not None:
        expression = as_expression(expression, cfg)
    if annotations is None and genes is not None:
        annotations = build_annotations(genes, islands, chromsizes, cfg)

    if report is not None:
        report.heading("Differential Methylation Analysis")
        report.table(cfg.summary(), title="Configuration", max_rows=100, index=False)

    # 1. Samples
    levels = list(dm["levels"])
    metadata = metadata.loc[metadata[dm["group_col"]].isin(levels)]
    metadata = select_paired_samples(
        metadata,
        sample_type_col=dm["group_col"],
        normal_label=levels[1],
        verbose=verbose,
    )
    beta = align_samples(beta, metadata)
    out["metadata"] = metadata
    if report is not None:
        report.heading("Samples", level=2)
        counts = metadata[dm["group_col"]].value_counts()
        report.key_values(counts.to_dict(), title="Samples per group")

    # 2. Probe filter
    filtered, filter_summary = filter_probes(
        beta,
        manifest,
        sex_chromosomes=pf["sex_chromosomes"],
        maf_threshold=pf["maf_threshold"],
        drop_missing=pf["drop_missing"],
        verbose=verbose,
    )
    out["beta"] = filtered
    out["filter_summary"] = filter_summary
    if report is not None:
        report.heading("Probe filter", level=2)
        report.key_values(filter_summary)

    # 3. M-values
    M = beta_to_m(clip_beta(filtered))
    out["M"] = M

    # 4. Differential loci
    design = build_design(metadata, group_col=dm["group_col"], levels=levels)
    res = fit_differential(
        M,
        design,
        contrast=np.array([0, 1]),
        groups=metadata[dm["group_col"]],
        shrink=dm["shrink"],
        robust=dm["robust"],
        max_d0=dm["max_d0"],
    )
    loci = get_differential_loci(
        res,
        padj_threshold=dm["padj_threshold"],
        delta_beta_threshold=dm["delta_beta_threshold"],
    )
    out["design"] = design
    out["results"] = res
    out["loci"] = loci
    out["differential_summary"] = summarize_differential_results(
        res, dm["padj_threshold"], dm["delta_beta_threshold"]
    )
    if verbose:
        print(
            f"Differential loci: {len(loci):,} of {len(res):,} probes "
            f"(padj < {dm['padj_threshold']}, |delta beta| > {dm['delta_beta_threshold']})"
        )
    if report is not None:
        report.heading("Differential loci", level=2)
        report.paragraph(
            f"Effect sizes are {design.columns[1]} minus the reference level; "
            "negative values are hypermethylated in the case group."
        )
        report.key_values(out["differential_summary"])
        report.table(loci, title="Top loci")

    # 5. Regions
    positions = source_positions if source_positions is not None else manifest
    probe_stats = smooth_statistics(
        annotate_loci(res, positions, fdr=rg["fdr"]),
        lambda_=rg["lambda_"],
        C=rg["C"],
    )
    regions, membership = find_regions(
        probe_stats,
        lambda_=rg["lambda_"],
        C=rg["C"],
        min_cpgs=rg["min_cpgs"],
        pcutoff=rg["pcutoff"],
    )
    regions = remap_regions(regions, membership, manifest, genome=rg["target_genome"])
    if genes is not None:
        regions = attach_overlapping_genes(regions, genes)
    out["probe_stats"] = probe_stats
    out["regions"] = regions
    out["membership"] = membership
    if verbose:
        n_sig = int(probe_stats["is_sig"].sum())
        print(
            f"Regions: {len(regions):,} DMRs from {n_sig:,} significant probes "
            f"({rg['source_genome']} -> {rg['target_genome']})"
        )
    if report is not None:
        report.heading("Differentially methylated regions", level=2)
        report.paragraph(
            f"Regions were called on {rg['source_genome']} positions and "
            f"remapped to {rg['target_genome']}."
        )
        report.table(regions, title=f"DMRs ({rg['target_genome']})", index=False)

    # 6. Annotation
    if annotations is None:
        return out

    annotated = annotate_regions(regions, annotations)
    out["annotated"] = annotated
    out["annotation_counts"] = summarize_annotations(annotated, regions)
    promoter_type = an["promoter_type"] or f"{an['genome']}_genes_promoters"
    meth_genes = promoter_gene_table(annotated, annot_type=promoter_type)
    out["promoter_genes"] = meth_genes
    if report is not None:
        report.heading("Annotation", level=2)
        report.table(out["annotation_counts"], index=False)

    # 7. Expression
    if expression is None:
        return out

    merged = merge_methylation_expression(
        meth_genes, expression, padj_threshold=ig["expr_padj_threshold"]
    )
    merged = classify_quadrants(merged)
    out["merged"] = merged
    out["correlation"] = correlate_methylation_expression(
        merged, method=ig["correlation_method"]
    )
    if report is not None:
        report.heading("Methylation and expression", level=2)
        report.table(merged, index=False)
        for subset, values in out["correlation"].items():
            report.key_values(values, title=f"Correlation ({subset})")

    return out
