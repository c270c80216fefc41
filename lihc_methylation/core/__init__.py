#!/usr/bin/env python
# coding: utf-8

"""
Differential Methylation Analysis of Paired Tumor/Normal Samples

Toolkit for 450K methylation arrays: probe QC, per-probe moderated
statistics, DMR calling, genomic annotation and expression integration.

Modules
-------
config : Thresholds, column mappings and genome-build settings
loader : Beta matrices, TCGA metadata, sample pairing, checkpoints
preprocessing : Manifest-driven probe filter, beta <-> M conversion
engine : Empirical Bayes linear models and the loci filter
regions : Kernel-smoothed DMR calling and coordinate remapping
annotation : Gene and CpG-context feature sets, region overlaps
integration : Promoter methylation vs. gene expression
plots : Presentation figures
report : PDF run report
pipeline : End-to-end workflow
"""

__version__ = "0.1.0"

# Configuration
from lihc_methylation.core.config import (
    PipelineConfig,
    export_default_config,
    get_config,
    load_config,
    reset_config,
)

# Errors
from lihc_methylation.core.errors import DataIntegrityError, EmptyResultWarning

# Loading
from lihc_methylation.core.loader import (
    align_samples,
    load_checkpoint,
    metadata_from_barcodes,
    parse_tcga_barcode,
    read_beta_matrix,
    read_sample_metadata,
    save_checkpoint,
    select_paired_samples,
)

# Probe filter and transformation
from lihc_methylation.core.preprocessing import (
    beta_to_m,
    clip_beta,
    filter_probes,
    m_to_beta,
    read_manifest,
    standardize_manifest,
)

# Differential Analysis
from lihc_methylation.core.engine import (
    build_design,
    export_results,
    fit_differential,
    get_differential_loci,
    methylation_direction,
    summarize_differential_results,
    top_loci,
)

# Regions
from lihc_methylation.core.regions import (
    annotate_loci,
    find_regions,
    remap_regions,
    smooth_statistics,
)

# Annotation
from lihc_methylation.core.annotation import (
    annotate_regions,
    attach_overlapping_genes,
    build_cpg_annotations,
    build_gene_annotations,
    promoter_gene_table,
    promoters_from_genes,
    summarize_annotations,
)

# Integration
from lihc_methylation.core.integration import (
    classify_quadrants,
    correlate_methylation_expression,
    merge_methylation_expression,
    read_expression_results,
    standardize_expression,
)

# Plots and reporting
from lihc_methylation.core.plots import (
    plot_annotation_counts,
    plot_beta_density,
    plot_methylation_expression,
    plot_region_track,
    plot_sample_ordination,
    plot_volcano,
)
from lihc_methylation.core.report import AnalysisReport
from lihc_methylation.core.pipeline import (
    as_expression,
    as_manifest,
    build_annotations,
    load_expression,
    load_manifest,
    run_pipeline,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "PipelineConfig",
    "get_config",
    "load_config",
    "reset_config",
    "export_default_config",
    # Errors
    "DataIntegrityError",
    "EmptyResultWarning",
    # Loading
    "read_beta_matrix",
    "read_sample_metadata",
    "parse_tcga_barcode",
    "metadata_from_barcodes",
    "select_paired_samples",
    "align_samples",
    "save_checkpoint",
    "load_checkpoint",
    # Probe filter
    "read_manifest",
    "standardize_manifest",
    "filter_probes",
    "clip_beta",
    "beta_to_m",
    "m_to_beta",
    # Engine
    "build_design",
    "fit_differential",
    "get_differential_loci",
    "methylation_direction",
    "summarize_differential_results",
    "export_results",
    "top_loci",
    # Regions
    "annotate_loci",
    "smooth_statistics",
    "find_regions",
    "remap_regions",
    # Annotation
    "promoters_from_genes",
    "build_gene_annotations",
    "build_cpg_annotations",
    "annotate_regions",
    "summarize_annotations",
    "attach_overlapping_genes",
    "promoter_gene_table",
    # Integration
    "read_expression_results",
    "standardize_expression",
    "merge_methylation_expression",
    "correlate_methylation_expression",
    "classify_quadrants",
    # Plots
    "plot_beta_density",
    "plot_sample_ordination",
    "plot_volcano",
    "plot_region_track",
    "plot_annotation_counts",
    "plot_methylation_expression",
    # Reporting
    "AnalysisReport",
    # Pipeline
    "as_expression",
    "as_manifest",
    "build_annotations",
    "load_expression",
    "load_manifest",
    "run_pipeline",
]
