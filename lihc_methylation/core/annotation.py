#!/usr/bin/env python
# coding: utf-8

"""
Genomic Annotation of Regions

Builds gene and CpG-context feature sets for one genome build and
intersects them with DMRs. Feature tables follow a BED-like schema:
``chrom``, ``start``, ``end`` (half-open), ``strand``, ``id``, ``symbol``,
``type`` where ``type`` is named ``<genome>_genes_<feature>`` or
``<genome>_cpg_<context>``.
"""

from typing import Dict, Optional, Union

import bioframe as bf
import numpy as np
import pandas as pd

from lihc_methylation.core.errors import warn_if_empty

ANNOTATION_COLUMNS = ["chrom", "start", "end", "strand", "id", "symbol", "type"]

ChromSizes = Union[Dict[str, int], pd.Series]


# ============================================================================
# HELPERS
# ============================================================================


def _as_annotation(
    df: pd.DataFrame,
    annot_type: str,
    symbol_col: Optional[str] = None,
) -> pd.DataFrame:
    """Coerce an interval table to the annotation schema."""
    out = pd.DataFrame(
        {
            "chrom": df["chrom"].astype(str).values,
            "start": df["start"].astype(np.int64).values,
            "end": df["end"].astype(np.int64).values,
        }
    )
    out["strand"] = df["strand"].values if "strand" in df.columns else "*"
    if symbol_col is not None and symbol_col in df.columns:
        out["symbol"] = df[symbol_col].values
    else:
        out["symbol"] = np.nan
    feature = annot_type.rsplit("_", 1)[-1]
    out["id"] = [f"{feature}:{i + 1}" for i in range(len(out))]
    out["type"] = annot_type
    return out[ANNOTATION_COLUMNS]


def _intervals(df: pd.DataFrame) -> pd.DataFrame:
    return df[["chrom", "start", "end"]].reset_index(drop=True)


def _flank(df: pd.DataFrame, pad: int) -> pd.DataFrame:
    expanded = bf.expand(_intervals(df), pad=pad)
    expanded["start"] = expanded["start"].clip(lower=0)
    return _intervals(bf.merge(expanded))


# ============================================================================
# GENE FEATURES
# ============================================================================


def promoters_from_genes(
    genes: pd.DataFrame,
    upstream: int = 1000,
    downstream: int = 0,
) -> pd.DataFrame:
    """
    Strand-aware promoter windows around the TSS.

    - '+' strand: [TSS - upstream, TSS + downstream)
    - '-' strand: [TSS - downstream, TSS + upstream)
    """
    g = genes.reset_index(drop=True)
    plus = (g["strand"] == "+").values
    tss = np.where(plus, g["start"], g["end"])
    prom_start = np.where(plus, tss - upstream, tss - downstream)
    prom_end = np.where(plus, tss + downstream, tss + upstream)

    promoters = g.copy()
    promoters["start"] = np.clip(prom_start, 0, None).astype(np.int64)
    promoters["end"] = prom_end.astype(np.int64)
    promoters = promoters[promoters["end"] > promoters["start"]]
    return bf.sort_bedframe(promoters)


def build_gene_annotations(
    genes: pd.DataFrame,
    exons: Optional[pd.DataFrame] = None,
    introns: Optional[pd.DataFrame] = None,
    utr5: Optional[pd.DataFrame] = None,
    utr3: Optional[pd.DataFrame] = None,
    chromsizes: Optional[ChromSizes] = None,
    genome: str = "hg38",
    upstream: int = 1000,
    downstream: int = 0,
    symbol_col: str = "gene_name",
) -> pd.DataFrame:
    """
    Assemble gene-centric feature sets.

    Parameters
    ----------
    genes : pd.DataFrame
        Gene (or transcript) bodies: chrom, start, end, strand, gene_name
    exons, introns, utr5, utr3 : pd.DataFrame, optional
        Pre-computed feature intervals carrying ``symbol_col``
    chromsizes : dict or pd.Series, optional
        Needed for the intergenic complement
    upstream, downstream : int
        Promoter window around the TSS

    Returns
    -------
    pd.DataFrame
        Annotation table with types promoters, 1to5kb, exons, introns,
        5UTRs, 3UTRs and (with chromsizes) intergenic
    """
    prefix = f"{genome}_genes"
    promoters = promoters_from_genes(genes, upstream=upstream, downstream=downstream)
    upstream_5kb = promoters_from_genes(genes, upstream=5000, downstream=-upstream)

    parts = [
        _as_annotation(promoters, f"{prefix}_promoters", symbol_col),
        _as_annotation(upstream_5kb, f"{prefix}_1to5kb", symbol_col),
    ]
    for table, name in (
        (exons, "exons"),
        (introns, "introns"),
        (utr5, "5UTRs"),
        (utr3, "3UTRs"),
    ):
        if table is not None and len(table) > 0:
            parts.append(_as_annotation(table, f"{prefix}_{name}", symbol_col))

    if chromsizes is not None:
        genic = pd.concat(
            [_intervals(genes), _intervals(promoters), _intervals(upstream_5kb)],
            ignore_index=True,
        )
        view = bf.make_viewframe(chromsizes)
        intergenic = bf.complement(bf.merge(genic), view_df=view)
        parts.append(_as_annotation(intergenic, f"{prefix}_intergenic"))

    return bf.sort_bedframe(pd.concat(parts, ignore_index=True))


# ============================================================================
# CpG CONTEXT
# ============================================================================


def build_cpg_annotations(
    islands: pd.DataFrame,
    chromsizes: Optional[ChromSizes] = None,
    genome: str = "hg38",
    shore_width: int = 2000,
    shelf_width: int = 2000,
) -> pd.DataFrame:
    """
    CpG islands, shores, shelves and open sea.

    Shores are the ``shore_width`` flanks of islands, shelves the next
    ``shelf_width`` bases beyond the shores, and open sea (``inter``)
    everything else on the chromosomes given by ``chromsizes``.
    """
    prefix = f"{genome}_cpg"
    island_iv = _intervals(bf.merge(_intervals(islands)))
    shore_hull = _flank(islands, shore_width)
    shelf_hull = _flank(islands, shore_width + shelf_width)

    shores = _intervals(bf.subtract(shore_hull, island_iv))
    shelves = _intervals(bf.subtract(shelf_hull, shore_hull))

    parts = [
        _as_annotation(island_iv, f"{prefix}_islands"),
        _as_annotation(shores, f"{prefix}_shores"),
        _as_annotation(shelves, f"{prefix}_shelves"),
    ]

    if chromsizes is not None:
        view = bf.make_viewframe(chromsizes)
        open_sea = bf.complement(shelf_hull, view_df=view)
        parts.append(_as_annotation(open_sea, f"{prefix}_inter"))

    return bf.sort_bedframe(pd.concat(parts, ignore_index=True))


# ============================================================================
# REGION ANNOTATION
# ============================================================================


def annotate_regions(regions: pd.DataFrame, annotations: pd.DataFrame) -> pd.DataFrame:
    """
    Pair every region with every overlapping feature.

    Parameters
    ----------
    regions : pd.DataFrame
        DMR table with ``chrom``, ``start``, ``end``
    annotations : pd.DataFrame
        Feature table (see module docstring)

    Returns
    -------
    pd.DataFrame
        One row per (region, feature) overlap; region columns followed by
        ``annot_type``, ``annot_id``, ``annot_symbol``, ``annot_start``,
        ``annot_end``, ``annot_strand``
    """
    if len(regions) == 0 or len(annotations) == 0:
        empty = regions.iloc[0:0].copy()
        for col in ("annot_type", "annot_id", "annot_symbol"):
            empty[col] = pd.Series(dtype=object)
        return warn_if_empty(empty, "annotate_regions")

    pairs = bf.overlap(
        regions.reset_index(drop=True),
        annotations.reset_index(drop=True),
        how="inner",
        suffixes=("", "_annot"),
    )
    pairs = pairs.drop(columns=["chrom_annot"])
    pairs = pairs.rename(
        columns={
            f"{c}_annot": f"annot_{c}"
            for c in ("start", "end", "strand", "id", "symbol", "type")
        }
    )
    return warn_if_empty(pairs.reset_index(drop=True), "annotate_regions")


def summarize_annotations(
    annotated: pd.DataFrame,
    regions: Optional[pd.DataFrame] = None,
    region_col: str = "region_id",
) -> pd.DataFrame:
    """
    Number of distinct regions overlapping each annotation type.

    When ``regions`` is given, an ``unannotated`` row counts regions that
    overlap nothing.
    """
    counts = (
        annotated.groupby("annot_type")[region_col]
        .nunique()
        .rename("n_regions")
        .reset_index()
        .sort_values("n_regions", ascending=False, kind="mergesort")
    )
    if regions is not None:
        n_free = int((~regions[region_col].isin(annotated[region_col])).sum())
        counts = pd.concat(
            [counts, pd.DataFrame({"annot_type": ["unannotated"], "n_regions": [n_free]})],
            ignore_index=True,
        )
    return counts.reset_index(drop=True)


def attach_overlapping_genes(
    regions: pd.DataFrame,
    genes: pd.DataFrame,
    col: str = "overlapping_genes",
    symbol_col: str = "gene_name",
    flank: int = 0,
) -> pd.DataFrame:
    """
    Add a comma-joined list of gene symbols overlapping each region.

    Genes are padded by ``flank`` bases on both sides before overlapping.
    """
    out = regions.copy()
    if len(regions) == 0:
        out[col] = pd.Series(dtype=object)
        return out

    gene_iv = genes[["chrom", "start", "end", symbol_col]].reset_index(drop=True)
    if flank:
        gene_iv = bf.expand(gene_iv, pad=flank)

    hits = bf.overlap(
        regions[["region_id", "chrom", "start", "end"]].reset_index(drop=True),
        gene_iv,
        how="inner",
        suffixes=("", "_gene"),
    )
    symbols = hits.groupby("region_id")[f"{symbol_col}_gene"].agg(
        lambda s: ", ".join(sorted(set(s.dropna().astype(str))))
    )
    out[col] = out["region_id"].map(symbols)
    return out


def promoter_gene_table(
    annotated: pd.DataFrame,
    annot_type: str = "hg38_genes_promoters",
    symbol_col: str = "annot_symbol",
    rank_col: str = "min_smoothed_fdr",
) -> pd.DataFrame:
    """
    One row per gene whose promoter overlaps a DMR.

    Rows of ``annot_type`` are kept, comma-joined symbols are split into
    one row per gene, and each gene keeps its best-ranked region.

    Returns
    -------
    pd.DataFrame
        Indexed 0..n-1 with a ``gene`` column plus the region columns
    """
    sub = annotated.loc[annotated["annot_type"] == annot_type].copy()
    sub["gene"] = sub[symbol_col].astype("string").str.split(",")
    sub = sub.explode("gene")
    sub["gene"] = sub["gene"].str.strip()
    sub = sub[sub["gene"].notna() & (sub["gene"] != "") & (sub["gene"] != "NA")]

    if rank_col in sub.columns:
        sub = sub.sort_values(rank_col, kind="mergesort")
    genes = sub.drop_duplicates(subset="gene", keep="first")

    cols = ["gene"] + [c for c in genes.columns if c != "gene"]
    genes = genes[cols].reset_index(drop=True)
    genes["gene"] = genes["gene"].astype(str)
    return warn_if_empty(genes, "promoter_gene_table")
