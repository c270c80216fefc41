#!/usr/bin/env python
# coding: utf-8

"""
Tests for kernel smoothing, DMR calling and coordinate remapping.
"""

import numpy as np
import pandas as pd
import pytest

from lihc_methylation.core.engine import build_design, fit_differential
from lihc_methylation.core.errors import DataIntegrityError, EmptyResultWarning
from lihc_methylation.core.preprocessing import beta_to_m
from lihc_methylation.core.regions import (
    REGION_COLUMNS,
    annotate_loci,
    find_regions,
    region_coordinates,
    remap_regions,
    smooth_statistics,
)

# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def loci():
    """
    Three strong neighbouring probes on chr1 (100-300 bp), a lone strong
    probe on chr2 and weak probes spread 10 kb apart.
    """
    ids = ["a1", "a2", "a3", "lone"] + [f"w{i}" for i in range(20)]
    chrom = ["chr1"] * 3 + ["chr2"] + ["chr1"] * 10 + ["chr3"] * 10
    pos = [100, 200, 300, 5_000] + [20_000 + 10_000 * i for i in range(10)] * 2
    stat = [12.0, -11.0, 13.0, 15.0] + [0.5, -0.4] * 10
    diff = [-0.5, -0.4, -0.6, -0.3] + [0.01] * 20
    fdr = [1e-6, 1e-5, 1e-7, 1e-8] + [0.9] * 20
    frame = pd.DataFrame(
        {
            "chrom": chrom,
            "pos": pos,
            "stat": stat,
            "diff": diff,
            "ind_fdr": fdr,
        },
        index=pd.Index(ids, name="probe_id"),
    )
    frame["is_sig"] = frame["ind_fdr"] < 0.05
    return frame.sort_values(["chrom", "pos"])


@pytest.fixture
def called(loci):
    return find_regions(loci, lambda_=1000, C=2, min_cpgs=2)


@pytest.fixture
def cohort_results(cohort):
    """Moderated statistics for the shared synthetic cohort."""
    meta = cohort["metadata"]
    meta = meta[meta["patient"] != "TCGA-DD-0099"]
    M = beta_to_m(cohort["beta"][meta.index])
    design = build_design(meta)
    res = fit_differential(M, design, contrast=np.array([0, 1]), groups=meta["sample_type"])
    return res


# ============================================================================
# PROBE POSITIONS
# ============================================================================


class TestAnnotateLoci:
    def test_columns_and_order(self, cohort_results, cohort):
        loci = annotate_loci(cohort_results, cohort["source_manifest"])
        assert list(loci.columns) == ["chrom", "pos", "stat", "diff", "ind_fdr", "is_sig"]
        assert loci["pos"].is_monotonic_increasing
        assert len(loci) == len(cohort_results)

    def test_missing_position(self, cohort_results, cohort):
        manifest = cohort["source_manifest"].drop(index="cghyper0")
        with pytest.raises(DataIntegrityError, match="no genomic position"):
            annotate_loci(cohort_results, manifest)

    def test_nan_position(self, cohort_results, cohort):
        manifest = cohort["source_manifest"].astype({"pos": float})
        manifest.loc["cghyper0", "pos"] = np.nan
        with pytest.raises(DataIntegrityError, match="no genomic position"):
            annotate_loci(cohort_results, manifest)

    def test_duplicated_positions(self, cohort_results, cohort):
        manifest = cohort["source_manifest"]
        manifest = pd.concat([manifest, manifest.iloc[[0]]])
        with pytest.raises(DataIntegrityError, match="duplicated"):
            annotate_loci(cohort_results, manifest)

    def test_requires_statistics(self, cohort_results, cohort):
        with pytest.raises(ValueError, match="'t'"):
            annotate_loci(cohort_results.drop(columns="t"), cohort["source_manifest"])


# ============================================================================
# SMOOTHING
# ============================================================================


class TestSmoothing:
    def test_adds_columns(self, loci):
        smoothed = smooth_statistics(loci)
        for col in ("weighted_stat", "smoothed_p", "smoothed_fdr"):
            assert col in smoothed.columns
        assert smoothed["smoothed_p"].between(0, 1).all()
        assert (smoothed["smoothed_fdr"] >= smoothed["smoothed_p"] - 1e-12).all()

    def test_does_not_modify_input(self, loci):
        smooth_statistics(loci)
        assert "smoothed_p" not in loci.columns

    def test_isolated_probe_equals_own_statistic(self, loci):
        smoothed = smooth_statistics(loci)
        lone = smoothed.loc["w0"]
        assert lone["weighted_stat"] == pytest.approx(0.5**2)

    def test_cluster_beats_background(self, loci):
        smoothed = smooth_statistics(loci)
        strong = smoothed.loc[["a1", "a2", "a3"], "smoothed_p"].max()
        weak = smoothed.loc[[f"w{i}" for i in range(20)], "smoothed_p"].min()
        assert strong < weak

    def test_invalid_bandwidth(self, loci):
        with pytest.raises(ValueError, match="positive"):
            smooth_statistics(loci, lambda_=0)
        with pytest.raises(ValueError, match="positive"):
            smooth_statistics(loci, C=-1)

    def test_empty(self, loci):
        smoothed = smooth_statistics(loci.iloc[0:0])
        assert len(smoothed) == 0
        assert "smoothed_fdr" in smoothed.columns


# ============================================================================
# REGION CALLING
# ============================================================================


class TestFindRegions:
    def test_single_region(self, called):
        regions, membership = called
        assert list(regions.columns) == REGION_COLUMNS
        assert len(regions) == 1

        region = regions.iloc[0]
        assert region["region_id"] == "DMR00001"
        assert region["chrom"] == "chr1"
        assert region["start"] == 100
        assert region["end"] == 301
        assert region["width"] == 201
        assert region["no_cpgs"] == 3
        assert region["direction"] == "hyper"
        assert region["meandiff"] == pytest.approx(-0.5)
        assert region["maxdiff"] == pytest.approx(-0.6)

        assert sorted(membership["probe_id"]) == ["a1", "a2", "a3"]

    def test_region_count_bounded_by_significant_loci(self, loci, called):
        regions, _ = called
        assert len(regions) <= int(loci["is_sig"].sum())

    def test_min_cpgs_one_keeps_lone_probe(self, loci):
        regions, membership = find_regions(loci, min_cpgs=1)
        assert "chr2" in set(regions["chrom"])
        assert len(regions) == 2
        assert len(membership) == 4

    def test_gap_splits_region(self, loci):
        loci = loci.copy()
        loci.loc["a3", "pos"] = 1_500
        regions, _ = find_regions(loci, lambda_=1000, min_cpgs=2)
        assert len(regions) == 1
        assert regions.iloc[0]["no_cpgs"] == 2
        assert regions.iloc[0]["end"] == 201

    def test_region_statistics(self, called):
        regions, _ = called
        region = regions.iloc[0]
        assert 0 < region["hmfdr"] <= 1e-5
        assert 0 <= region["stouffer"] < 1e-3
        assert region["min_smoothed_fdr"] < 0.05

    def test_numeric_cutoff(self, loci):
        regions, _ = find_regions(loci, pcutoff=0.05)
        assert len(regions) >= 1
        assert regions.iloc[0]["chrom"] == "chr1"

    def test_bad_cutoff(self, loci):
        with pytest.raises(ValueError, match="pcutoff"):
            find_regions(loci, pcutoff="bonferroni")

    def test_no_significant_loci(self, loci):
        loci = loci.assign(is_sig=False)
        with pytest.warns(EmptyResultWarning):
            regions, membership = find_regions(loci)
        assert len(regions) == 0
        assert list(regions.columns) == REGION_COLUMNS
        assert len(membership) == 0

    def test_cohort_blocks(self, cohort_results, cohort):
        loci = smooth_statistics(annotate_loci(cohort_results, cohort["source_manifest"]))
        regions, membership = find_regions(loci)

        assert len(regions) <= int(loci["is_sig"].sum())
        by_dir = regions.set_index("direction")
        assert by_dir.loc["hyper", "start"] == 100_000
        assert by_dir.loc["hyper", "end"] == 100_801
        assert by_dir.loc["hypo", "start"] == 300_000
        assert set(membership["region_id"]) == set(regions["region_id"])


# ============================================================================
# REMAPPING
# ============================================================================


class TestRemap:
    @pytest.fixture
    def target(self):
        return pd.DataFrame(
            {"chrom": "chr1", "pos": [1_100, 1_200, 1_350, 9_000]},
            index=pd.Index(["a1", "a2", "a3", "lone"], name="probe_id"),
        )

    def test_coordinates_recomputed(self, called, target):
        regions, membership = called
        remapped = remap_regions(regions, membership, target, genome="hg38")

        region = remapped.iloc[0]
        assert region["start"] == 1_100
        assert region["end"] == 1_351
        assert region["width"] == 251
        assert region["source_coord"] == "chr1:100-301"
        assert region["genome"] == "hg38"
        assert region["no_cpgs"] == 3

    def test_span_matches_members(self, called, target):
        regions, membership = called
        remapped = remap_regions(regions, membership, target)
        for _, region in remapped.iterrows():
            members = membership.loc[membership["region_id"] == region["region_id"], "probe_id"]
            pos = target.loc[members, "pos"]
            assert region["start"] == pos.min()
            assert region["end"] == pos.max() + 1

    def test_missing_probe(self, called, target):
        regions, membership = called
        with pytest.raises(DataIntegrityError, match="missing from the manifest"):
            remap_regions(regions, membership, target.drop(index="a2"))

    def test_duplicated_manifest_row(self, called, target):
        regions, membership = called
        doubled = pd.concat([target, target.loc[["a1"]]])
        with pytest.raises(DataIntegrityError, match="duplicated probe IDs"):
            remap_regions(regions, membership, doubled)

    def test_unmapped_position(self, called, target):
        regions, membership = called
        target = target.astype({"pos": float})
        target.loc["a1", "pos"] = np.nan
        with pytest.raises(DataIntegrityError, match="no position in hg38"):
            remap_regions(regions, membership, target)

    def test_split_across_chromosomes(self, called, target):
        regions, membership = called
        target = target.copy()
        target.loc["a3", "chrom"] = "chr5"
        with pytest.raises(DataIntegrityError, match="several chromosomes"):
            remap_regions(regions, membership, target)

    def test_orphan_region(self, called, target):
        regions, membership = called
        with pytest.raises(DataIntegrityError, match="no member probes"):
            remap_regions(regions, membership.iloc[0:0], target)

    def test_unknown_region(self, called, target):
        regions, membership = called
        extra = pd.DataFrame({"region_id": ["DMR99999"], "probe_id": ["lone"]})
        with pytest.raises(DataIntegrityError, match="unknown regions"):
            remap_regions(regions, pd.concat([membership, extra]), target)

    def test_region_coordinates(self):
        regions = pd.DataFrame({"chrom": ["chr1"], "start": [10], "end": [20]})
        assert region_coordinates(regions).tolist() == ["chr1:10-20"]
