#!/usr/bin/env python
# coding: utf-8

"""
Tests for manifest handling, the probe filter and beta/M conversion.
"""

import numpy as np
import pandas as pd
import pytest

from lihc_methylation.core.errors import DataIntegrityError, EmptyResultWarning
from lihc_methylation.core.preprocessing import (
    beta_to_m,
    clean_chrom,
    clip_beta,
    filter_probes,
    m_to_beta,
    read_manifest,
    standardize_manifest,
)


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def manifest():
    return pd.DataFrame(
        {
            "chrom": ["chr1", "chr2", "chrX", "chr3", "chr4", "chr5"],
            "pos": [100, 200, 300, 400, 500, 600],
            "mask": [False, False, False, True, False, False],
            "maf": [np.nan, 0.0, np.nan, np.nan, 0.2, np.nan],
        },
        index=pd.Index(["cg1", "cg2", "cgX", "cgMask", "cgSnp", "cg5"], name="probe_id"),
    )


@pytest.fixture
def beta():
    return pd.DataFrame(
        {
            "S1": [0.1, 0.2, 0.3, 0.4, 0.5, 0.6],
            "S2": [0.2, 0.3, 0.4, 0.5, 0.6, np.nan],
        },
        index=["cg1", "cg2", "cgX", "cgMask", "cgSnp", "cg5"],
    )


# ============================================================================
# MANIFEST
# ============================================================================


class TestManifest:
    def test_clean_chrom(self):
        assert clean_chrom("1") == "chr1"
        assert clean_chrom("chrx") == "chrX"
        assert clean_chrom("Y") == "chrY"
        assert clean_chrom(np.nan) is None

    def test_standardize(self):
        raw = pd.DataFrame(
            {
                "probeID": ["cg1", "cg2"],
                "CpG_chrm": ["1", "chrX"],
                "CpG_beg": [10, 20],
                "MASK_general": [True, np.nan],
            }
        )
        manifest = standardize_manifest(raw)
        assert manifest.index.name == "probe_id"
        assert list(manifest["chrom"]) == ["chr1", "chrX"]
        assert list(manifest["mask"]) == [True, False]
        assert "maf" not in manifest.columns

    def test_standardize_missing_column(self):
        raw = pd.DataFrame({"probeID": ["cg1"], "CpG_chrm": ["1"]})
        with pytest.raises(ValueError, match="missing columns"):
            standardize_manifest(raw)

    def test_standardize_duplicates(self):
        raw = pd.DataFrame(
            {"probeID": ["cg1", "cg1"], "CpG_chrm": ["1", "1"], "CpG_beg": [1, 2]}
        )
        with pytest.raises(DataIntegrityError, match="duplicated probe IDs"):
            standardize_manifest(raw)

    def test_read_manifest_gz(self, tmp_path):
        path = tmp_path / "manifest.tsv.gz"
        pd.DataFrame(
            {
                "probeID": ["cg1"],
                "CpG_chrm": ["chr7"],
                "CpG_beg": [55],
                "MASK_general": [False],
                "MAF": [0.1],
            }
        ).to_csv(path, sep="\t", index=False)

        manifest = read_manifest(str(path), maf_col="MAF")
        assert manifest.loc["cg1", "pos"] == 55
        assert manifest.loc["cg1", "maf"] == pytest.approx(0.1)


# ============================================================================
# PROBE FILTER
# ============================================================================


class TestFilterProbes:
    def test_counts(self, beta, manifest):
        filtered, summary = filter_probes(beta, manifest, verbose=False)

        assert list(filtered.index) == ["cg1", "cg2"]
        assert summary["n_input"] == 6
        assert summary["missing_values"] == 1
        assert summary["sex_chromosome"] == 1
        assert summary["snp_masked"] == 2
        assert summary["n_retained"] == 2

    def test_all_nan_probe_removed(self):
        beta = pd.DataFrame(
            [[0.1, 0.2, 0.3, 0.4], [np.nan] * 4, [0.5, 0.6, 0.7, 0.8]],
            index=["cgA", "cgB", "cgC"],
            columns=["S1", "S2", "S3", "S4"],
        )
        manifest = pd.DataFrame(
            {"chrom": "chr1", "pos": [1, 2, 3], "mask": False},
            index=["cgA", "cgB", "cgC"],
        )
        filtered, _ = filter_probes(beta, manifest, verbose=False)
        assert filtered.shape == (2, 4)
        assert "cgB" not in filtered.index

    def test_retained_probes_are_clean(self, beta, manifest):
        filtered, _ = filter_probes(beta, manifest, maf_threshold=0.0, verbose=False)
        ann = manifest.loc[filtered.index]
        assert not filtered.isna().any().any()
        assert not ann["chrom"].isin(["chrX", "chrY"]).any()
        assert not ann["mask"].any()

    def test_maf_threshold(self, beta, manifest):
        filtered, summary = filter_probes(beta, manifest, maf_threshold=0.5, verbose=False)
        assert "cgSnp" in filtered.index
        assert summary["snp_masked"] == 1

    def test_maf_from_standardized_manifest(self):
        raw = pd.DataFrame(
            {
                "probeID": ["cgA", "cgB", "cgC"],
                "CpG_chrm": ["1", "2", "X"],
                "CpG_beg": [10, 20, 30],
                "MASK_general": [False, False, False],
                "MAF": [np.nan, 0.3, np.nan],
            }
        )
        manifest = standardize_manifest(raw, maf_col="MAF")
        beta = pd.DataFrame({"S1": [0.1, 0.2, 0.3]}, index=["cgA", "cgB", "cgC"])

        filtered, summary = filter_probes(beta, manifest, verbose=False)

        assert list(filtered.index) == ["cgA"]
        assert summary["snp_masked"] == 1
        assert summary["sex_chromosome"] == 1
        assert not manifest["mask"].any()

    def test_keep_missing(self, beta, manifest):
        filtered, summary = filter_probes(beta, manifest, drop_missing=False, verbose=False)
        assert "cg5" in filtered.index
        assert summary["missing_values"] == 0

    def test_probe_not_in_manifest(self, beta, manifest):
        with pytest.warns(UserWarning, match="no manifest position"):
            filtered, summary = filter_probes(beta, manifest.drop(index="cg2"), verbose=False)
        assert "cg2" not in filtered.index
        assert summary["not_in_manifest"] == 1

    def test_empty_result_warns(self, beta, manifest):
        manifest = manifest.assign(mask=True)
        with pytest.warns(EmptyResultWarning):
            filtered, _ = filter_probes(beta, manifest, verbose=False)
        assert len(filtered) == 0

    def test_verbose(self, beta, manifest, capsys):
        filter_probes(beta, manifest, verbose=True)
        assert "kept 2 / 6 probes" in capsys.readouterr().out


# ============================================================================
# TRANSFORMATION
# ============================================================================


class TestTransform:
    def test_known_values(self):
        assert beta_to_m(0.5) == pytest.approx(0.0)
        assert beta_to_m(0.8) == pytest.approx(2.0)
        assert beta_to_m(0.2) == pytest.approx(-2.0)

    def test_scalar_types(self):
        assert isinstance(beta_to_m(0.5), float)
        assert isinstance(m_to_beta(0.0), float)
        assert m_to_beta(0.0) == pytest.approx(0.5)

    def test_inverse(self):
        values = np.array([0.01, 0.25, 0.5, 0.75, 0.99])
        np.testing.assert_allclose(m_to_beta(beta_to_m(values)), values, atol=1e-9)

    def test_frame_preserves_labels(self, beta):
        M = beta_to_m(clip_beta(beta.fillna(0.5)))
        assert isinstance(M, pd.DataFrame)
        assert M.index.equals(beta.index)
        assert np.isfinite(M.values).all()

    def test_clip_keeps_logit_finite(self):
        clipped = clip_beta(np.array([0.0, 1.0]))
        assert np.isfinite(beta_to_m(clipped)).all()
