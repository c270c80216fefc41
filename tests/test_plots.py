#!/usr/bin/env python
# coding: utf-8

"""
Smoke tests for the presentation plots (Agg backend, see conftest).
"""

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from lihc_methylation.core.plots import (
    plot_annotation_counts,
    plot_beta_density,
    plot_methylation_expression,
    plot_region_track,
    plot_sample_ordination,
    plot_volcano,
)
from lihc_methylation.core.preprocessing import beta_to_m


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


@pytest.fixture
def groups(cohort):
    return cohort["metadata"]["sample_type"]


@pytest.fixture
def results():
    np.random.seed(1500)
    n = 200
    res = pd.DataFrame(
        {
            "padj": np.random.uniform(0, 1, n),
            "delta_beta": np.random.normal(0, 0.1, n),
        },
        index=[f"cg{i:08d}" for i in range(n)],
    )
    res.iloc[:10, 0] = 1e-8
    res.iloc[:5, 1] = -0.5
    res.iloc[5:10, 1] = 0.4
    return res


class TestPlots:
    def test_beta_density(self, cohort, groups, tmp_path):
        path = tmp_path / "density.png"
        fig = plot_beta_density(cohort["beta"], groups, save_path=str(path), dpi=50)
        assert path.exists()
        assert len(fig.axes[0].lines) >= cohort["beta"].shape[1]

    def test_sample_ordination(self, cohort, groups):
        fig = plot_sample_ordination(beta_to_m(cohort["beta"]), groups, top_n=50)
        assert "PC1" in fig.axes[0].get_xlabel()

    def test_ordination_needs_probes(self, cohort, groups):
        M = beta_to_m(cohort["beta"]).iloc[:1]
        with pytest.raises(ValueError, match="at least 2 complete probes"):
            plot_sample_ordination(M, groups)

    def test_volcano(self, results, tmp_path):
        path = tmp_path / "volcano.png"
        fig = plot_volcano(results, top_n=3, save_path=str(path), dpi=50)
        assert path.exists()
        assert len(fig.axes[0].texts) == 3

    def test_region_track(self, cohort, groups):
        membership = pd.DataFrame(
            {"region_id": "DMR00001", "probe_id": [f"cghyper{j}" for j in range(5)]}
        )
        fig = plot_region_track(
            cohort["beta"], cohort["source_manifest"], membership, "DMR00001", groups
        )
        assert "5 CpGs" in fig.axes[0].get_title()

    def test_region_track_unknown(self, cohort, groups):
        membership = pd.DataFrame({"region_id": ["DMR00001"], "probe_id": ["cghyper0"]})
        with pytest.raises(ValueError, match="Unknown region"):
            plot_region_track(
                cohort["beta"], cohort["source_manifest"], membership, "DMR00042", groups
            )

    def test_annotation_counts(self):
        counts = pd.DataFrame(
            {"annot_type": ["hg38_genes_promoters", "unannotated"], "n_regions": [4, 1]}
        )
        fig = plot_annotation_counts(counts)
        assert len(fig.axes[0].patches) == 2

    def test_methylation_expression(self):
        merged = pd.DataFrame(
            {
                "gene": ["G1", "G2", "G3"],
                "meandiff": [-0.4, 0.3, -0.25],
                "expr_logFC": [-2.0, 1.0, 0.5],
                "expr_padj": [0.001, 0.2, 0.01],
                "significance": ["significant", "not significant", "significant"],
            }
        )
        fig = plot_methylation_expression(merged, top_n=5)
        assert len(fig.axes[0].texts) == 2
