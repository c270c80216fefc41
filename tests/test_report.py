#!/usr/bin/env python
# coding: utf-8

"""
Tests for the PDF run report.
"""

import matplotlib.pyplot as plt
import pandas as pd
import pytest

from lihc_methylation.core.report import AnalysisReport


@pytest.fixture
def report(tmp_path):
    return AnalysisReport(str(tmp_path / "out" / "report.pdf"), echo=False)


class TestAnalysisReport:
    def test_save_creates_pdf(self, report, tmp_path):
        report.heading("Run")
        report.paragraph("Synthetic cohort.")
        report.save()
        path = tmp_path / "out" / "report.pdf"
        assert path.exists()
        assert path.read_bytes()[:4] == b"%PDF"

    def test_invalid_heading_level(self, report):
        with pytest.raises(ValueError, match="level"):
            report.heading("Too deep", level=4)

    def test_blank_paragraph_skipped(self, report):
        report.paragraph("   ")
        assert report.story == []

    def test_table_truncates(self, report):
        df = pd.DataFrame({"a": range(30), "b": [0.123456] * 30})
        report.table(df, title="Numbers", max_rows=5)
        report.save()

    def test_key_values(self, report):
        report.key_values({"n_input": 10, "n_retained": 8}, title="Probe filter")
        assert len(report.story) > 0

    def test_echo(self, tmp_path, capsys):
        report = AnalysisReport(str(tmp_path / "r.pdf"), echo=True)
        report.heading("Probe filter", level=2)
        assert "## Probe filter" in capsys.readouterr().out

    def test_figure(self, report):
        fig, ax = plt.subplots()
        ax.plot([0, 1], [0, 1])
        report.figure(fig, caption="Diagonal")
        plt.close(fig)
        assert report._n_figures == 1
        report.save()

    def test_missing_image(self, report, tmp_path):
        report.figure(str(tmp_path / "absent.png"))
        report.save()
