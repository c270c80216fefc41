#!/usr/bin/env python
# coding: utf-8

"""
PDF Run Report
Collects the narrative of a pipeline run (settings, counts, tables, plots)
"""

import os
from typing import Any, Dict, List, Optional

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.lib.utils import ImageReader
from reportlab.platypus import (
    Image,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

_HEADING_SIZES = {1: 16, 2: 14, 3: 12}


class AnalysisReport:
    """
    PDF report of a pipeline run.

    Every entry is echoed to stdout when ``echo`` is True, so the report
    doubles as the run log.

    Examples
    --------
    >>> report = AnalysisReport("out/report.pdf")
    >>> report.heading("Probe filter")
    >>> report.key_values({"n_retained": 380211})
    >>> report.save()
    """

    def __init__(self, path: str = "report.pdf", echo: bool = True):
        self.path = path
        self.echo = echo
        self.asset_dir = os.path.splitext(path)[0] + "_assets"
        self.doc = SimpleDocTemplate(path, pagesize=A4)
        self.styles = getSampleStyleSheet()
        for level, size in _HEADING_SIZES.items():
            self.styles.add(
                ParagraphStyle(
                    f"Heading{level}Report",
                    parent=self.styles["Normal"],
                    fontName="Helvetica-Bold",
                    fontSize=size,
                    leading=size + 2,
                    spaceBefore=18 if level == 1 else 10,
                    spaceAfter=6,
                )
            )
        self.story: List[Any] = []
        self._n_figures = 0

    def _print(self, text: str):
        if self.echo:
            print(text)

    def heading(self, text: str, level: int = 1):
        if level not in _HEADING_SIZES:
            raise ValueError("level must be 1, 2 or 3")
        self._print(f"{'#' * level} {text}")
        self.story.append(Paragraph(text, self.styles[f"Heading{level}Report"]))

    def paragraph(self, text: str):
        text = text.strip()
        if not text:
            return
        self._print(text)
        self.story.append(Paragraph(text, self.styles["Normal"]))
        self.story.append(Spacer(1, 0.08 * inch))

    def key_values(self, values: Dict[str, Any], title: Optional[str] = None):
        """Two-column table of settings or counts."""
        frame = pd.DataFrame(
            {"item": list(values.keys()), "value": [str(v) for v in values.values()]}
        )
        self.table(frame, title=title, index=False)

    def table(
        self,
        df: pd.DataFrame,
        title: Optional[str] = None,
        max_rows: int = 15,
        index: bool = True,
        float_format: str = "{:.4g}",
    ):
        """Add (the head of) a DataFrame as a grid table."""
        if title:
            self.story.append(Paragraph(f"<b>{title}</b>", self.styles["Normal"]))
            self.story.append(Spacer(1, 0.05 * inch))

        shown = df.head(max_rows)
        if index:
            shown = shown.reset_index()

        def fmt(v):
            return float_format.format(v) if isinstance(v, float) else str(v)

        rows = [[str(c) for c in shown.columns]]
        rows += [[fmt(v) for v in record] for record in shown.itertuples(index=False)]

        self._print(shown.to_string(index=False))
        if len(df) > max_rows:
            self._print(f"... ({len(df) - max_rows} more rows)")

        col_width = self.doc.width / max(len(rows[0]), 1)
        grid = Table(rows, colWidths=[col_width] * len(rows[0]), repeatRows=1)
        grid.setStyle(
            TableStyle(
                [
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("FONTSIZE", (0, 0), (-1, -1), 7),
                    ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                    ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ]
            )
        )
        self.story.append(grid)
        if len(df) > max_rows:
            self.story.append(
                Paragraph(f"<i>{len(df) - max_rows} more rows</i>", self.styles["Normal"])
            )
        self.story.append(Spacer(1, 0.15 * inch))

    def figure(self, fig, caption: Optional[str] = None, width: float = 5.5 * inch):
        """
        Add a matplotlib figure (saved as PNG beside the report) or the
        path of an existing image.
        """
        if isinstance(fig, str):
            path = fig
        else:
            os.makedirs(self.asset_dir, exist_ok=True)
            self._n_figures += 1
            path = os.path.join(self.asset_dir, f"figure_{self._n_figures:02d}.png")
            fig.savefig(path, dpi=150, bbox_inches="tight")

        self._print(f"[Figure: {path}] {caption or ''}")
        if not os.path.exists(path):
            self.paragraph(f"[Missing image: {path}]")
            return

        iw, ih = ImageReader(path).getSize()
        height = width * ih / float(iw)
        max_height = 8 * inch
        if height > max_height:
            width, height = width * max_height / height, max_height

        self.story.append(Image(path, width=width, height=height))
        if caption:
            self.story.append(Paragraph(f"<i>{caption}</i>", self.styles["Normal"]))
        self.story.append(Spacer(1, 0.2 * inch))

    def save(self):
        """Build the PDF."""
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.doc.build(self.story)
        self._print(f"✔ Report saved to {self.path}")
