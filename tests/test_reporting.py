"""Tests for report generation."""

import pandas as pd
import pytest

from rpdmeta.pipelines import (
    ReportConfig,
    generate_report,
    table_to_html,
    statistics_table,
    export_tables,
)


STATS = {
    "Pooled proportion": {"proportion": 0.2, "ci_lower": 0.15, "ci_upper": 0.26},
    "Egger intercept": {"estimate": -1.2, "ci_lower": -2.5, "ci_upper": 0.1, "p_value": 0.03},
    "tau^2": 0.41,
}


def test_table_to_html():
    html = table_to_html(pd.DataFrame({"study": ["A"], "proportion": [0.123456]}), title="Studies")
    assert "<h3>Studies</h3>" in html
    assert "0.1235" in html
    assert "<table" in html


class TestStatisticsTable:
    """Formatted statistics tables."""

    def test_markdown(self):
        table = statistics_table(STATS)
        lines = table.splitlines()
        assert lines[0].startswith("| Metric")
        assert "| Pooled proportion | 0.2000 | [0.1500, 0.2600] | N/A |" in lines
        assert "0.0300*" in table

    def test_latex(self):
        table = statistics_table(STATS, format="latex")
        assert r"\begin{tabular}" in table
        assert r"tau^2 & 0.410 & -- & -- \\" in table

    def test_html(self):
        assert "<table" in statistics_table(STATS, format="html")

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            statistics_table(STATS, format="docx")


def test_generate_report(tmp_path, nd_result):
    figure = tmp_path / "figures" / "nd_forest.png"
    figure.parent.mkdir()
    figure.write_bytes(b"")
    output = generate_report(
        {
            "nd": {
                "title": "Neurodegenerative diseases",
                "meta": nd_result.to_dict(),
                "stats": STATS,
                "summaries": {"Meta-analysis": nd_result.summary()},
                "tables": {"Studies": nd_result.to_frame()},
                "figures": {"Forest plot": figure},
                "warnings": ["Egger's test skipped"],
            }
        },
        output_path=tmp_path / "report.html",
        config=ReportConfig(title="Test report"),
    )
    html = output.read_text()
    assert "<title>Test report</title>" in html
    assert "Neurodegenerative diseases" in html
    assert 'src="figures/nd_forest.png"' in html
    assert "Egger&#39;s test skipped" in html or "Egger's test skipped" in html
    assert "Random effects model" in html


def test_export_tables(tmp_path):
    paths = export_tables({"loo": pd.DataFrame({"a": [1, 2]})}, tmp_path / "tables")
    assert paths["loo"].name == "loo.csv"
    assert pd.read_csv(paths["loo"])["a"].tolist() == [1, 2]
