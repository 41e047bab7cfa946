"""End-to-end tests for the category workflow."""

import pytest

from rpdmeta.config import Settings, ANALYSES
from rpdmeta.pipelines import CategoryWorkflow, run_all, generate_report


@pytest.fixture
def fast_settings():
    settings = Settings()
    settings.gosh.subsets = 300
    settings.gosh.max_points = 300
    settings.gosh.db_min_pts = 10
    settings.plots.dpi = 40
    return settings


class TestCategoryWorkflow:
    """Per-category stages."""

    def test_forest_and_bias(self, dataset, fast_settings, tmp_path):
        wf = CategoryWorkflow(dataset, "nd", fast_settings, output_dir=tmp_path, verbose=False)
        out = wf.run(["forest", "publication_bias"])
        assert out.completed == ["forest", "publication_bias"]
        assert set(out.figures) == {"forest", "funnel", "funnel_contour"}
        assert all(path.exists() for path in out.figures.values())
        assert out.figures["forest"] == tmp_path / "figures" / "nd_forest.png"
        assert out.tables["studies"] == tmp_path / "tables" / "nd_studies.csv"
        assert out.results["egger"].k == len(dataset)
        assert "regtest" in out.results

    def test_egger_skipped_below_k_min(self, dataset, fast_settings, tmp_path):
        fast_settings.category("cjd").egger_k_min = 50
        wf = CategoryWorkflow(dataset, "cjd", fast_settings, output_dir=tmp_path, verbose=False)
        with pytest.warns(UserWarning, match="publication_bias"):
            out = wf.run(["forest", "publication_bias", "heterogeneity"])
        assert out.completed == ["forest", "publication_bias", "heterogeneity"]
        assert any("at least 50 studies" in w for w in out.warnings)
        assert "egger" not in out.results
        assert out.results["regtest"].k == len(dataset)
        assert set(out.figures) >= {"funnel", "funnel_contour"}

    def test_outlier_reanalysis(self, dataset, fast_settings, tmp_path):
        wf = CategoryWorkflow(dataset, "nd", fast_settings, output_dir=tmp_path, verbose=False)
        out = wf.run(["outliers"])
        reduced = out.results["meta_without_outliers"]
        assert reduced.k == len(dataset) - 2
        assert "Day, 2018" not in reduced.studies
        assert "forest_without_outliers" in out.figures

    def test_outlier_reanalysis_below_egger_k_min(self, dataset, fast_settings, tmp_path):
        fast_settings.category("nd").egger_k_min = 12
        wf = CategoryWorkflow(dataset, "nd", fast_settings, output_dir=tmp_path, verbose=False)
        out = wf.run(["outliers"])
        assert out.completed == ["outliers"]
        assert out.warnings == []
        assert out.results["meta_without_outliers"].k == len(dataset) - 2
        assert out.figures["forest_without_outliers"].exists()

    def test_configured_category(self, dataset, tmp_path):
        settings = Settings.from_dict({
            "categories": {
                "prion_alt": {"column": "n_cjd", "title": "Prion (alternate)", "outliers": []},
            },
            "plots": {"dpi": 40},
        })
        wf = CategoryWorkflow(dataset, "prion_alt", settings, output_dir=tmp_path, verbose=False)
        out = wf.run(["forest", "heterogeneity"])
        assert out.completed == ["forest", "heterogeneity"]
        assert out.results["meta"].events.sum() == dataset.total_events("cjd")
        assert (tmp_path / "figures" / "prion_alt_forest.png").exists()

    def test_missing_configured_outlier(self, dataset, fast_settings, tmp_path):
        fast_settings.category("ai").outliers = ["Nobody, 1990"]
        wf = CategoryWorkflow(dataset, "ai", fast_settings, output_dir=tmp_path, verbose=False)
        with pytest.warns(UserWarning):
            out = wf.run(["outliers"])
        assert "meta_without_outliers" not in out.results
        assert len(out.warnings) == 2

    def test_default_analyses_for_category(self, dataset, fast_settings, tmp_path):
        wf = CategoryWorkflow(dataset, "ai", fast_settings, output_dir=tmp_path, verbose=False)
        out = wf.run()
        assert "gosh" not in out.completed
        assert "baujat" not in out.completed
        assert "influence" in out.completed
        assert "subgroup_latin_america" in out.tables

    def test_unknown_analysis(self, dataset, fast_settings, tmp_path):
        wf = CategoryWorkflow(dataset, "nd", fast_settings, output_dir=tmp_path, verbose=False)
        with pytest.raises(ValueError, match="Unknown analyses"):
            wf.run(["meta_regression"])

    def test_verbose_output(self, dataset, fast_settings, tmp_path, capsys):
        wf = CategoryWorkflow(dataset, "cjd", fast_settings, output_dir=tmp_path, verbose=True)
        wf.run(["forest"])
        printed = capsys.readouterr().out
        assert "[cjd] Pooling proportions..." in printed
        assert "Random effects model" in printed


def test_run_all_and_report(dataset, fast_settings, tmp_path):
    outputs = run_all(fast_settings, dataset=dataset, output_dir=tmp_path, verbose=False)
    assert list(outputs) == ["nd", "cjd", "ai"]
    assert outputs["nd"].completed == list(ANALYSES)
    assert "gosh_diagnostics" in outputs["nd"].figures
    assert (tmp_path / "tables" / "nd_influence.csv").exists()

    report = generate_report(
        {key: out.to_report_entry() for key, out in outputs.items()},
        output_path=tmp_path / "report.html",
    )
    html = report.read_text()
    assert "Prion diseases" in html
    assert 'src="figures/cjd_forest.png"' in html


def test_run_all_rejects_unknown_category(dataset, fast_settings, tmp_path):
    with pytest.raises(ValueError, match="Unknown category"):
        run_all(fast_settings, dataset=dataset, categories=["nd", "vascular"],
                output_dir=tmp_path, verbose=False)
    assert not (tmp_path / "tables" / "nd_studies.csv").exists()
