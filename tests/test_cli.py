"""Tests for the command-line interface."""

import pytest

from rpdmeta.cli import main
from rpdmeta.config import configure
from .conftest import make_frame, ROWS


@pytest.fixture(autouse=True)
def reset_settings():
    yield
    configure(None)


def test_runs_selected_analyses(csv_path, tmp_path):
    out_dir = tmp_path / "out"
    code = main([
        "--data", str(csv_path),
        "--output-dir", str(out_dir),
        "--category", "cjd",
        "--analysis", "forest",
        "--analysis", "heterogeneity",
        "--method-tau", "dl",
        "--quiet",
        "--report",
    ])
    assert code == 0
    assert (out_dir / "figures" / "cjd_forest.png").exists()
    assert (out_dir / "tables" / "cjd_leave_one_out.csv").exists()
    assert not (out_dir / "figures" / "nd_forest.png").exists()
    assert (out_dir / "report.html").exists()


def test_config_file(csv_path, tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text(f"data:\n  path: {csv_path}\nplots:\n  dpi: 40\n")
    code = main(["--config", str(config), "--output-dir", str(tmp_path / "o"),
                 "--category", "ai", "--analysis", "forest", "--quiet"])
    assert code == 0
    assert (tmp_path / "o" / "figures" / "ai_forest.png").exists()


def test_validation_error_exit_code(tmp_path, capsys):
    rows = list(ROWS)
    rows[2] = ("Sala, 2012", 50, 12, 5, 40, "***", "", "**", 5, "Yes", "Clinical")
    path = tmp_path / "bad.csv"
    make_frame(rows).to_csv(path, index=False)
    code = main(["--data", str(path), "--output-dir", str(tmp_path / "o"), "--quiet"])
    assert code == 2
    assert "Sala, 2012" in capsys.readouterr().err


def test_missing_data_file(tmp_path, capsys):
    code = main(["--data", str(tmp_path / "absent.xlsx"), "--quiet"])
    assert code == 2
    assert "not found" in capsys.readouterr().err


def test_unknown_category(csv_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["--data", str(csv_path), "--category", "vascular"])
    assert excinfo.value.code == 2


def test_unknown_analysis(csv_path):
    with pytest.raises(SystemExit):
        main(["--data", str(csv_path), "--analysis", "metaregression"])


def test_conflicting_pooling_options(csv_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["--data", str(csv_path), "--method", "GLMM", "--method-tau", "DL"])
    assert excinfo.value.code == 2
