"""Tests for study records and dataset loading."""

import pandas as pd
import pytest

from rpdmeta.config import Settings
from rpdmeta.core import (
    Study,
    NOSAssessment,
    ProportionDataset,
    DatasetValidationError,
)
from .conftest import make_frame, ROWS


class TestNOSAssessment:
    """Newcastle-Ottawa ratings."""

    def test_from_star_strings(self):
        nos = NOSAssessment.from_values("***", "*", "**")
        assert (nos.selection, nos.comparability, nos.exposure) == (3, 1, 2)
        assert nos.total == 6

    def test_blank_cells_count_as_zero(self):
        nos = NOSAssessment.from_values("**", float("nan"), "", 4)
        assert nos.comparability == 0
        assert nos.exposure == 0
        assert nos.total == 4

    def test_overall_rating_is_kept(self):
        # overall ratings are recorded as stars, not as a domain sum
        nos = NOSAssessment.from_values("****", "*", "**", "***")
        assert nos.total == 3
        assert nos.symbols()["NOS"] == "3"
        assert NOSAssessment(4, 2, 3).total == 9

    def test_symbols(self):
        assert NOSAssessment(3, 0, 2).symbols() == {"S": "3", "C": "+", "E": "2", "NOS": "5"}


class TestStudy:
    """Study records."""

    def test_events_by_category(self):
        study = Study(label="A, 2020", n_total=50, n_nd=10, n_cjd=5, n_ai=2)
        assert study.events("nd") == 10
        assert study.events("cjd") == 5
        assert study.events("n_ai") == 2

    def test_unknown_category(self):
        study = Study(label="A, 2020", n_total=50)
        with pytest.raises(ValueError, match="Unknown category"):
            study.events("vascular")
        with pytest.raises(ValueError):
            study.events("n_total")

    def test_dict_roundtrip(self):
        study = Study(label="A, 2020", n_total=50, n_nd=10, nos=NOSAssessment(3, 1, 2),
                      latin_america="Yes")
        assert Study.from_dict(study.to_dict()) == study


class TestProportionDataset:
    """Loading, validation and per-category frames."""

    def test_excludes_duplicate_row(self, dataset):
        assert len(dataset) == len(ROWS) - 1
        assert "Grau-Rivera, 2015*" not in dataset.labels
        assert "Grau-Rivera, 2015" in dataset.labels

    def test_category_frame(self, dataset):
        df = dataset.category_frame("cjd")
        assert list(df.columns) == ["study", "events", "n", "proportion", "latin_america", "definition"]
        row = df[df["study"] == "Geschwind, 2008"].iloc[0]
        assert row["events"] == 62
        assert row["n"] == 178
        assert row["proportion"] == pytest.approx(62 / 178)
        assert row["latin_america"] == "No"

    def test_nos_frame(self, dataset):
        nos = dataset.nos_frame().set_index("study")
        assert nos.loc["Sala, 2012", "C"] == "+"
        assert nos.loc["Day, 2018", "NOS"] == "9"
        assert list(nos.columns) == ["S", "C", "E", "NOS"]

    def test_counts_are_integers(self, dataset):
        study = dataset.get_study("Day, 2018")
        assert isinstance(study.n_nd, int)
        assert isinstance(study.n_total, int)

    def test_summary_totals(self, dataset):
        assert dataset.total_events("nd") == sum(r[1] for r in ROWS) - 8
        assert "Studies: 12" in dataset.summary()

    def test_exclude(self, dataset):
        reduced = dataset.exclude(["Chandra, 2017", "Day, 2018"])
        assert len(reduced) == len(dataset) - 2
        assert len(dataset) == 12

    def test_exclude_unknown_study(self, dataset):
        with pytest.raises(ValueError, match="not in dataset"):
            dataset.exclude(["Nobody, 2000"])

    def test_dict_roundtrip(self, dataset):
        restored = ProportionDataset.from_dict(dataset.to_dict())
        assert restored.labels == dataset.labels
        assert restored.total_events("ai") == dataset.total_events("ai")

    def test_events_above_total(self, settings):
        rows = list(ROWS)
        rows[0] = ("Papageorgiou, 2009", 70, 8, 6, 60, "***", "*", "**", 6, "No", "Clinical")
        with pytest.raises(DatasetValidationError) as excinfo:
            ProportionDataset.from_dataframe(make_frame(rows), settings)
        assert any("Papageorgiou, 2009" in p and "exceeds" in p for p in excinfo.value.problems)

    def test_negative_and_fractional_counts(self, settings):
        rows = list(ROWS)
        rows[1] = ("Geschwind, 2008", -1, 62.5, 8, 178, "****", "*", "**", 7, "No", "Time-based")
        with pytest.raises(DatasetValidationError) as excinfo:
            ProportionDataset.from_dataframe(make_frame(rows), settings)
        assert len(excinfo.value.problems) == 2

    def test_validation_error_is_value_error(self):
        assert issubclass(DatasetValidationError, ValueError)

    def test_missing_columns(self, settings):
        frame = make_frame().drop(columns=["nCJD"])
        with pytest.raises(ValueError, match="nCJD"):
            ProportionDataset.from_dataframe(frame, settings)

    def test_custom_column_names(self):
        settings = Settings()
        settings.data.columns["study"] = "Study"
        frame = make_frame().rename(columns={"Author": "Study"})
        dataset = ProportionDataset.from_dataframe(frame, settings)
        assert "Day, 2018" in dataset.labels


class TestFromFile:
    """Reading spreadsheets from disk."""

    def test_csv(self, csv_path, settings):
        dataset = ProportionDataset.from_file(csv_path, settings)
        assert len(dataset) == 12
        assert dataset.name == "base"
        assert dataset.get_study("Sala, 2012").nos.comparability == 0

    def test_excel(self, tmp_path, frame, settings):
        path = tmp_path / "base.xlsx"
        frame.to_excel(path, index=False)
        dataset = ProportionDataset.from_file(path, settings)
        assert len(dataset) == 12
        assert dataset.get_study("Geschwind, 2008").n_cjd == 62

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ProportionDataset.from_file(tmp_path / "absent.xlsx")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "base.txt"
        path.write_text("Author\n")
        with pytest.raises(ValueError, match="Unsupported"):
            ProportionDataset.from_file(path)
