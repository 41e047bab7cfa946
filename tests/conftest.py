"""Shared fixtures: a small synthetic version of the review spreadsheet."""

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from rpdmeta.config import Settings
from rpdmeta.core import ProportionDataset
from rpdmeta.analysis import ProportionMetaAnalysis


# Author, nND, nCJD, nAI, nTotal, Selection, Comparability, Exposure, Total, LatinAmerica, Definition
ROWS = [
    ("Papageorgiou, 2009", 20, 8, 6, 60, "***", "*", "**", 6, "No", "Clinical"),
    ("Geschwind, 2008", 15, 62, 8, 178, "****", "*", "**", 7, "No", "Time-based"),
    ("Sala, 2012", 10, 12, 5, 40, "***", "", "**", 5, "Yes", "Clinical"),
    ("Poser, 1999", 14, 30, 2, 80, "**", "", "**", 4, "No", "Time-based"),
    ("Chandra, 2017", 4, 10, 30, 70, "***", "*", "***", 7, "No", "Clinical"),
    ("Day, 2018", 40, 5, 3, 60, "****", "**", "***", 9, "No", "Time-based"),
    ("Grau-Rivera, 2015", 8, 40, 6, 60, "***", "*", "**", 6, "No", "Clinical"),
    ("Grau-Rivera, 2015*", 8, 40, 6, 60, "***", "*", "**", 6, "No", "Clinical"),
    ("Anuja, 2018", 6, 4, 10, 45, "**", "", "*", 3, "No", "Time-based"),
    ("Kojima, 2013", 9, 14, 3, 50, "***", "*", "**", 6, "No", "Clinical"),
    ("Studart Neto, 2017", 12, 10, 4, 61, "****", "*", "**", 7, "Yes", "Time-based"),
    ("Mahajan, 2020", 7, 6, 0, 35, "***", "", "**", 5, "Yes", "Clinical"),
    ("Zhang, 2021", 11, 9, 5, 55, "***", "*", "***", 7, "No", "Time-based"),
]

COLUMNS = [
    "Author", "nND", "nCJD", "nAI", "nTotal", "Selection", "Comparability",
    "Exposure", "Total", "LatinAmerica", "Definition",
]


def make_frame(rows=None) -> pd.DataFrame:
    return pd.DataFrame(rows or ROWS, columns=COLUMNS)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def frame():
    return make_frame()


@pytest.fixture
def dataset(frame, settings):
    return ProportionDataset.from_dataframe(frame, settings, name="synthetic")


@pytest.fixture
def csv_path(tmp_path, frame):
    path = tmp_path / "base.csv"
    frame.to_csv(path, index=False)
    return path


@pytest.fixture
def nd_result(dataset, settings):
    return ProportionMetaAnalysis.from_settings(dataset, "nd", settings).run()


@pytest.fixture
def dl_result(dataset):
    return ProportionMetaAnalysis(dataset, "nd", method_tau="DL").run()


def closed_form_dl(yi, vi):
    """DerSimonian-Laird estimates written out by hand."""
    yi = np.asarray(yi, dtype=float)
    vi = np.asarray(vi, dtype=float)
    w = 1 / vi
    te_fe = np.sum(w * yi) / np.sum(w)
    q = np.sum(w * (yi - te_fe) ** 2)
    df = len(yi) - 1
    c = np.sum(w) - np.sum(w ** 2) / np.sum(w)
    tau2 = max(0.0, (q - df) / c)
    w_re = 1 / (vi + tau2)
    te_re = np.sum(w_re * yi) / np.sum(w_re)
    se_re = np.sqrt(1 / np.sum(w_re))
    return {"te_fe": te_fe, "q": q, "tau2": tau2, "te_re": te_re, "se_re": se_re}


@pytest.fixture
def dl_reference():
    return closed_form_dl
