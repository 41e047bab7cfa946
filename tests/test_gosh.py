"""Tests for GOSH subset analysis and diagnostics."""

import numpy as np
import pytest

from rpdmeta.analysis import (
    gosh,
    gosh_diagnostics,
    fit_effects,
    meta_proportions,
    InsufficientStudiesError,
)
from rpdmeta.analysis.gosh import _cluster_imbalance, _fit_subsets


@pytest.fixture
def small_result():
    return meta_proportions(
        [20, 15, 10, 14, 40, 9],
        [60, 178, 40, 80, 60, 50],
        ["A", "B", "C", "D", "E", "F"],
        method_tau="DL",
    )


class TestGosh:
    """Subset enumeration and vectorized fits."""

    def test_exhaustive(self, small_result):
        res = gosh(small_result)
        assert res.exhaustive
        assert res.n_subsets == 2 ** 6 - 1
        assert res.incl.shape == (63, 6)
        assert len({tuple(row) for row in res.incl}) == 63
        assert res.incl.any(axis=1).all()

    def test_full_set_matches_dersimonian_laird(self, small_result):
        res = gosh(small_result)
        full = np.flatnonzero(res.incl.all(axis=1))[0]
        fit = fit_effects(small_result.yi, small_result.vi, method_tau="DL")
        assert res.te[full] == pytest.approx(fit.te_random)
        assert res.tau2[full] == pytest.approx(fit.tau2)
        assert res.i2[full] == pytest.approx(fit.i2)
        assert res.q[full] == pytest.approx(fit.q)

    def test_single_study_subsets(self, small_result):
        res = gosh(small_result)
        singles = np.flatnonzero(res.k == 1)
        assert len(singles) == 6
        for row in singles:
            study = np.flatnonzero(res.incl[row])[0]
            assert res.te[row] == pytest.approx(small_result.yi[study])
            assert res.tau2[row] == 0
            assert res.i2[row] == 0

    def test_random_subsets(self, small_result):
        res = gosh(small_result, subsets=20, seed=1, chunk_size=7)
        assert not res.exhaustive
        assert res.n_subsets == 20
        assert res.incl.any(axis=1).all()
        again = gosh(small_result, subsets=20, seed=1, chunk_size=7)
        assert np.array_equal(res.incl, again.incl)

    def test_chunking_does_not_change_results(self, small_result):
        a = gosh(small_result, chunk_size=5)
        b = gosh(small_result, chunk_size=1000)
        assert np.allclose(a.te, b.te)

    def test_fixed_effect(self, small_result):
        res = gosh(small_result, method="FE")
        assert (res.tau2 == 0).all()

    def test_proportions_in_unit_interval(self, small_result):
        res = gosh(small_result)
        assert ((res.proportion >= 0) & (res.proportion <= 1)).all()
        frame = res.to_frame()
        assert list(frame.columns[-6:]) == ["A", "B", "C", "D", "E", "F"]

    def test_unknown_method(self, small_result):
        with pytest.raises(ValueError, match="Unknown GOSH method"):
            gosh(small_result, method="REML")

    def test_single_study(self):
        with pytest.raises(InsufficientStudiesError):
            gosh(meta_proportions([3], [10]))


def test_fit_subsets_common_effect():
    yi = np.array([0.0, 1.0])
    vi = np.array([1.0, 1.0])
    fits = _fit_subsets(np.array([[True, True]]), yi, vi, "FE")
    assert fits["te"][0] == pytest.approx(0.5)
    assert fits["q"][0] == pytest.approx(0.5)


def test_cluster_imbalance():
    labels = np.array([0, 0, 1, 1])
    incl = np.array([[1, 0], [1, 1], [0, 1], [0, 0]], dtype=bool)
    imbalance = _cluster_imbalance(labels, incl, ["A", "B"])
    assert imbalance.loc["A", 0] == pytest.approx(1.0)
    assert imbalance.loc["B", 0] == pytest.approx(0.0)


def test_cluster_imbalance_ignores_noise():
    labels = np.array([-1, -1, 0, 0])
    incl = np.array([[1, 0], [1, 1], [0, 1], [0, 0]], dtype=bool)
    imbalance = _cluster_imbalance(labels, incl, ["A", "B"])
    assert list(imbalance.columns) == [0]


class TestGoshDiagnostics:
    """Clustering of the subset cloud."""

    def test_clusters(self, nd_result):
        res = gosh(nd_result, seed=3)
        diag = gosh_diagnostics(res, db_min_pts=20, max_points=1000, seed=3)
        assert set(diag.clusters) == {"kmeans", "dbscan", "gmm"}
        assert len(diag.sample_index) == 1000
        assert np.all(np.diff(diag.sample_index) > 0)
        assert diag.scaled.min() >= 0 and diag.scaled.max() <= 1

        kmeans = diag.clusters["kmeans"]
        assert len(kmeans.labels) == 1000
        assert sum(kmeans.sizes.values()) == 1000
        assert kmeans.n_clusters == 2
        assert list(kmeans.imbalance.index) == res.studies

    def test_flagged_studies_follow_threshold(self, nd_result):
        res = gosh(nd_result)
        diag = gosh_diagnostics(res, max_points=2000, imbalance_threshold=0.5)
        for summary in diag.clusters.values():
            if summary.imbalance.empty:
                assert summary.flagged == []
                continue
            over = summary.imbalance.index[(summary.imbalance >= 0.5).any(axis=1)]
            assert summary.flagged == list(over)
        assert set(diag.flagged) <= set(res.studies)
        assert "GOSH diagnostics" in diag.summary()

    def test_all_subsets_clustered_when_few(self, small_result):
        res = gosh(small_result)
        diag = gosh_diagnostics(res, db_min_pts=5)
        assert len(diag.sample_index) == res.n_subsets
