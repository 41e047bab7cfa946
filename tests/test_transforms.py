"""Tests for proportion transformations."""

import numpy as np
import pytest
from scipy import stats

from rpdmeta.analysis.transforms import (
    transform,
    back_transform,
    continuity_corrected,
    harmonic_mean,
    study_confint,
)


class TestTransform:
    """Forward transformations."""

    def test_logit(self):
        yi, vi = transform([20, 5], [100, 50], sm="PLOGIT")
        assert yi[0] == pytest.approx(np.log(20 / 80))
        assert vi[0] == pytest.approx(1 / 20 + 1 / 80)
        assert yi[1] == pytest.approx(np.log(5 / 45))

    def test_continuity_correction_for_zero_events(self):
        yi, vi = transform([0], [10], sm="PLOGIT", incr=0.5)
        assert yi[0] == pytest.approx(np.log(0.5 / 10.5))
        assert vi[0] == pytest.approx(1 / 0.5 + 1 / 10.5)

    def test_continuity_correction_for_all_events(self):
        x, n, corrected = continuity_corrected([10, 3], [10, 10], sm="PLOGIT")
        assert corrected.tolist() == [True, False]
        assert x.tolist() == [10.5, 3.0]
        assert n.tolist() == [11.0, 10.0]

    def test_arcsine_needs_no_correction(self):
        yi, vi = transform([0], [25], sm="PAS")
        assert yi[0] == 0.0
        assert vi[0] == pytest.approx(1 / 100)

    def test_raw_proportions(self):
        yi, vi = transform([30], [100], sm="PRAW")
        assert yi[0] == pytest.approx(0.3)
        assert vi[0] == pytest.approx(0.3 * 0.7 / 100)

    def test_unknown_measure(self):
        with pytest.raises(ValueError, match="Unknown summary measure"):
            transform([1], [10], sm="OR")

    def test_lowercase_measure_accepted(self):
        yi, _ = transform([20], [100], sm="plogit")
        assert yi[0] == pytest.approx(np.log(0.25))


class TestBackTransform:
    """Back-transformation to the proportion scale."""

    @pytest.mark.parametrize("sm", ["PLOGIT", "PAS", "PLN", "PRAW"])
    def test_inverts_transform(self, sm):
        yi, _ = transform([20], [100], sm=sm)
        assert back_transform(yi, sm)[0] == pytest.approx(0.2)

    def test_freeman_tukey(self):
        yi, _ = transform([20], [100], sm="PFT")
        p = back_transform(yi, "PFT", n_harmonic=100)
        assert p[0] == pytest.approx(0.2, abs=0.01)

    def test_freeman_tukey_requires_harmonic_mean(self):
        with pytest.raises(ValueError, match="harmonic mean"):
            back_transform([0.5], "PFT")

    def test_clipped_to_unit_interval(self):
        p = back_transform([-0.2, 0.5, 1.4], "PRAW")
        assert p.tolist() == [0.0, 0.5, 1.0]


def test_harmonic_mean():
    assert harmonic_mean([1, 2, 4]) == pytest.approx(3 / 1.75)


class TestStudyConfint:
    """Clopper-Pearson intervals."""

    def test_matches_beta_quantiles(self):
        lower, upper = study_confint([20], [100])
        assert lower[0] == pytest.approx(stats.beta.ppf(0.025, 20, 81))
        assert upper[0] == pytest.approx(stats.beta.ppf(0.975, 21, 80))

    def test_boundaries(self):
        lower, upper = study_confint([0, 10], [10, 10])
        assert lower[0] == 0.0
        assert upper[1] == 1.0
        assert 0 < upper[0] < 1
        assert 0 < lower[1] < 1
