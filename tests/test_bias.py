"""Tests for publication bias tests."""

import numpy as np
import pytest
import statsmodels.api as sm

from rpdmeta.analysis import (
    egger_test,
    regression_test,
    InsufficientStudiesError,
)


class TestEggerTest:
    """Egger's regression test."""

    def test_matches_ols(self, nd_result):
        res = egger_test(nd_result, k_min=10)
        sei = nd_result.sei
        fit = sm.OLS(nd_result.yi / sei, sm.add_constant(1 / sei)).fit()
        assert res.intercept == pytest.approx(fit.params[0])
        assert res.se == pytest.approx(fit.bse[0])
        assert res.p_value == pytest.approx(fit.pvalues[0])
        assert res.df == nd_result.k - 2
        assert res.ci_lower < res.intercept < res.ci_upper

    def test_too_few_studies(self, nd_result):
        with pytest.raises(InsufficientStudiesError) as excinfo:
            egger_test(nd_result, k_min=20)
        assert excinfo.value.k == nd_result.k
        assert excinfo.value.k_min == 20

    def test_insufficient_studies_is_value_error(self):
        assert issubclass(InsufficientStudiesError, ValueError)

    def test_summary_and_dict(self, nd_result):
        res = egger_test(nd_result, k_min=10)
        assert "Egger" in res.summary()
        assert res.to_dict()["df"] == nd_result.k - 2


class TestRegressionTest:
    """Meta-regression on the standard error."""

    def test_fixed_effect_matches_weighted_least_squares(self, dataset):
        from rpdmeta.analysis import ProportionMetaAnalysis

        result = ProportionMetaAnalysis(dataset, "cjd", method_tau="FE").run()
        res = regression_test(result)
        fit = sm.WLS(result.yi, sm.add_constant(result.sei), weights=1 / result.vi).fit()
        assert res.tau2 == 0
        assert res.slope == pytest.approx(fit.params[1])
        assert res.limit_estimate == pytest.approx(fit.params[0])
        # model-based (not residual-scaled) standard errors
        assert res.se_slope == pytest.approx(fit.bse[1] / np.sqrt(fit.scale))

    def test_random_effects(self, nd_result):
        res = regression_test(nd_result)
        assert res.predictor == "sei"
        assert res.tau2 >= 0
        assert 0 <= res.p_value <= 1
        assert res.limit_ci_lower < res.limit_estimate < res.limit_ci_upper
        p, lo, hi = res.limit_proportion
        assert lo <= p <= hi

    @pytest.mark.parametrize("predictor", ["vi", "ninv", "sqrtninv"])
    def test_other_predictors(self, nd_result, predictor):
        assert regression_test(nd_result, predictor=predictor).predictor == predictor

    def test_unknown_predictor(self, nd_result):
        with pytest.raises(ValueError, match="Unknown predictor"):
            regression_test(nd_result, predictor="year")
