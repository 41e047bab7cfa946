"""
Small-study effects and publication bias tests.
"""

from dataclasses import dataclass
from typing import Optional
import numpy as np
from scipy import stats
import statsmodels.api as sm

from .proportions import MetaProportionResult, estimate_tau2


class InsufficientStudiesError(ValueError):
    """Raised when a test needs more studies than the analysis has."""

    def __init__(self, test: str, k: int, k_min: int):
        self.test = test
        self.k = k
        self.k_min = k_min
        super().__init__(
            f"{test} requires at least {k_min} studies (k = {k})"
        )


@dataclass
class EggerResult:
    """Egger's linear regression test for funnel plot asymmetry."""
    intercept: float
    se: float
    ci_lower: float
    ci_upper: float
    t: float
    df: int
    p_value: float
    slope: float
    se_slope: float
    residual_variance: float
    k: int
    tau2: float

    def __repr__(self):
        return (f"EggerResult(bias={self.intercept:.3f}, "
                f"95% CI=[{self.ci_lower:.3f}, {self.ci_upper:.3f}], "
                f"t={self.t:.2f}, df={self.df}, p={self.p_value:.4f})")

    @property
    def asymmetric(self) -> bool:
        return self.p_value < 0.05

    def to_dict(self):
        return {
            "test": "Egger",
            "k": self.k,
            "bias": self.intercept,
            "se_bias": self.se,
            "ci_lower": self.ci_lower,
            "ci_upper": self.ci_upper,
            "t": self.t,
            "df": self.df,
            "p_value": self.p_value,
            "slope": self.slope,
            "se_slope": self.se_slope,
            "residual_variance": self.residual_variance,
            "tau2": self.tau2,
        }

    def summary(self) -> str:
        return "\n".join([
            "Linear regression test of funnel plot asymmetry (Egger)",
            f"  t = {self.t:.4f}, df = {self.df}, p-value = {self.p_value:.4f}",
            f"  bias = {self.intercept:.4f} (SE {self.se:.4f}), "
            f"95% CI [{self.ci_lower:.4f}; {self.ci_upper:.4f}]",
            f"  slope = {self.slope:.4f} (SE {self.se_slope:.4f})",
            f"  residual heterogeneity variance = {self.residual_variance:.4f}, "
            f"tau^2 = {self.tau2:.4f}",
        ])


def egger_test(
    result: MetaProportionResult,
    k_min: int = 10,
    ci_level: float = 0.95
) -> EggerResult:
    """
    Egger's regression test.

    Regresses the standardized effect (yi / sei) on precision (1 / sei)
    by OLS. The intercept measures asymmetry and is tested with a t
    statistic on k - 2 degrees of freedom.

    Args:
        result: Fitted meta-analysis
        k_min: Minimum number of studies
        ci_level: Confidence level for the intercept

    Raises:
        InsufficientStudiesError: If k < k_min (or k < 3)
    """
    k = result.k
    if k < max(k_min, 3):
        raise InsufficientStudiesError("Egger's test", k, max(k_min, 3))

    sei = result.sei
    y = result.yi / sei
    X = sm.add_constant(1.0 / sei)
    fit = sm.OLS(y, X).fit()

    ci = np.asarray(fit.conf_int(alpha=1 - ci_level))
    params = np.asarray(fit.params)
    bse = np.asarray(fit.bse)

    return EggerResult(
        intercept=float(params[0]),
        se=float(bse[0]),
        ci_lower=float(ci[0, 0]),
        ci_upper=float(ci[0, 1]),
        t=float(np.asarray(fit.tvalues)[0]),
        df=int(fit.df_resid),
        p_value=float(np.asarray(fit.pvalues)[0]),
        slope=float(params[1]),
        se_slope=float(bse[1]),
        residual_variance=float(fit.scale),
        k=k,
        tau2=result.pooled.tau2,
    )


PREDICTORS = ("sei", "vi", "ni", "ninv", "sqrtni", "sqrtninv")


def _predictor_values(result: MetaProportionResult, predictor: str) -> np.ndarray:
    n = result.n
    values = {
        "sei": lambda: result.sei,
        "vi": lambda: result.vi,
        "ni": lambda: n,
        "ninv": lambda: 1.0 / n,
        "sqrtni": lambda: np.sqrt(n),
        "sqrtninv": lambda: 1.0 / np.sqrt(n),
    }
    if predictor not in values:
        raise ValueError(f"Unknown predictor: {predictor}. Choose from {PREDICTORS}")
    return np.asarray(values[predictor](), dtype=float)


@dataclass
class RegressionTestResult:
    """Meta-regression test for funnel plot asymmetry."""
    predictor: str
    slope: float
    se_slope: float
    z: float
    p_value: float
    limit_estimate: float
    limit_ci_lower: float
    limit_ci_upper: float
    tau2: float
    k: int
    limit_proportion: Optional[tuple] = None

    def __repr__(self):
        return (f"RegressionTestResult(predictor={self.predictor}, "
                f"z={self.z:.3f}, p={self.p_value:.4f}, "
                f"limit={self.limit_estimate:.3f})")

    def to_dict(self):
        return {
            "test": "regtest",
            "predictor": self.predictor,
            "k": self.k,
            "slope": self.slope,
            "se_slope": self.se_slope,
            "z": self.z,
            "p_value": self.p_value,
            "limit_estimate": self.limit_estimate,
            "limit_ci_lower": self.limit_ci_lower,
            "limit_ci_upper": self.limit_ci_upper,
            "tau2": self.tau2,
        }

    def summary(self) -> str:
        lines = [
            "Regression test for funnel plot asymmetry",
            f"  model: mixed-effects meta-regression, predictor: {self.predictor}",
            f"  test for asymmetry: z = {self.z:.4f}, p = {self.p_value:.4f}",
            f"  limit estimate (as {self.predictor} -> 0): {self.limit_estimate:.4f} "
            f"(CI: {self.limit_ci_lower:.4f}, {self.limit_ci_upper:.4f})",
        ]
        if self.limit_proportion is not None:
            p, lo, hi = self.limit_proportion
            lines.append(f"  limit proportion: {p:.4f} [{lo:.4f}; {hi:.4f}]")
        return "\n".join(lines)


def regression_test(
    result: MetaProportionResult,
    predictor: str = "sei",
    ci_level: float = 0.95
) -> RegressionTestResult:
    """
    Random-effects meta-regression of the effects on a precision
    measure.

    tau^2 is estimated by PyMARE with the predictor as moderator; the
    coefficients are then obtained by weighted least squares with
    weights 1 / (vi + tau^2).

    Args:
        result: Fitted meta-analysis
        predictor: 'sei', 'vi', 'ni', 'ninv', 'sqrtni' or 'sqrtninv'
        ci_level: Confidence level for the limit estimate
    """
    k = result.k
    if k < 3:
        raise InsufficientStudiesError("Regression test", k, 3)

    x = _predictor_values(result, predictor)
    yi, vi = result.yi, result.vi

    tau2 = estimate_tau2(yi, vi, result.pooled.method_tau, X=x[:, None])
    W = np.diag(1.0 / (vi + tau2))
    X = np.column_stack([np.ones(k), x])
    cov = np.linalg.inv(X.T @ W @ X)
    beta = cov @ X.T @ W @ yi
    se = np.sqrt(np.diag(cov))

    z = beta[1] / se[1]
    p_value = 2 * stats.norm.sf(abs(z))
    z_crit = stats.norm.ppf((1 + ci_level) / 2)
    limit = float(beta[0])
    lower = float(beta[0] - z_crit * se[0])
    upper = float(beta[0] + z_crit * se[0])

    return RegressionTestResult(
        predictor=predictor,
        slope=float(beta[1]),
        se_slope=float(se[1]),
        z=float(z),
        p_value=float(p_value),
        limit_estimate=limit,
        limit_ci_lower=lower,
        limit_ci_upper=upper,
        tau2=float(tau2),
        k=k,
        limit_proportion=tuple(float(v) for v in result.back_transform([limit, lower, upper])),
    )
