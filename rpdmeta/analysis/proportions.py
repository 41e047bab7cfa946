"""
Random-effects meta-analysis of single proportions.

This module pools event proportions across studies either with a
random-intercept logistic model (GLMM, the default for the logit
scale) or by inverse-variance weighting on a transformed scale with
the between-study variance estimated by PyMARE. Pooled estimates,
confidence and prediction intervals are back-transformed to the
proportion scale.
"""

from dataclasses import dataclass, field
import warnings
from typing import Dict, Any, Optional, List, Sequence
import numpy as np
import pandas as pd
from scipy import stats, optimize
from scipy.special import logsumexp
from statsmodels.tools.numdiff import approx_hess
from pymare import Dataset as PyMAREDataset
from pymare.estimators import (
    DerSimonianLaird,
    Hedges,
    VarianceBasedLikelihoodEstimator
)

from .transforms import (
    transform,
    back_transform,
    proportion_to_scale,
    harmonic_mean,
    study_confint,
    _check_sm
)


TAU_METHODS = ("DL", "REML", "ML", "HE", "FE")

POOLING_METHODS = ("Inverse", "GLMM")

SUBGROUP_VARIABLES = ("latin_america", "definition")

# Gauss-Hermite rule for integrating over the random intercept
_GH_NODES, _GH_WEIGHTS = np.polynomial.hermite.hermgauss(40)


def resolve_methods(sm: str, method: Optional[str] = None,
                    method_tau: Optional[str] = None) -> tuple:
    """
    Pick the pooling method and tau^2 estimator.

    Without an explicit method, logit proportions are pooled with a
    GLMM unless a tau^2 estimator other than ML is requested. GLMMs
    are fitted by maximum likelihood; other pooling uses REML unless
    told otherwise.

    Returns:
        (method, method_tau)
    """
    sm = _check_sm(sm)
    tau = method_tau.upper() if method_tau else None
    if method is None:
        method = "GLMM" if sm == "PLOGIT" and tau in (None, "ML") else "Inverse"
    matches = [m for m in POOLING_METHODS if m.lower() == str(method).lower()]
    if not matches:
        raise ValueError(
            f"Unknown pooling method: {method}. Choose from {', '.join(POOLING_METHODS)}"
        )
    method = matches[0]

    if method == "GLMM":
        if sm != "PLOGIT":
            raise ValueError(f"GLMM pooling requires sm='PLOGIT' (got {sm})")
        if tau not in (None, "ML"):
            raise ValueError(f"GLMM estimates tau^2 by maximum likelihood (got {tau})")
        return method, "ML"
    return method, tau or "REML"


def _scalar(value) -> float:
    """First element of a PyMARE output array as a float."""
    return float(np.asarray(value, dtype=float).ravel()[0])


def estimate_tau2(
    yi: np.ndarray,
    vi: np.ndarray,
    method: str = "REML",
    X: Optional[np.ndarray] = None
) -> float:
    """
    Estimate the between-study variance.

    Args:
        yi: Effect sizes
        vi: Sampling variances
        method: Estimation method:
            - "DL": DerSimonian-Laird
            - "REML": Restricted maximum likelihood (default)
            - "ML": Maximum likelihood
            - "HE": Hedges estimator
            - "FE": Fixed effects (tau^2 = 0)
        X: Optional moderator matrix (intercept is added by PyMARE)

    Returns:
        tau^2 (never negative)
    """
    method = method.upper()
    if method not in TAU_METHODS:
        raise ValueError(f"Unknown method: {method}")

    n_params = 1 if X is None else 1 + np.atleast_2d(np.asarray(X).T).shape[0]
    if method == "FE" or len(yi) <= n_params:
        return 0.0

    if method == "DL":
        estimator = DerSimonianLaird()
    elif method in ("REML", "ML"):
        estimator = VarianceBasedLikelihoodEstimator(method=method)
    else:
        estimator = Hedges()

    dataset = PyMAREDataset(y=np.asarray(yi, dtype=float), v=np.asarray(vi, dtype=float), X=X)
    results = estimator.fit_dataset(dataset).summary()
    tau2 = _scalar(results.tau2)
    if not np.isfinite(tau2):
        return 0.0
    return max(0.0, tau2)


@dataclass
class PooledEffects:
    """Common- and random-effects pooling on the transformed scale."""
    k: int
    te_common: float
    se_common: float
    lower_common: float
    upper_common: float
    z_common: float
    p_common: float
    te_random: float
    se_random: float
    lower_random: float
    upper_random: float
    stat_random: float
    p_random: float
    tau2: float
    q: float
    df_q: int
    p_q: float
    i2: float
    h: float
    lower_predict: Optional[float]
    upper_predict: Optional[float]
    weights_common: np.ndarray
    weights_random: np.ndarray
    method_tau: str = "REML"
    hakn: bool = False
    ci_level: float = 0.95
    method: str = "Inverse"

    @property
    def tau(self) -> float:
        return float(np.sqrt(self.tau2))


def fit_effects(
    yi,
    vi,
    method_tau: str = "REML",
    hakn: bool = False,
    ci_level: float = 0.95,
    prediction: bool = True
) -> PooledEffects:
    """
    Inverse-variance pooling of effect sizes.

    Shared engine for the full analysis and every leave-one-out,
    influence and outlier re-fit.

    Args:
        yi: Effect sizes on the analysis scale
        vi: Sampling variances
        method_tau: tau^2 estimator (see estimate_tau2)
        hakn: Hartung-Knapp adjustment for the random-effects CI
        ci_level: Confidence level
        prediction: Compute a prediction interval (needs k >= 3)

    Returns:
        PooledEffects
    """
    yi = np.asarray(yi, dtype=float)
    vi = np.asarray(vi, dtype=float)
    k = len(yi)
    if k == 0:
        raise ValueError("No studies to pool")
    if np.any(vi <= 0) or not np.all(np.isfinite(vi)):
        raise ValueError("All sampling variances must be finite and > 0")

    z_crit = stats.norm.ppf((1 + ci_level) / 2)

    # Common effect
    w = 1.0 / vi
    te_common = np.sum(w * yi) / np.sum(w)
    se_common = np.sqrt(1.0 / np.sum(w))

    # Heterogeneity
    q = float(np.sum(w * (yi - te_common) ** 2))
    df_q = k - 1
    p_q = float(stats.chi2.sf(q, df_q)) if df_q > 0 else 1.0
    i2 = max(0.0, (q - df_q) / q) * 100 if q > 0 and df_q > 0 else 0.0
    h = float(np.sqrt(q / df_q)) if df_q > 0 and q > 0 else 1.0

    # Random effects
    tau2 = estimate_tau2(yi, vi, method_tau)
    w_star = 1.0 / (vi + tau2)
    te_random = np.sum(w_star * yi) / np.sum(w_star)
    se_random = np.sqrt(1.0 / np.sum(w_star))

    if hakn and k >= 2:
        q_hk = np.sum(w_star * (yi - te_random) ** 2) / (k - 1)
        se_ci = np.sqrt(q_hk / np.sum(w_star))
        crit = stats.t.ppf((1 + ci_level) / 2, df=k - 1)
        stat_random = te_random / se_ci
        p_random = 2 * stats.t.sf(abs(stat_random), df=k - 1)
    else:
        se_ci = se_random
        crit = z_crit
        stat_random = te_random / se_random
        p_random = 2 * stats.norm.sf(abs(stat_random))

    lower_predict = upper_predict = None
    if prediction and k >= 3:
        t_pred = stats.t.ppf((1 + ci_level) / 2, df=k - 2)
        se_pred = np.sqrt(tau2 + se_random ** 2)
        lower_predict = float(te_random - t_pred * se_pred)
        upper_predict = float(te_random + t_pred * se_pred)

    return PooledEffects(
        k=k,
        te_common=float(te_common),
        se_common=float(se_common),
        lower_common=float(te_common - z_crit * se_common),
        upper_common=float(te_common + z_crit * se_common),
        z_common=float(te_common / se_common),
        p_common=float(2 * stats.norm.sf(abs(te_common / se_common))),
        te_random=float(te_random),
        se_random=float(se_random),
        lower_random=float(te_random - crit * se_ci),
        upper_random=float(te_random + crit * se_ci),
        stat_random=float(stat_random),
        p_random=float(p_random),
        tau2=float(tau2),
        q=q,
        df_q=df_q,
        p_q=p_q,
        i2=float(i2),
        h=h,
        lower_predict=lower_predict,
        upper_predict=upper_predict,
        weights_common=w / w.sum() * 100,
        weights_random=w_star / w_star.sum() * 100,
        method_tau=method_tau.upper(),
        hakn=hakn,
        ci_level=ci_level,
    )


def glmm_loglik(mu: float, tau: float, events, n) -> float:
    """
    Marginal log-likelihood of the random-intercept logistic model.

    The intercept is integrated out with Gauss-Hermite quadrature.
    Binomial coefficients are omitted.
    """
    events = np.asarray(events, dtype=float)[:, None]
    n = np.asarray(n, dtype=float)[:, None]
    eta = mu + np.sqrt(2.0) * abs(tau) * _GH_NODES[None, :]
    # events * log(p) + (n - events) * log(1 - p), stable for large |eta|
    ll = -events * np.logaddexp(0.0, -eta) - (n - events) * np.logaddexp(0.0, eta)
    return float(np.sum(logsumexp(ll, axis=1, b=_GH_WEIGHTS / np.sqrt(np.pi))))


def fit_glmm(
    events,
    n,
    yi,
    vi,
    hakn: bool = False,
    ci_level: float = 0.95,
    prediction: bool = True
) -> PooledEffects:
    """
    Pool proportions with a random-intercept logistic regression.

    The common-effect estimate is the logit of the overall proportion.
    The random-effects mean and tau are maximum likelihood estimates
    and the standard error of the mean comes from the observed
    information. No continuity correction is needed, so studies with
    0 or n events enter with their raw counts.

    Q, I^2 and H are the Wald-type statistics of the continuity
    corrected logits (yi, vi), which also give the study weights shown
    in plots.

    Args:
        events: Number of events per study
        n: Number of observations per study
        yi: Logit proportions (for heterogeneity and weights)
        vi: Sampling variances of yi
        hakn: Use t quantiles with k - 1 df for the random-effects CI
        ci_level: Confidence level
        prediction: Compute a prediction interval (needs k >= 3)

    Returns:
        PooledEffects
    """
    events = np.asarray(events, dtype=float)
    n = np.asarray(n, dtype=float)
    k = len(events)
    if k == 0:
        raise ValueError("No studies to pool")
    x_tot, n_tot = events.sum(), n.sum()
    if x_tot == 0 or x_tot == n_tot:
        raise ValueError("GLMM pooling needs at least one event and one non-event")

    z_crit = stats.norm.ppf((1 + ci_level) / 2)
    te_common = np.log(x_tot / (n_tot - x_tot))
    se_common = np.sqrt(1.0 / x_tot + 1.0 / (n_tot - x_tot))
    het = fit_effects(yi, vi, method_tau="FE", ci_level=ci_level, prediction=False)

    if k > 1:
        def objective(params):
            return -glmm_loglik(params[0], params[1], events, n)

        tau_start = np.sqrt(max(estimate_tau2(yi, vi, "DL"), 0.01))
        fit = optimize.minimize(
            objective,
            x0=[te_common, tau_start],
            method="L-BFGS-B",
            bounds=[(None, None), (0.0, None)],
        )
        if not fit.success:
            warnings.warn(f"GLMM optimisation did not converge: {fit.message}")
        te_random, tau = float(fit.x[0]), float(fit.x[1])

        hess = approx_hess(np.asarray(fit.x, dtype=float), objective)
        if tau > 1e-4 and np.all(np.linalg.eigvalsh(hess) > 0):
            se_random = float(np.sqrt(np.linalg.inv(hess)[0, 0]))
        else:
            # tau on the boundary: information for the mean alone
            se_random = float(1.0 / np.sqrt(hess[0, 0]))
    else:
        te_random, tau, se_random = float(te_common), 0.0, float(se_common)
    tau2 = tau ** 2

    if hakn and k >= 2:
        crit = stats.t.ppf((1 + ci_level) / 2, df=k - 1)
        stat_random = te_random / se_random
        p_random = 2 * stats.t.sf(abs(stat_random), df=k - 1)
    else:
        crit = z_crit
        stat_random = te_random / se_random
        p_random = 2 * stats.norm.sf(abs(stat_random))

    lower_predict = upper_predict = None
    if prediction and k >= 3:
        t_pred = stats.t.ppf((1 + ci_level) / 2, df=k - 2)
        se_pred = np.sqrt(tau2 + se_random ** 2)
        lower_predict = float(te_random - t_pred * se_pred)
        upper_predict = float(te_random + t_pred * se_pred)

    w_star = 1.0 / (np.asarray(vi, dtype=float) + tau2)

    return PooledEffects(
        k=k,
        te_common=float(te_common),
        se_common=float(se_common),
        lower_common=float(te_common - z_crit * se_common),
        upper_common=float(te_common + z_crit * se_common),
        z_common=float(te_common / se_common),
        p_common=float(2 * stats.norm.sf(abs(te_common / se_common))),
        te_random=te_random,
        se_random=se_random,
        lower_random=float(te_random - crit * se_random),
        upper_random=float(te_random + crit * se_random),
        stat_random=float(stat_random),
        p_random=float(p_random),
        tau2=float(tau2),
        q=het.q,
        df_q=het.df_q,
        p_q=het.p_q,
        i2=het.i2,
        h=het.h,
        lower_predict=lower_predict,
        upper_predict=upper_predict,
        weights_common=het.weights_common,
        weights_random=w_star / w_star.sum() * 100,
        method_tau="ML",
        hakn=hakn,
        ci_level=ci_level,
        method="GLMM",
    )


@dataclass
class MetaProportionResult:
    """
    Result of a meta-analysis of single proportions.

    Estimates in ``pooled`` are on the analysis scale given by ``sm``;
    the ``proportion_*`` helpers back-transform them.
    """
    studies: List[str]
    events: np.ndarray
    n: np.ndarray
    yi: np.ndarray
    vi: np.ndarray
    pooled: PooledEffects
    sm: str = "PLOGIT"
    incr: float = 0.5
    prediction: bool = True
    title: str = ""
    category: Optional[str] = None
    groups: Dict[str, List[Optional[str]]] = field(default_factory=dict)

    def __repr__(self):
        p, lo, hi = self.proportion_random
        return (f"MetaProportionResult(k={self.k}, sm={self.sm}, "
                f"random={p:.3f} [{lo:.3f}, {hi:.3f}], I2={self.pooled.i2:.1f}%)")

    @property
    def k(self) -> int:
        return self.pooled.k

    @property
    def sei(self) -> np.ndarray:
        return np.sqrt(self.vi)

    @property
    def n_harmonic(self) -> float:
        return harmonic_mean(self.n)

    def back_transform(self, x) -> np.ndarray:
        """Back-transform analysis-scale values to proportions."""
        return back_transform(x, self.sm, self.n_harmonic)

    def _bt(self, x) -> float:
        return float(self.back_transform(x))

    @property
    def proportion_common(self) -> tuple:
        p = self.pooled
        return (self._bt(p.te_common), self._bt(p.lower_common), self._bt(p.upper_common))

    @property
    def proportion_random(self) -> tuple:
        p = self.pooled
        return (self._bt(p.te_random), self._bt(p.lower_random), self._bt(p.upper_random))

    @property
    def prediction_interval(self) -> Optional[tuple]:
        p = self.pooled
        if p.lower_predict is None:
            return None
        return (self._bt(p.lower_predict), self._bt(p.upper_predict))

    @property
    def study_proportions(self) -> np.ndarray:
        return self.events / self.n

    def study_confint(self) -> tuple:
        """Exact Clopper-Pearson CIs for each study."""
        return study_confint(self.events, self.n, self.pooled.ci_level)

    def study_confint_te(self) -> tuple:
        """
        Exact study CIs mapped to the analysis scale.

        These are the intervals drawn in the forest plot. A bound of 0
        or 1 maps to -inf or +inf on unbounded scales.
        """
        lower, upper = self.study_confint()
        return proportion_to_scale(lower, self.sm), proportion_to_scale(upper, self.sm)

    def options(self) -> Dict[str, Any]:
        """Options needed to refit this analysis on a subset."""
        return {
            "sm": self.sm,
            "method": self.pooled.method,
            "method_tau": self.pooled.method_tau,
            "hakn": self.pooled.hakn,
            "ci_level": self.pooled.ci_level,
            "incr": self.incr,
            "prediction": self.prediction,
        }

    def subset(self, keep) -> "MetaProportionResult":
        """
        Refit with a subset of studies.

        Args:
            keep: Boolean mask, integer indices or study labels
        """
        keep = np.asarray(keep)
        if keep.dtype == bool:
            idx = np.flatnonzero(keep)
        elif keep.dtype.kind in "iu":
            idx = keep
        else:
            wanted = set(keep.tolist())
            idx = np.array([i for i, s in enumerate(self.studies) if s in wanted], dtype=int)
        groups = {
            name: [values[i] for i in idx] for name, values in self.groups.items()
        }
        return meta_proportions(
            self.events[idx],
            self.n[idx],
            [self.studies[i] for i in idx],
            title=self.title,
            category=self.category,
            groups=groups,
            **self.options()
        )

    def without(self, labels: Sequence[str]) -> "MetaProportionResult":
        """Refit without the given studies."""
        unknown = [label for label in labels if label not in self.studies]
        if unknown:
            raise ValueError(f"Studies not in analysis: {unknown}")
        return self.subset(np.array([s not in labels for s in self.studies]))

    def to_frame(self) -> pd.DataFrame:
        """Study-level table with proportions, exact CIs and weights."""
        lower, upper = self.study_confint()
        return pd.DataFrame({
            "study": self.studies,
            "events": self.events.astype(int),
            "n": self.n.astype(int),
            "proportion": self.study_proportions,
            "ci_lower": lower,
            "ci_upper": upper,
            "yi": self.yi,
            "sei": self.sei,
            "weight_common": self.pooled.weights_common,
            "weight_random": self.pooled.weights_random,
        })

    def to_dict(self) -> Dict[str, Any]:
        p = self.pooled
        pi = self.prediction_interval
        return {
            "title": self.title,
            "category": self.category,
            "k": self.k,
            "events": int(self.events.sum()),
            "n": int(self.n.sum()),
            "sm": self.sm,
            "method": p.method,
            "method_tau": p.method_tau,
            "hakn": p.hakn,
            "common": dict(zip(("proportion", "ci_lower", "ci_upper"), self.proportion_common)),
            "random": dict(zip(("proportion", "ci_lower", "ci_upper"), self.proportion_random)),
            "p_random": p.p_random,
            "prediction_interval": list(pi) if pi else None,
            "tau2": p.tau2,
            "tau": p.tau,
            "q": p.q,
            "df_q": p.df_q,
            "p_q": p.p_q,
            "i2": p.i2,
            "h": p.h,
        }

    def summary(self) -> str:
        """Generate text summary of analysis."""
        p = self.pooled
        level = int(round(p.ci_level * 100))
        common = self.proportion_common
        random = self.proportion_random
        lines = [
            f"Meta-analysis of proportions{': ' + self.title if self.title else ''}",
            "=" * 50,
            f"Studies: k = {self.k}, events = {int(self.events.sum())}, "
            f"observations = {int(self.n.sum())}",
            f"Summary measure: {self.sm}, pooling: {p.method}, tau^2 estimator: {p.method_tau}"
            + (" (Hartung-Knapp)" if p.hakn else ""),
            "",
            f"Common effect model:  {common[0]:.4f} [{common[1]:.4f}; {common[2]:.4f}]",
            f"Random effects model: {random[0]:.4f} [{random[1]:.4f}; {random[2]:.4f}]"
            f"  p = {p.p_random:.4g}",
        ]
        pi = self.prediction_interval
        if pi is not None:
            lines.append(f"Prediction interval:  [{pi[0]:.4f}; {pi[1]:.4f}]")
        lines += [
            "",
            "Heterogeneity:",
            f"  tau^2 = {p.tau2:.4f}; tau = {p.tau:.4f}",
            f"  I^2 = {p.i2:.1f}%; H = {p.h:.2f}",
            f"  Q = {p.q:.2f}, df = {p.df_q}, p = {p.p_q:.4g}",
            "",
            f"({level}% confidence level)",
        ]
        return "\n".join(lines)


def meta_proportions(
    events,
    n,
    studies: Optional[Sequence[str]] = None,
    sm: str = "PLOGIT",
    method_tau: Optional[str] = None,
    hakn: bool = False,
    ci_level: float = 0.95,
    incr: float = 0.5,
    prediction: bool = True,
    title: str = "",
    method: Optional[str] = None,
    category: Optional[str] = None,
    groups: Optional[Dict[str, List[Optional[str]]]] = None
) -> MetaProportionResult:
    """
    Meta-analysis of single proportions from event counts.

    Args:
        events: Number of events per study
        n: Number of observations per study
        studies: Study labels
        sm: Summary measure (PLOGIT, PAS, PFT, PLN, PRAW)
        method_tau: tau^2 estimator (DL, REML, ML, HE, FE); see
            resolve_methods for the default
        hakn: Hartung-Knapp adjustment
        ci_level: Confidence level
        incr: Continuity correction for studies with 0 or n events
        prediction: Compute a prediction interval
        title: Label used in summaries and plots
        method: "GLMM" or "Inverse" (GLMM by default for PLOGIT)
        category: Etiology category key
        groups: Grouping variables aligned with the studies

    Returns:
        MetaProportionResult
    """
    sm = _check_sm(sm)
    method, method_tau = resolve_methods(sm, method, method_tau)
    events = np.asarray(events, dtype=float)
    n = np.asarray(n, dtype=float)
    if len(events) != len(n):
        raise ValueError("events and n must have the same length")
    if len(events) == 0:
        raise ValueError("No studies to pool")
    if np.any(events < 0) or np.any(events > n):
        raise ValueError("Event counts must lie between 0 and n")

    if studies is None:
        studies = [f"Study {i + 1}" for i in range(len(events))]

    yi, vi = transform(events, n, sm, incr)
    if method == "GLMM":
        pooled = fit_glmm(events, n, yi, vi, hakn, ci_level, prediction)
    else:
        pooled = fit_effects(yi, vi, method_tau, hakn, ci_level, prediction)

    return MetaProportionResult(
        studies=list(studies),
        events=events,
        n=n,
        yi=yi,
        vi=vi,
        pooled=pooled,
        sm=sm,
        incr=incr,
        prediction=prediction,
        title=title,
        category=category,
        groups=dict(groups or {}),
    )


@dataclass
class SubgroupResult:
    """Separate random-effects fits per subgroup plus a test for differences."""
    variable: str
    overall: MetaProportionResult
    subgroups: Dict[str, MetaProportionResult]
    q_between: float
    df_between: int
    p_between: float

    def __repr__(self):
        return (f"SubgroupResult({self.variable}: {len(self.subgroups)} groups, "
                f"Q={self.q_between:.2f}, p={self.p_between:.4f})")

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for level, res in self.subgroups.items():
            p, lo, hi = res.proportion_random
            rows.append({
                "subgroup": level,
                "k": res.k,
                "proportion": p,
                "ci_lower": lo,
                "ci_upper": hi,
                "tau2": res.pooled.tau2,
                "i2": res.pooled.i2,
                "q": res.pooled.q,
                "p_q": res.pooled.p_q,
            })
        return pd.DataFrame(rows)

    def summary(self) -> str:
        lines = [f"Subgroup analysis by {self.variable}", "=" * 50]
        for _, row in self.to_frame().iterrows():
            lines.append(
                f"  {row['subgroup']}: k = {row['k']}, {row['proportion']:.4f} "
                f"[{row['ci_lower']:.4f}; {row['ci_upper']:.4f}], I^2 = {row['i2']:.1f}%"
            )
        lines.append(
            f"Test for subgroup differences: Q = {self.q_between:.2f}, "
            f"df = {self.df_between}, p = {self.p_between:.4g}"
        )
        return "\n".join(lines)


def subgroup_analysis(result: MetaProportionResult, variable: str,
                      missing_label: str = "Missing") -> SubgroupResult:
    """
    Random-effects meta-analysis within each level of a grouping variable.

    tau^2 is estimated separately in each subgroup. Differences are
    tested with the between-subgroup Q statistic on the random-effects
    estimates.
    """
    if variable not in result.groups:
        raise ValueError(
            f"Grouping variable '{variable}' not available. "
            f"Available: {list(result.groups)}"
        )
    labels = [missing_label if g is None else str(g) for g in result.groups[variable]]
    levels = list(dict.fromkeys(labels))

    subgroups = {}
    for level in levels:
        mask = np.array([label == level for label in labels])
        sub = result.subset(mask)
        sub.title = f"{result.title} - {level}" if result.title else level
        subgroups[level] = sub

    te = np.array([s.pooled.te_random for s in subgroups.values()])
    se = np.array([s.pooled.se_random for s in subgroups.values()])
    w = 1.0 / se ** 2
    te_w = np.sum(w * te) / np.sum(w)
    q_between = float(np.sum(w * (te - te_w) ** 2))
    df_between = len(levels) - 1
    p_between = float(stats.chi2.sf(q_between, df_between)) if df_between > 0 else 1.0

    return SubgroupResult(
        variable=variable,
        overall=result,
        subgroups=subgroups,
        q_between=q_between,
        df_between=df_between,
        p_between=p_between,
    )


class ProportionMetaAnalysis:
    """
    Meta-analysis of one etiology category in a ProportionDataset.

    Example:
        >>> from rpdmeta.core import ProportionDataset
        >>> dataset = ProportionDataset.from_file("base.xlsx")
        >>> ma = ProportionMetaAnalysis(dataset, "nd", title="Neurodegenerative diseases")
        >>> result = ma.run()
        >>> print(result.summary())
    """

    def __init__(
        self,
        dataset,
        category: str,
        sm: str = "PLOGIT",
        method_tau: Optional[str] = None,
        hakn: bool = False,
        ci_level: float = 0.95,
        prediction: bool = True,
        incr: float = 0.5,
        title: str = "",
        method: Optional[str] = None,
        column: Optional[str] = None
    ):
        """
        Initialize proportion meta-analysis.

        Args:
            dataset: ProportionDataset containing the studies
            category: Etiology category key ('nd', 'cjd', 'ai')
            sm: Summary measure
            method_tau: tau^2 estimator
            hakn: Hartung-Knapp adjustment
            ci_level: Confidence level
            prediction: Compute a prediction interval
            incr: Continuity correction
            title: Label for summaries and plots
            method: Pooling method, "GLMM" or "Inverse"
            column: Study count field holding the events (e.g.
                "n_cjd"); defaults to the category key
        """
        self.dataset = dataset
        self.category = category
        self.column = column or category
        self.sm = _check_sm(sm)
        self.method, self.method_tau = resolve_methods(self.sm, method, method_tau)
        self.hakn = hakn
        self.ci_level = ci_level
        self.prediction = prediction
        self.incr = incr
        self.title = title
        self.result: Optional[MetaProportionResult] = None

    @classmethod
    def from_settings(cls, dataset, category: str, settings) -> "ProportionMetaAnalysis":
        """Create an analysis using the category and analysis defaults."""
        cat = settings.category(category)
        a = settings.analysis
        return cls(
            dataset,
            category,
            sm=a.sm,
            method=a.method,
            method_tau=a.method_tau,
            hakn=a.hakn,
            ci_level=a.ci_level,
            prediction=a.prediction,
            incr=a.incr,
            title=cat.title,
            column=cat.column,
        )

    def run(self) -> MetaProportionResult:
        """Run the meta-analysis."""
        df = self.dataset.category_frame(self.column)
        if df.empty:
            raise ValueError("No studies found in dataset")

        self.result = meta_proportions(
            df["events"].values,
            df["n"].values,
            df["study"].tolist(),
            sm=self.sm,
            method=self.method,
            method_tau=self.method_tau,
            hakn=self.hakn,
            ci_level=self.ci_level,
            incr=self.incr,
            prediction=self.prediction,
            title=self.title,
            category=self.category,
            groups={v: df[v].tolist() for v in SUBGROUP_VARIABLES},
        )
        return self.result

    def update(self, **changes) -> "ProportionMetaAnalysis":
        """
        Copy of this analysis with changed options, already run.

        Example:
            >>> with_pi = ma.update(prediction=True)
        """
        params = {
            "sm": self.sm,
            "method": self.method,
            "method_tau": self.method_tau,
            "hakn": self.hakn,
            "ci_level": self.ci_level,
            "prediction": self.prediction,
            "incr": self.incr,
            "title": self.title,
            "column": self.column,
        }
        dataset = changes.pop("dataset", self.dataset)
        unknown = set(changes) - set(params)
        if unknown:
            raise ValueError(f"Unknown options: {sorted(unknown)}")
        if ("method_tau" in changes or "sm" in changes) and "method" not in changes:
            params["method"] = None
        params.update(changes)
        updated = ProportionMetaAnalysis(dataset, self.category, **params)
        updated.run()
        return updated

    def subgroup(self, variable: str) -> SubgroupResult:
        """Subgroup analysis by 'latin_america' or 'definition'."""
        if self.result is None:
            self.run()
        return subgroup_analysis(self.result, variable)

    def summary(self) -> str:
        if self.result is None:
            return "Analysis not yet run. Call .run() first."
        return self.result.summary()
