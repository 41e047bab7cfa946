"""
Outlier and influence diagnostics for proportion meta-analyses.

Includes the boxplot rule on raw counts, leave-one-out re-analysis,
case-deletion diagnostics for the random-effects model, Baujat
coordinates and detection of studies whose confidence interval does
not overlap the pooled one.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import numpy as np
import pandas as pd
from scipy import stats

from .proportions import MetaProportionResult, PooledEffects, fit_effects
from .bias import InsufficientStudiesError


def identify_outliers(frame: pd.DataFrame, column: str) -> pd.DataFrame:
    """
    Flag rows outside the boxplot whiskers of a column.

    Values beyond Q1 - 1.5 * IQR or Q3 + 1.5 * IQR are outliers;
    beyond 3 * IQR they are extreme.

    Args:
        frame: Data containing the column
        column: Column to screen

    Returns:
        Flagged rows with boolean ``is_outlier`` and ``is_extreme``
        columns (empty when nothing is flagged)
    """
    if column not in frame.columns:
        raise ValueError(f"Column '{column}' not in data")

    values = pd.to_numeric(frame[column], errors="coerce")
    q1, q3 = values.quantile(0.25), values.quantile(0.75)
    iqr = q3 - q1

    is_outlier = (values < q1 - 1.5 * iqr) | (values > q3 + 1.5 * iqr)
    is_extreme = (values < q1 - 3 * iqr) | (values > q3 + 3 * iqr)

    flagged = frame.copy()
    flagged["is_outlier"] = is_outlier
    flagged["is_extreme"] = is_extreme
    return flagged[is_outlier].reset_index(drop=True)


def _inverse_variance(result: MetaProportionResult, keep=None) -> PooledEffects:
    """Inverse-variance random-effects fit of (a subset of) the studies."""
    if keep is None:
        keep = np.ones(result.k, dtype=bool)
    return fit_effects(
        result.yi[keep],
        result.vi[keep],
        method_tau=result.pooled.method_tau,
        hakn=result.pooled.hakn,
        ci_level=result.pooled.ci_level,
        prediction=False,
    )


def _drop_one(result: MetaProportionResult, i: int) -> PooledEffects:
    keep = np.arange(result.k) != i
    return _inverse_variance(result, keep)


def leave_one_out(result: MetaProportionResult) -> pd.DataFrame:
    """
    Random-effects estimates with each study omitted in turn.

    Each row refits the same model as ``result`` (GLMM or
    inverse-variance) on the remaining studies.

    Returns:
        DataFrame with one row per omitted study: study, te, se,
        proportion, ci_lower, ci_upper, p_value, tau2, i2
    """
    if result.k < 2:
        raise InsufficientStudiesError("Leave-one-out analysis", result.k, 2)

    rows = []
    for i, study in enumerate(result.studies):
        fit = result.subset(np.arange(result.k) != i).pooled
        rows.append({
            "study": study,
            "te": fit.te_random,
            "se": fit.se_random,
            "proportion": float(result.back_transform(fit.te_random)),
            "ci_lower": float(result.back_transform(fit.lower_random)),
            "ci_upper": float(result.back_transform(fit.upper_random)),
            "p_value": fit.p_random,
            "tau2": fit.tau2,
            "i2": fit.i2,
        })
    return pd.DataFrame(rows)


def baujat(result: MetaProportionResult) -> pd.DataFrame:
    """
    Baujat plot coordinates from the common-effect model.

    x is the study's contribution to Cochran's Q; y is the squared
    change in the common estimate when the study is omitted, scaled by
    the variance of the estimate without it.
    """
    if result.k < 2:
        raise InsufficientStudiesError("Baujat plot", result.k, 2)

    yi, vi = result.yi, result.vi
    w = 1.0 / vi
    te = np.sum(w * yi) / np.sum(w)

    x = w * (yi - te) ** 2
    y = np.empty(result.k)
    for i in range(result.k):
        keep = np.arange(result.k) != i
        w_del = w[keep]
        te_del = np.sum(w_del * yi[keep]) / np.sum(w_del)
        y[i] = (te - te_del) ** 2 * np.sum(w_del)

    return pd.DataFrame({"study": result.studies, "x": x, "y": y})


@dataclass
class InfluenceResult:
    """
    Influence diagnostics of a random-effects meta-analysis.

    Attributes:
        table: Case-deletion diagnostics, one row per study
        baujat: Baujat coordinates
        loo_effect: Leave-one-out results sorted by pooled proportion
        loo_i2: Leave-one-out results sorted by I^2
        result: The analysed meta-analysis
        model: Inverse-variance fit the deletion diagnostics refer to
    """
    table: pd.DataFrame
    baujat: pd.DataFrame
    loo_effect: pd.DataFrame
    loo_i2: pd.DataFrame
    result: MetaProportionResult = field(repr=False)
    model: Optional[PooledEffects] = field(default=None, repr=False)

    def __repr__(self):
        return (f"InfluenceResult(k={len(self.table)}, "
                f"influential={self.influential or 'none'})")

    @property
    def influential(self) -> List[str]:
        return self.table.loc[self.table["is_influential"], "study"].tolist()

    def to_frame(self) -> pd.DataFrame:
        """Diagnostics table merged with the leave-one-out estimates."""
        loo = self.loo_effect[["study", "proportion", "ci_lower", "ci_upper", "i2"]].rename(
            columns={
                "proportion": "loo_proportion",
                "ci_lower": "loo_ci_lower",
                "ci_upper": "loo_ci_upper",
                "i2": "loo_i2",
            }
        )
        return self.table.merge(loo, on="study", how="left")

    def summary(self) -> str:
        lines = ["Influence diagnostics", "=" * 50]
        cols = ["study", "rstudent", "dffits", "cook_d", "cov_r", "hat", "is_influential"]
        lines.append(self.table[cols].to_string(index=False, float_format=lambda v: f"{v:.3f}"))
        lines.append("")
        lines.append(f"Influential studies: {', '.join(self.influential) or 'none'}")
        return "\n".join(lines)


def influence_analysis(result: MetaProportionResult) -> InfluenceResult:
    """
    Case-deletion diagnostics for the random-effects model.

    Diagnostics use the inverse-variance model on (yi, vi) with the
    result's tau^2 estimator, also when the result was pooled with a
    GLMM.

    For each study i, with theta / tau^2 / se from the full model and
    the ``_del`` quantities from the model without i:

    - rstudent: (y_i - theta_del) / sqrt(v_i + tau2_del + se_del^2)
    - dffits: (theta - theta_del) / sqrt(hat_i * (tau2_del + v_i))
    - cook_d: (theta - theta_del)^2 / se^2
    - cov_r: se_del^2 / se^2
    - dfbetas: (theta - theta_del) / se_del

    A study is influential when |dffits| > 3 * sqrt(1 / (k - 1)),
    the chi-square(1) cdf of cook_d > 0.5, hat > 3 / k or
    |dfbetas| > 1.
    """
    k = result.k
    if k < 3:
        raise InsufficientStudiesError("Influence analysis", k, 3)

    full = _inverse_variance(result)
    yi, vi = result.yi, result.vi
    w = 1.0 / (vi + full.tau2)
    hat = w / w.sum()
    se2 = full.se_random ** 2

    rows = []
    for i, study in enumerate(result.studies):
        fit = _drop_one(result, i)
        diff = full.te_random - fit.te_random
        rows.append({
            "study": study,
            "rstudent": (yi[i] - fit.te_random) / np.sqrt(vi[i] + fit.tau2 + fit.se_random ** 2),
            "dffits": diff / np.sqrt(hat[i] * (fit.tau2 + vi[i])),
            "cook_d": diff ** 2 / se2,
            "cov_r": fit.se_random ** 2 / se2,
            "tau2_del": fit.tau2,
            "qe_del": fit.q,
            "hat": hat[i],
            "weight": 100 * hat[i],
            "dfbetas": diff / fit.se_random,
        })

    table = pd.DataFrame(rows)
    table["is_influential"] = (
        (table["dffits"].abs() > 3 * np.sqrt(1.0 / (k - 1)))
        | (stats.chi2.cdf(table["cook_d"], df=1) > 0.5)
        | (table["hat"] > 3.0 / k)
        | (table["dfbetas"].abs() > 1)
    )

    loo = leave_one_out(result)
    return InfluenceResult(
        table=table,
        baujat=baujat(result),
        loo_effect=loo.sort_values("proportion").reset_index(drop=True),
        loo_i2=loo.sort_values("i2").reset_index(drop=True),
        result=result,
        model=full,
    )


@dataclass
class OutlierResult:
    """Studies whose CI does not overlap the pooled random-effects CI."""
    outliers: List[str]
    result: MetaProportionResult = field(repr=False)
    refit: Optional[MetaProportionResult] = field(default=None, repr=False)

    def __repr__(self):
        return f"OutlierResult(outliers={self.outliers or 'none'})"

    def summary(self) -> str:
        if not self.outliers:
            return "No outliers detected (random-effects model)."
        lines = [
            f"Identified outliers (random-effects model): {', '.join(self.outliers)}",
            "",
            "Results with outliers removed",
            "-" * 50,
            self.refit.summary(),
        ]
        return "\n".join(lines)


def find_outliers(result: MetaProportionResult) -> OutlierResult:
    """
    Detect studies whose confidence interval lies completely outside
    the random-effects confidence interval and refit without them.

    Study intervals are the exact (Clopper-Pearson) limits on the
    analysis scale, as drawn in the forest plot. On the logit scale a
    zero-event study has a lower bound of -inf and can only be flagged
    through its upper bound.
    """
    lower, upper = result.study_confint_te()
    p = result.pooled
    mask = (upper < p.lower_random) | (lower > p.upper_random)
    outliers = [s for s, flag in zip(result.studies, mask) if flag]

    refit = None
    if outliers and len(outliers) < result.k:
        refit = result.subset(~mask)
    return OutlierResult(outliers=outliers, result=result, refit=refit)
