"""Statistical analyses for proportion meta-analysis."""

from .transforms import (
    transform,
    back_transform,
    proportion_to_scale,
    study_confint,
    SUMMARY_MEASURES
)
from .proportions import (
    ProportionMetaAnalysis,
    MetaProportionResult,
    SubgroupResult,
    PooledEffects,
    meta_proportions,
    subgroup_analysis,
    fit_effects,
    fit_glmm,
    glmm_loglik,
    resolve_methods,
    estimate_tau2,
    POOLING_METHODS
)
from .bias import (
    egger_test,
    regression_test,
    EggerResult,
    RegressionTestResult,
    InsufficientStudiesError
)
from .influence import (
    identify_outliers,
    leave_one_out,
    influence_analysis,
    baujat,
    find_outliers,
    InfluenceResult,
    OutlierResult
)
from .gosh import gosh, gosh_diagnostics, GoshResult, GoshDiagnostics

__all__ = [
    "transform",
    "back_transform",
    "proportion_to_scale",
    "study_confint",
    "SUMMARY_MEASURES",
    "ProportionMetaAnalysis",
    "MetaProportionResult",
    "SubgroupResult",
    "PooledEffects",
    "meta_proportions",
    "subgroup_analysis",
    "fit_effects",
    "fit_glmm",
    "glmm_loglik",
    "resolve_methods",
    "estimate_tau2",
    "POOLING_METHODS",
    "egger_test",
    "regression_test",
    "EggerResult",
    "RegressionTestResult",
    "InsufficientStudiesError",
    "identify_outliers",
    "leave_one_out",
    "influence_analysis",
    "baujat",
    "find_outliers",
    "InfluenceResult",
    "OutlierResult",
    "gosh",
    "gosh_diagnostics",
    "GoshResult",
    "GoshDiagnostics"
]
