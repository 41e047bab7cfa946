"""
Transformations for meta-analysis of single proportions.

Summary measures follow the conventions of R's ``metaprop``:

- ``PLOGIT``: logit transformation (default)
- ``PAS``: arcsine transformation
- ``PFT``: Freeman-Tukey double arcsine transformation
- ``PLN``: log transformation
- ``PRAW``: untransformed proportions
"""

from typing import Optional, Tuple
import numpy as np
from statsmodels.stats.proportion import proportion_confint


SUMMARY_MEASURES = ("PLOGIT", "PAS", "PFT", "PLN", "PRAW")

# Measures that break down when a study has 0 or n events
_NEEDS_INCR = ("PLOGIT", "PLN", "PRAW")


def _check_sm(sm: str) -> str:
    sm = sm.upper()
    if sm not in SUMMARY_MEASURES:
        raise ValueError(
            f"Unknown summary measure: {sm}. "
            f"Choose from {', '.join(SUMMARY_MEASURES)}"
        )
    return sm


def continuity_corrected(
    events: np.ndarray,
    n: np.ndarray,
    sm: str = "PLOGIT",
    incr: float = 0.5
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Apply the continuity correction to studies with 0 or n events.

    Returns:
        (events, n, corrected) where corrected flags adjusted studies
    """
    sm = _check_sm(sm)
    events = np.asarray(events, dtype=float)
    n = np.asarray(n, dtype=float)
    corrected = np.zeros(len(events), dtype=bool)
    if sm in _NEEDS_INCR and incr > 0:
        corrected = (events == 0) | (events == n)
        events = np.where(corrected, events + incr, events)
        n = np.where(corrected, n + 2 * incr, n)
    return events, n, corrected


def transform(
    events,
    n,
    sm: str = "PLOGIT",
    incr: float = 0.5
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Transform event counts to effect sizes and sampling variances.

    Args:
        events: Number of events per study
        n: Number of observations per study
        sm: Summary measure
        incr: Continuity correction for studies with 0 or n events

    Returns:
        (yi, vi) arrays on the transformed scale
    """
    sm = _check_sm(sm)
    x, n, _ = continuity_corrected(events, n, sm, incr)

    if np.any(n <= 0):
        raise ValueError("All sample sizes must be > 0")

    if sm == "PLOGIT":
        yi = np.log(x / (n - x))
        vi = 1.0 / x + 1.0 / (n - x)
    elif sm == "PAS":
        yi = np.arcsin(np.sqrt(x / n))
        vi = 1.0 / (4.0 * n)
    elif sm == "PFT":
        yi = 0.5 * (np.arcsin(np.sqrt(x / (n + 1))) +
                    np.arcsin(np.sqrt((x + 1) / (n + 1))))
        vi = 1.0 / (4.0 * n + 2.0)
    elif sm == "PLN":
        yi = np.log(x / n)
        vi = 1.0 / x - 1.0 / n
    else:  # PRAW
        yi = x / n
        vi = x * (n - x) / n ** 3

    return yi, vi


def back_transform(
    x,
    sm: str = "PLOGIT",
    n_harmonic: Optional[float] = None
) -> np.ndarray:
    """
    Back-transform values on the analysis scale to proportions.

    Args:
        x: Values on the transformed scale
        sm: Summary measure
        n_harmonic: Harmonic mean of sample sizes (required for PFT)

    Returns:
        Proportions clipped to [0, 1]
    """
    sm = _check_sm(sm)
    x = np.asarray(x, dtype=float)

    if sm == "PLOGIT":
        p = 1.0 / (1.0 + np.exp(-x))
    elif sm == "PAS":
        p = np.sin(np.clip(x, 0, np.pi / 2)) ** 2
    elif sm == "PFT":
        if n_harmonic is None:
            raise ValueError("PFT back-transformation requires the harmonic mean of n")
        p = _double_arcsine_inverse(x, n_harmonic)
    elif sm == "PLN":
        p = np.exp(x)
    else:
        p = x

    return np.clip(p, 0.0, 1.0)


def proportion_to_scale(p, sm: str = "PLOGIT") -> np.ndarray:
    """
    Map proportions (e.g. CI bounds) onto the analysis scale.

    Bounds of 0 or 1 become -inf or +inf on the logit and log scales.
    PFT uses the arcsine of the square root, the large-sample form of
    the double arcsine.
    """
    sm = _check_sm(sm)
    p = np.asarray(p, dtype=float)
    with np.errstate(divide="ignore"):
        if sm == "PLOGIT":
            return np.log(p) - np.log1p(-p)
        if sm in ("PAS", "PFT"):
            return np.arcsin(np.sqrt(p))
        if sm == "PLN":
            return np.log(p)
    return p


def _double_arcsine_inverse(t: np.ndarray, n: float) -> np.ndarray:
    """Inverse of the Freeman-Tukey transformation (Miller, 1978)."""
    lower = 0.5 * (np.arcsin(0.0) + np.arcsin(np.sqrt(1.0 / (n + 1))))
    upper = 0.5 * (np.arcsin(np.sqrt(n / (n + 1))) + np.arcsin(1.0))

    sin2t = np.sin(2 * t)
    with np.errstate(divide="ignore", invalid="ignore"):
        inner = 1 - (sin2t + (sin2t - 1.0 / sin2t) / n) ** 2
        p = 0.5 * (1 - np.sign(np.cos(2 * t)) * np.sqrt(np.clip(inner, 0, None)))

    p = np.where(t <= lower, 0.0, p)
    p = np.where(t >= upper, 1.0, p)
    return p


def harmonic_mean(n) -> float:
    """Harmonic mean of sample sizes."""
    n = np.asarray(n, dtype=float)
    return float(len(n) / np.sum(1.0 / n))


def study_confint(events, n, level: float = 0.95) -> Tuple[np.ndarray, np.ndarray]:
    """
    Clopper-Pearson exact confidence intervals for study proportions.

    Returns:
        (lower, upper) arrays
    """
    events = np.asarray(events, dtype=float)
    n = np.asarray(n, dtype=float)
    lower, upper = proportion_confint(events, n, alpha=1 - level, method="beta")
    lower = np.where(events == 0, 0.0, lower)
    upper = np.where(events == n, 1.0, upper)
    return np.asarray(lower, dtype=float), np.asarray(upper, dtype=float)
