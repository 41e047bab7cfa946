"""
Graphical display of study heterogeneity (GOSH).

Refits the meta-analysis in subsets of the studies and clusters the
resulting (estimate, I^2) cloud to find studies driving heterogeneity.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import warnings
import numpy as np
import pandas as pd
from sklearn.preprocessing import MinMaxScaler
from sklearn.cluster import KMeans, DBSCAN
from sklearn.mixture import GaussianMixture

from .proportions import MetaProportionResult
from .bias import InsufficientStudiesError


def _fit_subsets(incl: np.ndarray, yi: np.ndarray, vi: np.ndarray, method: str) -> Dict[str, np.ndarray]:
    """Vectorized common-effect or DerSimonian-Laird fits, one per row of incl."""
    M = incl.astype(float)
    w = 1.0 / vi

    k = M.sum(axis=1)
    sw = M @ w
    swy = M @ (w * yi)
    te_common = swy / sw
    q = np.clip(M @ (w * yi ** 2) - swy ** 2 / sw, 0, None)
    df = k - 1

    with np.errstate(divide="ignore", invalid="ignore"):
        i2 = np.where((q > 0) & (df > 0), np.clip((q - df) / q, 0, None) * 100, 0.0)

        if method == "FE":
            tau2 = np.zeros(len(M))
            te = te_common
        else:
            c = sw - (M @ w ** 2) / sw
            tau2 = np.where((df > 0) & (c > 0), np.clip((q - df) / c, 0, None), 0.0)
            wr = M / (vi[None, :] + tau2[:, None])
            te = (wr @ yi) / wr.sum(axis=1)

    return {"te": te, "q": q, "i2": i2, "tau2": tau2, "k": k.astype(int)}


def _exhaustive_chunks(k: int, chunk_size: int):
    total = 2 ** k
    bits = np.arange(k, dtype=np.int64)
    for start in range(1, total, chunk_size):
        codes = np.arange(start, min(start + chunk_size, total), dtype=np.int64)
        yield ((codes[:, None] >> bits) & 1).astype(bool)


def _random_chunks(k: int, n_subsets: int, chunk_size: int, rng: np.random.Generator):
    remaining = n_subsets
    while remaining > 0:
        m = min(chunk_size, remaining)
        incl = rng.random((m, k)) < 0.5
        empty = ~incl.any(axis=1)
        while empty.any():
            incl[empty] = rng.random((empty.sum(), k)) < 0.5
            empty = ~incl.any(axis=1)
        yield incl
        remaining -= m


@dataclass
class GoshResult:
    """Per-subset fits of a GOSH analysis."""
    studies: List[str]
    te: np.ndarray
    proportion: np.ndarray
    i2: np.ndarray
    q: np.ndarray
    tau2: np.ndarray
    k: np.ndarray
    incl: np.ndarray
    exhaustive: bool
    method: str = "DL"
    result: Optional[MetaProportionResult] = field(default=None, repr=False)

    def __repr__(self):
        kind = "all" if self.exhaustive else "random"
        return (f"GoshResult(k={len(self.studies)}, subsets={self.n_subsets} ({kind}), "
                f"method={self.method})")

    @property
    def n_subsets(self) -> int:
        return len(self.te)

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame({
            "te": self.te,
            "proportion": self.proportion,
            "i2": self.i2,
            "q": self.q,
            "tau2": self.tau2,
            "k": self.k,
        })
        incl = pd.DataFrame(self.incl, columns=self.studies)
        return pd.concat([frame, incl], axis=1)


def gosh(
    result: MetaProportionResult,
    subsets: int = 1_000_000,
    method: str = "DL",
    seed: Optional[int] = None,
    chunk_size: int = 100_000,
    verbose: bool = False
) -> GoshResult:
    """
    Fit the model in subsets of the studies.

    All 2^k - 1 non-empty subsets are used when that number does not
    exceed ``subsets``; otherwise ``subsets`` random subsets are drawn,
    each study included with probability 0.5.

    Args:
        result: Fitted meta-analysis
        subsets: Maximum number of subsets to fit
        method: 'DL' (DerSimonian-Laird random effects) or 'FE'
        seed: Random seed for subset sampling
        chunk_size: Subsets fitted per vectorized batch
        verbose: Print progress

    Returns:
        GoshResult
    """
    method = method.upper()
    if method not in ("DL", "FE"):
        raise ValueError(f"Unknown GOSH method: {method}. Use 'DL' or 'FE'")
    k = result.k
    if k < 2:
        raise InsufficientStudiesError("GOSH analysis", k, 2)

    exhaustive = 2 ** k - 1 <= subsets
    if exhaustive:
        chunks = _exhaustive_chunks(k, chunk_size)
        n_total = 2 ** k - 1
    else:
        chunks = _random_chunks(k, int(subsets), chunk_size, np.random.default_rng(seed))
        n_total = int(subsets)

    if verbose:
        kind = "all" if exhaustive else "random"
        print(f"Fitting {n_total} {kind} subsets of {k} studies ({method})...")

    parts = {"te": [], "q": [], "i2": [], "tau2": [], "k": []}
    incl_parts = []
    for incl in chunks:
        fits = _fit_subsets(incl, result.yi, result.vi, method)
        for key in parts:
            parts[key].append(fits[key])
        incl_parts.append(incl)

    te = np.concatenate(parts["te"])
    return GoshResult(
        studies=list(result.studies),
        te=te,
        proportion=result.back_transform(te),
        i2=np.concatenate(parts["i2"]),
        q=np.concatenate(parts["q"]),
        tau2=np.concatenate(parts["tau2"]),
        k=np.concatenate(parts["k"]),
        incl=np.vstack(incl_parts),
        exhaustive=exhaustive,
        method=method,
        result=result,
    )


@dataclass
class ClusterSummary:
    """Clustering of the GOSH cloud by one algorithm."""
    algorithm: str
    labels: np.ndarray
    sizes: Dict[int, int]
    imbalance: pd.DataFrame
    flagged: List[str]

    def __repr__(self):
        return (f"ClusterSummary({self.algorithm}: clusters={self.n_clusters}, "
                f"flagged={self.flagged or 'none'})")

    @property
    def n_clusters(self) -> int:
        return len([c for c in self.sizes if c >= 0])


@dataclass
class GoshDiagnostics:
    """
    Cluster diagnostics of a GOSH analysis.

    Attributes:
        clusters: ClusterSummary per algorithm ('kmeans', 'dbscan', 'gmm')
        sample_index: Rows of the GOSH result that were clustered
        scaled: Min-max scaled (estimate, I^2) coordinates of the sample
        gosh_result: The analysed GoshResult
    """
    clusters: Dict[str, ClusterSummary]
    sample_index: np.ndarray
    scaled: np.ndarray
    gosh_result: GoshResult = field(repr=False)
    imbalance_threshold: float = 0.5

    def __repr__(self):
        return f"GoshDiagnostics(flagged={self.flagged or 'none'})"

    @property
    def flagged(self) -> List[str]:
        """Studies flagged by at least one algorithm, in study order."""
        hits = set()
        for summary in self.clusters.values():
            hits.update(summary.flagged)
        return [s for s in self.gosh_result.studies if s in hits]

    def summary(self) -> str:
        lines = [
            "GOSH diagnostics",
            "=" * 50,
            f"Subsets clustered: {len(self.sample_index)} of {self.gosh_result.n_subsets}",
        ]
        for name, summary in self.clusters.items():
            sizes = ", ".join(f"{c}: {n}" for c, n in sorted(summary.sizes.items()))
            lines.append(f"  {name}: {summary.n_clusters} cluster(s) ({sizes})")
            lines.append(f"    flagged: {', '.join(summary.flagged) or 'none'}")
        lines.append("")
        lines.append(f"Potential outliers: {', '.join(self.flagged) or 'none'}")
        return "\n".join(lines)


def _cluster_imbalance(labels: np.ndarray, incl: np.ndarray, studies: List[str]) -> pd.DataFrame:
    """Share of subsets containing each study inside minus outside each cluster."""
    columns = {}
    for c in sorted(set(labels.tolist())):
        if c < 0:
            continue
        inside = labels == c
        if inside.all():
            continue
        share_in = incl[inside].mean(axis=0)
        share_out = incl[~inside].mean(axis=0)
        columns[c] = np.abs(share_in - share_out)
    return pd.DataFrame(columns, index=studies)


def gosh_diagnostics(
    gosh_result: GoshResult,
    km_centers: int = 2,
    db_eps: float = 0.08,
    db_min_pts: int = 50,
    gmm_components: int = 2,
    max_points: int = 10_000,
    imbalance_threshold: float = 0.5,
    seed: Optional[int] = 42,
    verbose: bool = False
) -> GoshDiagnostics:
    """
    Cluster the GOSH cloud with k-means, DBSCAN and a Gaussian mixture.

    The (estimate, I^2) pairs are min-max scaled before clustering. For
    each cluster the per-study imbalance is the absolute difference
    between the share of subsets containing the study inside and
    outside the cluster; studies with imbalance >= imbalance_threshold
    in any cluster are flagged.

    Args:
        gosh_result: Output of gosh()
        km_centers: Number of k-means clusters
        db_eps: DBSCAN neighbourhood radius
        db_min_pts: DBSCAN minimum points per core sample
        gmm_components: Number of mixture components
        max_points: Maximum subsets to cluster (random sample above it)
        imbalance_threshold: Flagging threshold
        seed: Random seed
        verbose: Print progress

    Returns:
        GoshDiagnostics
    """
    n = gosh_result.n_subsets
    rng = np.random.default_rng(seed)
    if n > max_points:
        sample_index = np.sort(rng.choice(n, size=max_points, replace=False))
    else:
        sample_index = np.arange(n)

    points = np.column_stack([gosh_result.te[sample_index], gosh_result.i2[sample_index]])
    scaled = MinMaxScaler().fit_transform(points)
    incl = gosh_result.incl[sample_index]

    algorithms = {
        "kmeans": lambda: KMeans(n_clusters=km_centers, n_init=10, random_state=seed).fit_predict(scaled),
        "dbscan": lambda: DBSCAN(eps=db_eps, min_samples=db_min_pts).fit_predict(scaled),
        "gmm": lambda: GaussianMixture(n_components=gmm_components, random_state=seed).fit_predict(scaled),
    }

    clusters = {}
    for name, fit in algorithms.items():
        if verbose:
            print(f"  Clustering GOSH results with {name}...")
        if len(scaled) < 2:
            labels = np.zeros(len(scaled), dtype=int)
        else:
            labels = np.asarray(fit(), dtype=int)
        values, counts = np.unique(labels, return_counts=True)
        sizes = {int(c): int(m) for c, m in zip(values, counts)}
        if len([c for c in sizes if c >= 0]) < 2:
            warnings.warn(f"GOSH {name} clustering found fewer than two clusters")

        imbalance = _cluster_imbalance(labels, incl, gosh_result.studies)
        if imbalance.empty:
            flagged = []
        else:
            hit = (imbalance >= imbalance_threshold).any(axis=1)
            flagged = imbalance.index[hit].tolist()

        clusters[name] = ClusterSummary(
            algorithm=name,
            labels=labels,
            sizes=sizes,
            imbalance=imbalance,
            flagged=flagged,
        )

    return GoshDiagnostics(
        clusters=clusters,
        sample_index=sample_index,
        scaled=scaled,
        gosh_result=gosh_result,
        imbalance_threshold=imbalance_threshold,
    )
