"""
Baujat and influence diagnostic plots.
"""

from typing import Optional, Tuple
import numpy as np
import pandas as pd
from scipy import stats

from .forest_plots import save_figure


def plot_baujat(
    frame: pd.DataFrame,
    title: str = "Baujat plot",
    studlab: bool = True,
    output_path: Optional[str] = None,
    dpi: int = 300,
    figsize: Tuple[int, int] = (7, 6)
):
    """
    Plot each study's contribution to heterogeneity against its
    influence on the pooled result.

    Args:
        frame: Output of baujat() (columns study, x, y)
        title: Plot title
        studlab: Label points with study names
        output_path: Path to save figure
        dpi: Resolution of saved figure
        figsize: Figure size

    Returns:
        matplotlib Figure
    """
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(frame["x"], frame["y"], s=60, color='blue', edgecolors='black', zorder=3)
    if studlab:
        for _, row in frame.iterrows():
            ax.annotate(row["study"], (row["x"], row["y"]), xytext=(4, 3),
                        textcoords='offset points', fontsize=8)

    ax.set_xlabel("Contribution to overall heterogeneity", fontsize=11)
    ax.set_ylabel("Influence on overall result", fontsize=11)
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if output_path:
        save_figure(fig, output_path, dpi=dpi)

    return fig


# (column, axis label, reference line function of (k, full model))
_PANELS = [
    ("rstudent", "rstudent", lambda k, r: [-1.96, 1.96]),
    ("dffits", "dffits", lambda k, r: [3 * np.sqrt(1 / (k - 1)), -3 * np.sqrt(1 / (k - 1))]),
    ("cook_d", "cook.d", lambda k, r: [stats.chi2.ppf(0.5, 1)]),
    ("cov_r", "cov.r", lambda k, r: [1.0]),
    ("tau2_del", "tau2.del", lambda k, r: [r.tau2]),
    ("qe_del", "QE.del", lambda k, r: [r.q]),
    ("hat", "hat", lambda k, r: [1 / k, 3 / k]),
    ("weight", "weight", lambda k, r: [100 / k]),
]


def plot_influence(
    influence_result,
    title: Optional[str] = None,
    output_path: Optional[str] = None,
    dpi: int = 300,
    figsize: Tuple[int, int] = (10, 12)
):
    """
    Eight-panel index plot of case-deletion diagnostics.

    Influential studies are drawn in red.

    Args:
        influence_result: Output of influence_analysis()
        title: Figure title
        output_path: Path to save figure
        dpi: Resolution of saved figure
        figsize: Figure size

    Returns:
        matplotlib Figure
    """
    import matplotlib.pyplot as plt

    table = influence_result.table
    result = influence_result.result
    model = influence_result.model or result.pooled
    k = len(table)
    index = np.arange(1, k + 1)
    colors = np.where(table["is_influential"], 'red', 'black')

    fig, axes = plt.subplots(4, 2, figsize=figsize)
    for ax, (column, label, refs) in zip(axes.flat, _PANELS):
        values = table[column].values
        ax.plot(index, values, color='0.5', linewidth=1)
        ax.scatter(index, values, c=colors, s=25, zorder=3)
        for ref in refs(k, model):
            ax.axhline(ref, color='0.4', linestyle='--', linewidth=0.8)
        ax.set_ylabel(label, fontsize=10)
        ax.set_xticks(index)
        ax.tick_params(axis='x', labelsize=7)

    for ax in axes[-1]:
        ax.set_xlabel("Study", fontsize=10)

    fig.suptitle(title if title is not None else f"Influence diagnostics: {result.title}",
                 fontsize=12, fontweight='bold')
    plt.tight_layout()

    if output_path:
        save_figure(fig, output_path, dpi=dpi)

    return fig
