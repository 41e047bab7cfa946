"""
GOSH plots: the subset cloud and its cluster diagnostics.
"""

from typing import Optional, Tuple

from .forest_plots import save_figure


def plot_gosh(
    gosh_result,
    title: str = "GOSH plot",
    alpha: float = 0.3,
    output_path: Optional[str] = None,
    dpi: int = 300,
    figsize: Tuple[int, int] = (8, 8)
):
    """
    Scatter of pooled proportion against I^2 for every fitted subset,
    with marginal histograms.

    Args:
        gosh_result: Output of gosh()
        title: Plot title
        alpha: Point transparency
        output_path: Path to save figure
        dpi: Resolution of saved figure
        figsize: Figure size

    Returns:
        matplotlib Figure
    """
    import matplotlib.pyplot as plt

    fig = plt.figure(figsize=figsize)
    grid = fig.add_gridspec(2, 2, width_ratios=(4, 1), height_ratios=(1, 4),
                            hspace=0.05, wspace=0.05)
    ax = fig.add_subplot(grid[1, 0])
    ax_top = fig.add_subplot(grid[0, 0], sharex=ax)
    ax_right = fig.add_subplot(grid[1, 1], sharey=ax)

    ax.scatter(gosh_result.proportion, gosh_result.i2, s=2, alpha=alpha,
               color='0.2', rasterized=True)
    ax_top.hist(gosh_result.proportion, bins=50, color='0.6', edgecolor='0.3')
    ax_right.hist(gosh_result.i2, bins=50, orientation='horizontal',
                  color='0.6', edgecolor='0.3')

    ax.set_xlabel("Pooled proportion", fontsize=11)
    ax.set_ylabel("I$^2$ (%)", fontsize=11)
    ax_top.tick_params(labelbottom=False)
    ax_right.tick_params(labelleft=False)
    ax_top.set_title(title, fontsize=12, fontweight='bold')

    if output_path:
        save_figure(fig, output_path, dpi=dpi)

    return fig


def plot_gosh_diagnostics(
    diagnostics,
    title: str = "GOSH diagnostics",
    max_studies: int = 3,
    output_path: Optional[str] = None,
    dpi: int = 300,
    figsize: Optional[Tuple[int, int]] = None
):
    """
    Cluster assignments for each algorithm and, for flagged studies,
    the subsets that contain them.

    Args:
        diagnostics: Output of gosh_diagnostics()
        title: Figure title
        max_studies: Maximum number of flagged studies to highlight
        output_path: Path to save figure
        dpi: Resolution of saved figure
        figsize: Figure size (auto if None)

    Returns:
        matplotlib Figure
    """
    import matplotlib.pyplot as plt

    gosh_result = diagnostics.gosh_result
    idx = diagnostics.sample_index
    x = gosh_result.proportion[idx]
    y = gosh_result.i2[idx]
    flagged = diagnostics.flagged[:max_studies]

    n_rows = 2 if flagged else 1
    n_cols = max(len(diagnostics.clusters), len(flagged), 1)
    fig, axes = plt.subplots(n_rows, n_cols, squeeze=False,
                             figsize=figsize or (4.5 * n_cols, 4 * n_rows))

    names = {"kmeans": "K-means", "dbscan": "DBSCAN", "gmm": "Gaussian mixture"}
    for ax, (name, summary) in zip(axes[0], diagnostics.clusters.items()):
        noise = summary.labels < 0
        ax.scatter(x[noise], y[noise], s=2, color='0.8', rasterized=True)
        ax.scatter(x[~noise], y[~noise], s=2, c=summary.labels[~noise],
                   cmap='tab10', vmin=0, vmax=9, rasterized=True)
        ax.set_title(f"{names.get(name, name)} ({summary.n_clusters} clusters)", fontsize=10)
        ax.set_xlabel("Pooled proportion", fontsize=9)
        ax.set_ylabel("I$^2$ (%)", fontsize=9)

    if flagged:
        incl = gosh_result.incl[idx]
        for ax, study in zip(axes[1], flagged):
            col = gosh_result.studies.index(study)
            has = incl[:, col]
            ax.scatter(x[~has], y[~has], s=2, color='0.75', rasterized=True)
            ax.scatter(x[has], y[has], s=2, color='firebrick', rasterized=True)
            ax.set_title(f"Subsets with {study}", fontsize=10)
            ax.set_xlabel("Pooled proportion", fontsize=9)
            ax.set_ylabel("I$^2$ (%)", fontsize=9)

    for ax in axes.flat[len(diagnostics.clusters):n_cols]:
        ax.set_visible(False)
    if flagged:
        for ax in axes[1][len(flagged):]:
            ax.set_visible(False)

    fig.suptitle(title, fontsize=12, fontweight='bold')
    plt.tight_layout()

    if output_path:
        save_figure(fig, output_path, dpi=dpi)

    return fig
