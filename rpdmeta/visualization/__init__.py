"""Visualization tools for meta-analysis results."""

from .forest_plots import ForestPlotter, FunnelPlotter, save_figure
from .influence_plots import plot_baujat, plot_influence
from .gosh_plots import plot_gosh, plot_gosh_diagnostics

__all__ = [
    "ForestPlotter",
    "FunnelPlotter",
    "save_figure",
    "plot_baujat",
    "plot_influence",
    "plot_gosh",
    "plot_gosh_diagnostics"
]
