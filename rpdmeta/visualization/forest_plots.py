"""
Forest and funnel plot visualization for proportion meta-analysis.

Provides publication-quality plots for presenting meta-analysis results.
"""

from typing import Optional, List, Tuple, Sequence
from pathlib import Path
import numpy as np
import pandas as pd
from scipy import stats


def save_figure(fig, path, output_dir: Optional[Path] = None, dpi: int = 300) -> Path:
    """Save figure to file, creating parent directories."""
    output_path = Path(path)
    if output_dir:
        output_path = Path(output_dir) / output_path
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=dpi, bbox_inches='tight')
    return output_path


def _fmt_ci(p: float, lo: float, hi: float, digits: int = 2) -> str:
    return f"{p:.{digits}f} [{lo:.{digits}f}; {hi:.{digits}f}]"


def _diamond(ax, y, lower, est, upper, color, height=0.3):
    ax.fill(
        [lower, est, upper, est],
        [y, y + height, y, y - height],
        color=color, edgecolor='black', zorder=3
    )


class ForestPlotter:
    """
    Create forest plots for proportion meta-analysis.

    Example:
        >>> plotter = ForestPlotter(output_dir="results/figures")
        >>> fig = plotter.plot(result, nos=dataset.nos_frame(),
        ...                    output_path="forest_nd.png")
    """

    # Column positions in axes coordinates
    LEFT = {"study": -0.95, "events": -0.22, "n": -0.08}
    RIGHT = {"ci": 1.03, "weight": 1.42, "S": 1.62, "C": 1.69, "E": 1.76, "NOS": 1.85}

    def __init__(self, output_dir: Optional[str] = None, dpi: int = 300):
        """
        Initialize plotter.

        Args:
            output_dir: Default directory for saving figures
            dpi: Resolution of saved figures
        """
        self.output_dir = Path(output_dir) if output_dir else None
        self.dpi = dpi

    def _text(self, ax, x, y, text, ha='left', bold=False, size=9):
        ax.text(x, y, text, ha=ha, va='center', transform=ax.get_yaxis_transform(),
                fontsize=size, fontweight='bold' if bold else 'normal', clip_on=False)

    def _header(self, ax, y, show_nos, ci_level):
        level = int(round(ci_level * 100))
        self._text(ax, self.LEFT["study"], y, "Study", bold=True)
        self._text(ax, self.LEFT["events"], y, "Cases", ha='right', bold=True)
        self._text(ax, self.LEFT["n"], y, "Total", ha='right', bold=True)
        self._text(ax, self.RIGHT["ci"], y, f"Proportion [{level}% CI]", bold=True)
        self._text(ax, self.RIGHT["weight"], y, "Weight", bold=True)
        if show_nos:
            for col in ("S", "C", "E", "NOS"):
                self._text(ax, self.RIGHT[col], y, col, ha='center', bold=True)

    def _study_rows(self, ax, result, y_positions, nos):
        frame = result.to_frame()
        weights = frame["weight_random"].values
        marker_sizes = weights / max(weights.max(), 1e-12) * 150 + 15
        nos_rows = nos.set_index("study") if nos is not None else None

        for i, y in enumerate(y_positions):
            row = frame.iloc[i]
            ax.hlines(y, row["ci_lower"], row["ci_upper"], colors='black', linewidth=1)
            ax.scatter(row["proportion"], y, s=marker_sizes[i], marker='s',
                       color='0.5', edgecolors='black', zorder=3)
            self._text(ax, self.LEFT["study"], y, row["study"])
            self._text(ax, self.LEFT["events"], y, str(int(row["events"])), ha='right')
            self._text(ax, self.LEFT["n"], y, str(int(row["n"])), ha='right')
            self._text(ax, self.RIGHT["ci"], y,
                       _fmt_ci(row["proportion"], row["ci_lower"], row["ci_upper"]))
            self._text(ax, self.RIGHT["weight"], y, f"{row['weight_random']:.1f}%")
            if nos_rows is not None and row["study"] in nos_rows.index:
                ratings = nos_rows.loc[row["study"]]
                for col in ("S", "C", "E", "NOS"):
                    self._text(ax, self.RIGHT[col], y, str(ratings[col]), ha='center')

    def _pooled_rows(self, ax, result, y, label_suffix="", show_common=True,
                     show_random=True, show_prediction=True):
        """Draw pooled diamonds and prediction bar from y downwards; returns next free y."""
        if show_common:
            p, lo, hi = result.proportion_common
            _diamond(ax, y, lo, p, hi, color='0.8')
            self._text(ax, self.LEFT["study"], y, f"Common effect model{label_suffix}", bold=True)
            self._text(ax, self.LEFT["events"], y, str(int(result.events.sum())), ha='right')
            self._text(ax, self.LEFT["n"], y, str(int(result.n.sum())), ha='right')
            self._text(ax, self.RIGHT["ci"], y, _fmt_ci(p, lo, hi), bold=True)
            self._text(ax, self.RIGHT["weight"], y, "--")
            y -= 1
        if show_random:
            p, lo, hi = result.proportion_random
            _diamond(ax, y, lo, p, hi, color='0.4')
            self._text(ax, self.LEFT["study"], y, f"Random effects model{label_suffix}", bold=True)
            if not show_common:
                self._text(ax, self.LEFT["events"], y, str(int(result.events.sum())), ha='right')
                self._text(ax, self.LEFT["n"], y, str(int(result.n.sum())), ha='right')
            self._text(ax, self.RIGHT["ci"], y, _fmt_ci(p, lo, hi), bold=True)
            self._text(ax, self.RIGHT["weight"], y, "100.0%")
            y -= 1
        pi = result.prediction_interval
        if show_prediction and pi is not None:
            ax.fill_between([pi[0], pi[1]], y - 0.12, y + 0.12, color='firebrick',
                            edgecolor='black', zorder=3)
            self._text(ax, self.LEFT["study"], y, "Prediction interval")
            self._text(ax, self.RIGHT["ci"], y, f"[{pi[0]:.2f}; {pi[1]:.2f}]")
            y -= 1
        return y

    def _heterogeneity_text(self, result) -> str:
        p = result.pooled
        p_text = "< 0.01" if p.p_q < 0.01 else f"= {p.p_q:.2f}"
        return (f"Heterogeneity: $I^2$ = {p.i2:.0f}%, $\\tau^2$ = {p.tau2:.4f}, "
                f"$\\chi^2_{{{p.df_q}}}$ = {p.q:.2f} (p {p_text})")

    def plot(
        self,
        result,
        nos: Optional[pd.DataFrame] = None,
        title: Optional[str] = None,
        xlabel: str = "Proportion",
        xlim: Optional[Tuple[float, float]] = None,
        show_common: bool = True,
        show_random: bool = True,
        show_prediction: bool = True,
        output_path: Optional[str] = None,
        figsize: Tuple[float, Optional[float]] = (8, None)
    ):
        """
        Create a forest plot of study proportions.

        Args:
            result: MetaProportionResult
            nos: Newcastle-Ottawa table (ProportionDataset.nos_frame());
                adds S, C, E and NOS columns when given
            title: Plot title (result title if None)
            xlabel: Label for x-axis
            xlim: x-axis limits on the proportion scale
            show_common: Draw the common-effect diamond
            show_random: Draw the random-effects diamond
            show_prediction: Draw the prediction interval
            output_path: Path to save figure
            figsize: Figure size (height auto-calculated if None)

        Returns:
            matplotlib Figure
        """
        import matplotlib.pyplot as plt

        k = result.k
        n_pooled = int(show_common) + int(show_random) + int(
            show_prediction and result.prediction_interval is not None)
        height = figsize[1] or (k + n_pooled + 3) * 0.3 + 1
        fig, ax = plt.subplots(figsize=(figsize[0], height))

        y_positions = np.arange(k, 0, -1, dtype=float)
        self._header(ax, k + 1, nos is not None, result.pooled.ci_level)
        self._study_rows(ax, result, y_positions, nos)
        y = self._pooled_rows(ax, result, -0.5, show_common=show_common,
                              show_random=show_random, show_prediction=show_prediction)
        self._text(ax, self.LEFT["study"], y, self._heterogeneity_text(result), size=8)

        if show_random:
            ax.axvline(result.proportion_random[0], color='0.4', linestyle=':', linewidth=1)

        ax.set_ylim(y - 0.7, k + 1.6)
        ax.set_xlim(*(xlim or (0, 1)))
        ax.set_yticks([])
        for side in ('left', 'right', 'top'):
            ax.spines[side].set_visible(False)
        ax.set_xlabel(xlabel, fontsize=10)
        ax.set_title(title if title is not None else result.title,
                     fontsize=12, fontweight='bold', pad=14)
        fig.subplots_adjust(left=0.42, right=0.55 if nos is not None else 0.62)

        if output_path:
            self._save_figure(fig, output_path)

        return fig

    def plot_subgroups(
        self,
        subgroup_result,
        title: Optional[str] = None,
        xlabel: str = "Proportion",
        xlim: Optional[Tuple[float, float]] = None,
        show_common: bool = False,
        output_path: Optional[str] = None,
        figsize: Tuple[float, Optional[float]] = (8, None)
    ):
        """
        Create a forest plot with one block per subgroup.

        Args:
            subgroup_result: SubgroupResult
            title: Plot title
            xlabel: Label for x-axis
            xlim: x-axis limits on the proportion scale
            show_common: Draw common-effect diamonds as well
            output_path: Path to save figure
            figsize: Figure size (height auto-calculated if None)

        Returns:
            matplotlib Figure
        """
        import matplotlib.pyplot as plt

        overall = subgroup_result.overall
        n_rows = overall.k + 6 * len(subgroup_result.subgroups) + 6
        height = figsize[1] or n_rows * 0.28 + 1
        fig, ax = plt.subplots(figsize=(figsize[0], height))

        y = float(n_rows)
        self._header(ax, y, False, overall.pooled.ci_level)
        y -= 1.5
        for level, res in subgroup_result.subgroups.items():
            self._text(ax, self.LEFT["study"], y, f"{subgroup_result.variable} = {level}", bold=True)
            y -= 1
            positions = y - np.arange(res.k)
            self._study_rows(ax, res, positions, None)
            y = positions[-1] - 1
            y = self._pooled_rows(ax, res, y, show_common=show_common, show_prediction=False)
            self._text(ax, self.LEFT["study"], y, self._heterogeneity_text(res), size=8)
            y -= 1.5

        y = self._pooled_rows(ax, overall, y, show_common=show_common)
        self._text(ax, self.LEFT["study"], y, self._heterogeneity_text(overall), size=8)
        y -= 1
        self._text(
            ax, self.LEFT["study"], y,
            f"Test for subgroup differences: $\\chi^2_{{{subgroup_result.df_between}}}$ = "
            f"{subgroup_result.q_between:.2f} (p = {subgroup_result.p_between:.2f})",
            size=8
        )

        ax.set_ylim(y - 0.7, n_rows + 0.6)
        ax.set_xlim(*(xlim or (0, 1)))
        ax.set_yticks([])
        for side in ('left', 'right', 'top'):
            ax.spines[side].set_visible(False)
        ax.set_xlabel(xlabel, fontsize=10)
        ax.set_title(title if title is not None else overall.title,
                     fontsize=12, fontweight='bold', pad=14)
        fig.subplots_adjust(left=0.42, right=0.62)

        if output_path:
            self._save_figure(fig, output_path)

        return fig

    def plot_leave_one_out(
        self,
        frame: pd.DataFrame,
        result=None,
        sort_by: str = "effect",
        title: str = "Leave-one-out analysis",
        xlabel: str = "Proportion",
        output_path: Optional[str] = None,
        figsize: Tuple[float, Optional[float]] = (8, None)
    ):
        """
        Forest plot of leave-one-out estimates.

        Args:
            frame: Output of leave_one_out()
            result: Full MetaProportionResult, drawn as the bottom row
            sort_by: "effect" (pooled proportion), "i2" or None
            title: Plot title
            xlabel: Label for x-axis
            output_path: Path to save figure
            figsize: Figure size (height auto-calculated if None)

        Returns:
            matplotlib Figure
        """
        import matplotlib.pyplot as plt

        if sort_by == "effect":
            frame = frame.sort_values("proportion")
        elif sort_by == "i2":
            frame = frame.sort_values("i2")
        elif sort_by is not None:
            raise ValueError(f"Unknown sort_by: {sort_by}. Use 'effect', 'i2' or None")
        frame = frame.reset_index(drop=True)

        n = len(frame)
        height = figsize[1] or (n + 4) * 0.3 + 1
        fig, ax = plt.subplots(figsize=(figsize[0], height))

        top = n + 1
        level = int(round((result.pooled.ci_level if result is not None else 0.95) * 100))
        self._text(ax, self.LEFT["study"], top, "Study omitted", bold=True)
        self._text(ax, self.RIGHT["ci"], top, f"Proportion [{level}% CI]", bold=True)
        self._text(ax, self.RIGHT["weight"], top, "Tau2", bold=True)
        self._text(ax, self.RIGHT["weight"] + 0.15, top, "I2", bold=True)

        for i, row in frame.iterrows():
            y = n - i
            ax.hlines(y, row["ci_lower"], row["ci_upper"], colors='black', linewidth=1)
            ax.scatter(row["proportion"], y, s=30, marker='s', color='0.5',
                       edgecolors='black', zorder=3)
            self._text(ax, self.LEFT["study"], y, f"Omitting {row['study']}")
            self._text(ax, self.RIGHT["ci"], y,
                       _fmt_ci(row["proportion"], row["ci_lower"], row["ci_upper"]))
            self._text(ax, self.RIGHT["weight"], y, f"{row['tau2']:.4f}")
            self._text(ax, self.RIGHT["weight"] + 0.15, y, f"{row['i2']:.0f}%")

        y = -0.5
        if result is not None:
            p, lo, hi = result.proportion_random
            _diamond(ax, y, lo, p, hi, color='0.4')
            ax.axvline(p, color='0.4', linestyle=':', linewidth=1)
            self._text(ax, self.LEFT["study"], y, "Random effects model", bold=True)
            self._text(ax, self.RIGHT["ci"], y, _fmt_ci(p, lo, hi), bold=True)
            self._text(ax, self.RIGHT["weight"], y, f"{result.pooled.tau2:.4f}")
            self._text(ax, self.RIGHT["weight"] + 0.15, y, f"{result.pooled.i2:.0f}%")

        ax.set_ylim(y - 1, top + 0.6)
        ax.set_xlim(0, 1)
        ax.set_yticks([])
        for side in ('left', 'right', 'top'):
            ax.spines[side].set_visible(False)
        ax.set_xlabel(xlabel, fontsize=10)
        suffix = {"effect": " (sorted by effect size)", "i2": " (sorted by I$^2$)"}.get(sort_by, "")
        ax.set_title(title + suffix, fontsize=12, fontweight='bold', pad=14)
        fig.subplots_adjust(left=0.42, right=0.6)

        if output_path:
            self._save_figure(fig, output_path)

        return fig

    def _save_figure(self, fig, path: str):
        """Save figure to file."""
        return save_figure(fig, path, self.output_dir, self.dpi)


class FunnelPlotter:
    """
    Create funnel plots for publication bias assessment.

    Example:
        >>> plotter = FunnelPlotter()
        >>> fig = plotter.plot(result, xlim=(-7, 3), contour=[0.9, 0.95, 0.99])
    """

    def __init__(self, output_dir: Optional[str] = None, dpi: int = 300):
        self.output_dir = Path(output_dir) if output_dir else None
        self.dpi = dpi

    def plot(
        self,
        result,
        studlab: bool = True,
        xlim: Optional[Tuple[float, float]] = None,
        contour: Optional[Sequence[float]] = None,
        contour_colors: Sequence[str] = ("0.75", "0.85", "0.95"),
        title: Optional[str] = None,
        effect_label: Optional[str] = None,
        output_path: Optional[str] = None,
        figsize: Tuple[int, int] = (8, 6)
    ):
        """
        Create a funnel plot of transformed effects against standard errors.

        Without ``contour`` a pseudo confidence funnel is drawn around the
        common-effect estimate. With ``contour`` (e.g. [0.9, 0.95, 0.99])
        the regions of statistical significance around zero are shaded.

        Args:
            result: MetaProportionResult
            studlab: Label points with study names
            xlim: x-axis limits on the transformed scale
            contour: Confidence levels for contour-enhanced mode
            contour_colors: Fill colors, one per contour level
            title: Plot title
            effect_label: Label for x-axis (defaults to the summary measure)
            output_path: Path to save figure
            figsize: Figure size

        Returns:
            matplotlib Figure
        """
        import matplotlib.pyplot as plt
        from matplotlib.patches import Patch

        effects = result.yi
        se = result.sei
        se_max = max(se) * 1.1
        se_range = np.linspace(0, se_max, 100)

        fig, ax = plt.subplots(figsize=figsize)

        if contour:
            levels = sorted(contour)
            if len(contour_colors) < len(levels):
                raise ValueError("Need one contour color per contour level")
            limits = xlim or (min(effects.min(), -1) * 1.2, max(effects.max(), 1) * 1.2)
            ax.fill_betweenx(se_range, limits[0], limits[1], color=contour_colors[len(levels) - 1])
            handles = []
            for j in range(len(levels) - 1, -1, -1):
                z = stats.norm.ppf((1 + levels[j]) / 2)
                fill = contour_colors[j - 1] if j > 0 else 'white'
                ax.fill_betweenx(se_range, -z * se_range, z * se_range, color=fill)
            for j in range(len(levels)):
                hi_p = 1 - levels[j]
                if j + 1 < len(levels):
                    label = f"{hi_p:.2g} > p > {1 - levels[j + 1]:.2g}"
                else:
                    label = f"p < {hi_p:.2g}"
                handles.append(Patch(facecolor=contour_colors[j], edgecolor='0.5', label=label))
            ax.axvline(x=0, color='black', linewidth=0.8)
            ax.legend(handles=handles, loc='lower right', fontsize=8)
        else:
            te = result.pooled.te_common
            z_crit = stats.norm.ppf((1 + result.pooled.ci_level) / 2)
            ax.plot(te - z_crit * se_range, se_range, 'k--', linewidth=1)
            ax.plot(te + z_crit * se_range, se_range, 'k--', linewidth=1)
            ax.axvline(x=te, color='black', linestyle='-', linewidth=1.5)

        ax.scatter(effects, se, s=40, color='0.3', edgecolors='black', zorder=3)

        if studlab:
            for label, x, y in zip(result.studies, effects, se):
                ax.annotate(label, (x, y), xytext=(4, 2), textcoords='offset points',
                            fontsize=7)

        if xlim:
            ax.set_xlim(*xlim)
        ax.set_ylim(se_max, 0)
        ax.set_xlabel(effect_label or _effect_label(result.sm), fontsize=11)
        ax.set_ylabel("Standard Error", fontsize=11)
        ax.set_title(title if title is not None else result.title, fontsize=12, fontweight='bold')

        plt.tight_layout()

        if output_path:
            self._save_figure(fig, output_path)

        return fig

    def _save_figure(self, fig, path: str):
        """Save figure to file."""
        return save_figure(fig, path, self.output_dir, self.dpi)


def _effect_label(sm: str) -> str:
    return {
        "PLOGIT": "Logit Transformed Proportion",
        "PAS": "Arcsine Transformed Proportion",
        "PFT": "Freeman-Tukey Double Arcsine Transformed Proportion",
        "PLN": "Log Transformed Proportion",
        "PRAW": "Proportion",
    }.get(sm, "Transformed Proportion")
