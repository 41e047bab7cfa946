"""
Per-category analysis workflow.

Runs the sequence of analyses reported for each etiology: pooled
forest plot, publication bias, heterogeneity and outliers, re-analysis
without outlying studies, influence diagnostics, GOSH and subgroup
analyses. Figures and tables are written under the output directory.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Iterable
from pathlib import Path
import warnings

import pandas as pd

from ..config import Settings, ANALYSES
from ..core import ProportionDataset
from ..analysis import (
    ProportionMetaAnalysis,
    InsufficientStudiesError,
    egger_test,
    regression_test,
    identify_outliers,
    leave_one_out,
    influence_analysis,
    baujat as baujat_coordinates,
    find_outliers,
    gosh as fit_gosh,
    gosh_diagnostics,
)
from ..analysis.proportions import SUBGROUP_VARIABLES
from ..visualization import (
    ForestPlotter,
    FunnelPlotter,
    plot_baujat,
    plot_influence,
    plot_gosh,
    plot_gosh_diagnostics,
)
from ..visualization.forest_plots import save_figure
from .reporting import export_tables


# Analysis name -> workflow method
STAGES = {
    "forest": "forest",
    "publication_bias": "publication_bias",
    "heterogeneity": "heterogeneity",
    "outliers": "outlier_reanalysis",
    "influence": "influence",
    "baujat": "baujat",
    "gosh": "gosh",
    "subgroups": "subgroups",
}


@dataclass
class WorkflowResult:
    """Container for the outputs of one category workflow."""
    category: str
    title: str
    results: Dict[str, Any] = field(default_factory=dict)
    figures: Dict[str, Path] = field(default_factory=dict)
    tables: Dict[str, Path] = field(default_factory=dict)
    summaries: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    completed: List[str] = field(default_factory=list)

    def __repr__(self):
        return (f"WorkflowResult({self.category}: {len(self.completed)} analyses, "
                f"{len(self.figures)} figures, {len(self.warnings)} warnings)")

    def summary(self) -> str:
        lines = [f"{self.title} ({self.category})", "=" * 50]
        lines.append(f"Analyses: {', '.join(self.completed) or 'none'}")
        lines.append(f"Figures: {len(self.figures)}, tables: {len(self.tables)}")
        for message in self.warnings:
            lines.append(f"Warning: {message}")
        return "\n".join(lines)

    def to_report_entry(self) -> Dict[str, Any]:
        """Section entry for generate_report()."""
        entry = {
            "title": self.title,
            "warnings": list(self.warnings),
            "summaries": dict(self.summaries),
            "figures": dict(self.figures),
            "tables": {},
        }
        meta = self.results.get("meta")
        if meta is not None:
            entry["meta"] = meta.to_dict()
            stats = {
                "Pooled proportion (random)": meta.to_dict()["random"],
                "Pooled proportion (common)": meta.to_dict()["common"],
                "tau^2": meta.pooled.tau2,
                "I^2 (%)": meta.pooled.i2,
                "Q": {"statistic": meta.pooled.q, "p_value": meta.pooled.p_q},
            }
            egger = self.results.get("egger")
            if egger is not None:
                stats["Egger intercept"] = {
                    "estimate": egger.intercept,
                    "ci_lower": egger.ci_lower,
                    "ci_upper": egger.ci_upper,
                    "p_value": egger.p_value,
                }
            entry["stats"] = stats
        for name, path in self.tables.items():
            entry["tables"][name] = pd.read_csv(path)
        return entry


class CategoryWorkflow:
    """
    Run the analyses configured for one etiology category.

    Example:
        >>> settings = Settings.from_file("config.yaml")
        >>> dataset = ProportionDataset.from_file(settings.data.path, settings)
        >>> wf = CategoryWorkflow(dataset, "nd", settings, output_dir="results")
        >>> out = wf.run()
        >>> print(out.summary())
    """

    def __init__(
        self,
        dataset: ProportionDataset,
        category: str,
        settings: Optional[Settings] = None,
        output_dir: Optional[str] = None,
        show: bool = False,
        verbose: bool = True
    ):
        self.dataset = dataset
        self.settings = settings or Settings()
        self.cat = self.settings.category(category)
        self.category = category
        self.show = show
        self.verbose = verbose
        self.dirs = self.settings.ensure_dirs(output_dir)

        self.analysis = ProportionMetaAnalysis.from_settings(dataset, category, self.settings)
        self._result = None

        self.forest_plotter = ForestPlotter(self.dirs["figures"], dpi=self.settings.plots.dpi)
        self.funnel_plotter = FunnelPlotter(self.dirs["figures"], dpi=self.settings.plots.dpi)
        self.output = WorkflowResult(category=category, title=self.cat.title)

    @property
    def result(self):
        """Main meta-analysis, fitted on first access."""
        if self._result is None:
            self._result = self.analysis.run()
        return self._result

    # =========================================================================
    # Helpers
    # =========================================================================

    def _log(self, message: str):
        if self.verbose:
            print(f"[{self.category}] {message}")

    def _warn(self, message: str):
        self.output.warnings.append(message)
        warnings.warn(f"[{self.category}] {message}")

    def _figure(self, name: str, fig):
        import matplotlib.pyplot as plt

        path = self.dirs["figures"] / f"{self.category}_{name}.{self.settings.plots.figure_format}"
        save_figure(fig, path, dpi=self.settings.plots.dpi)
        self.output.figures[name] = path
        if not self.show:
            plt.close(fig)
        return path

    def _tables(self, tables: Dict[str, pd.DataFrame]):
        named = {f"{self.category}_{name}": frame for name, frame in tables.items()}
        for name, path in export_tables(named, self.dirs["tables"]).items():
            self.output.tables[name[len(self.category) + 1:]] = path

    def _summary(self, name: str, text: str):
        self.output.summaries[name] = text
        if self.verbose:
            print(text)
            print()

    # =========================================================================
    # Stages
    # =========================================================================

    def forest(self):
        """Pooled proportion with forest plot."""
        self._log("Pooling proportions...")
        result = self.result
        nos = self.dataset.nos_frame() if self.settings.plots.show_nos else None
        self._figure("forest", self.forest_plotter.plot(result, nos=nos))
        self._tables({"studies": result.to_frame()})
        self._summary("Meta-analysis", result.summary())
        self.output.results["meta"] = result

    def publication_bias(self):
        """Funnel plots, Egger's test (skipped below k_min) and the regression test."""
        self._log("Assessing publication bias...")
        result = self.result
        plots = self.settings.plots
        self._figure("funnel", self.funnel_plotter.plot(result, xlim=self.cat.funnel_xlim))
        self._figure("funnel_contour", self.funnel_plotter.plot(
            result,
            xlim=self.cat.contour_xlim,
            contour=plots.contour_levels,
            contour_colors=plots.contour_colors,
        ))

        try:
            egger = egger_test(result, k_min=self.cat.egger_k_min)
        except InsufficientStudiesError as e:
            self._warn(f"publication_bias: {e}")
        else:
            self.output.results["egger"] = egger
            self._summary("Egger's test", egger.summary())

        regtest = regression_test(result)
        self.output.results["regtest"] = regtest
        self._summary("Regression test", regtest.summary())

    def heterogeneity(self):
        """Boxplot outliers, leave-one-out and non-overlapping CI outliers."""
        self._log("Exploring heterogeneity...")
        result = self.result
        counts = self.dataset.category_frame(self.cat.column)
        flagged = identify_outliers(counts, "events")
        loo = leave_one_out(result)
        outliers = find_outliers(result)

        self.output.results["count_outliers"] = flagged
        self.output.results["leave_one_out"] = loo
        self.output.results["find_outliers"] = outliers
        self._tables({"count_outliers": flagged, "leave_one_out": loo})
        self._summary("Outliers", outliers.summary())

    def baujat(self):
        """Baujat plot."""
        self._log("Computing Baujat coordinates...")
        frame = baujat_coordinates(self.result)
        self.output.results["baujat"] = frame
        self._tables({"baujat": frame})
        self._figure("baujat", plot_baujat(frame, title=f"Baujat - {self.cat.title}"))

    def outlier_reanalysis(self):
        """Re-run the analysis without the configured outlying studies."""
        present = [s for s in self.cat.outliers if s in self.dataset.labels]
        missing = [s for s in self.cat.outliers if s not in self.dataset.labels]
        if missing:
            self._warn(f"Configured outliers not in data: {', '.join(missing)}")
        if not present:
            self._warn("No outlying studies to remove; re-analysis skipped")
            return

        self._log(f"Re-analysing without {', '.join(present)}...")
        reduced = self.analysis.update(dataset=self.dataset.exclude(present))
        result = reduced.result
        self.output.results["meta_without_outliers"] = result
        nos = self.dataset.nos_frame() if self.settings.plots.show_nos else None
        self._figure("forest_without_outliers", self.forest_plotter.plot(
            result, nos=nos, title=f"{self.cat.title} (outliers removed)"))
        self._summary("Meta-analysis without outliers", result.summary())

    def influence(self):
        """Case-deletion diagnostics and leave-one-out forest plots."""
        self._log("Running influence analysis...")
        infl = influence_analysis(self.result)
        self.output.results["influence"] = infl
        self._tables({"influence": infl.to_frame()})
        self._figure("influence", plot_influence(infl, title=f"Influence - {self.cat.title}"))
        self._figure("loo_effect", self.forest_plotter.plot_leave_one_out(
            infl.loo_effect, self.result, sort_by="effect"))
        self._figure("loo_i2", self.forest_plotter.plot_leave_one_out(
            infl.loo_i2, self.result, sort_by="i2"))
        self._summary("Influence analysis", infl.summary())

    def gosh(self):
        """GOSH subset analysis with cluster diagnostics."""
        g = self.settings.gosh
        self._log("Running GOSH analysis...")
        res = fit_gosh(self.result, subsets=g.subsets, method=g.method, seed=g.seed,
                       chunk_size=g.chunk_size, verbose=self.verbose)
        self._figure("gosh", plot_gosh(res, title=f"GOSH - {self.cat.title}"))

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            diag = gosh_diagnostics(
                res,
                km_centers=g.km_centers,
                db_eps=g.db_eps,
                db_min_pts=g.db_min_pts,
                gmm_components=g.gmm_components,
                max_points=g.max_points,
                imbalance_threshold=g.imbalance_threshold,
                seed=g.seed,
                verbose=self.verbose,
            )
        for w in caught:
            if issubclass(w.category, UserWarning) and str(w.message).startswith("GOSH"):
                self._warn(str(w.message))

        self.output.results["gosh"] = res
        self.output.results["gosh_diagnostics"] = diag
        self._figure("gosh_diagnostics", plot_gosh_diagnostics(
            diag, title=f"GOSH diagnostics - {self.cat.title}"))
        frames = {name: s.imbalance for name, s in diag.clusters.items() if not s.imbalance.empty}
        if frames:
            imbalance = pd.concat(frames, axis=1)
            imbalance.columns = [f"{a}_cluster{c}" for a, c in imbalance.columns]
            self._tables({"gosh_imbalance": imbalance.rename_axis("study").reset_index()})
        self._summary("GOSH diagnostics", diag.summary())

    def subgroups(self):
        """Subgroup analyses by region and by RPD definition."""
        for variable in SUBGROUP_VARIABLES:
            values = self.result.groups.get(variable, [])
            if all(v is None for v in values):
                self._warn(f"No values for subgroup variable '{variable}'; skipped")
                continue
            self._log(f"Subgroup analysis by {variable}...")
            sub = self.analysis.subgroup(variable)
            self.output.results[f"subgroup_{variable}"] = sub
            self._tables({f"subgroup_{variable}": sub.to_frame()})
            self._figure(f"subgroup_{variable}", self.forest_plotter.plot_subgroups(
                sub, title=f"{self.cat.title} by {variable}"))
            self._summary(f"Subgroups by {variable}", sub.summary())

    # =========================================================================
    # Execution
    # =========================================================================

    def run(self, analyses: Optional[Iterable[str]] = None) -> WorkflowResult:
        """
        Run the selected analyses.

        Args:
            analyses: Analysis names (see ANALYSES); defaults to the
                analyses enabled for the category. An explicit list
                runs regardless of the category defaults.

        Returns:
            WorkflowResult
        """
        if analyses is None:
            selected = [a for a in ANALYSES if self.cat.runs(a)]
        else:
            selected = list(analyses)
            unknown = [a for a in selected if a not in STAGES]
            if unknown:
                raise ValueError(
                    f"Unknown analyses: {unknown}. Available: {', '.join(ANALYSES)}"
                )

        self._log(f"{self.cat.title}: {len(self.dataset)} studies, "
                  f"{self.dataset.total_events(self.cat.column)} events")

        for name in ANALYSES:
            if name not in selected:
                continue
            try:
                getattr(self, STAGES[name])()
            except InsufficientStudiesError as e:
                self._warn(f"{name}: {e}")
                continue
            self.output.completed.append(name)

        if self.show:
            import matplotlib.pyplot as plt
            plt.show()

        return self.output


def run_all(
    settings: Optional[Settings] = None,
    dataset: Optional[ProportionDataset] = None,
    categories: Optional[Iterable[str]] = None,
    analyses: Optional[Iterable[str]] = None,
    output_dir: Optional[str] = None,
    show: bool = False,
    verbose: bool = True
) -> Dict[str, WorkflowResult]:
    """
    Run the workflow for every configured category.

    Args:
        settings: Settings (global settings if None)
        dataset: Study dataset (loaded from settings.data.path if None)
        categories: Category keys to run (all configured if None)
        analyses: Analysis names to run (category defaults if None)
        output_dir: Root output directory
        show: Display figures interactively
        verbose: Print progress and summaries

    Returns:
        Dictionary of category key -> WorkflowResult
    """
    if settings is None:
        from ..config import get_settings
        settings = get_settings()
    if dataset is None:
        dataset = ProportionDataset.from_file(settings.data.path, settings)

    keys = list(categories) if categories else list(settings.categories)
    # Validate all keys before running anything
    for key in keys:
        settings.category(key)

    outputs = {}
    for key in dict.fromkeys(keys):
        workflow = CategoryWorkflow(
            dataset, key, settings, output_dir=output_dir, show=show, verbose=verbose
        )
        outputs[key] = workflow.run(analyses)
    return outputs
