"""
Global settings and configuration for the RPD meta-analysis toolkit.

Settings can be loaded from:
1. Environment variables
2. JSON or YAML config file
3. Direct instantiation

The defaults reproduce the published analysis: the duplicated
"Grau-Rivera, 2015*" row is dropped, each etiology has its own list of
outlying studies for the sensitivity re-analysis, and Egger's test
requires 10 studies for neurodegenerative diseases and 9 otherwise.
"""

import os
import json
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, List, Tuple
from pathlib import Path

import yaml


ANALYSES = (
    "forest",
    "publication_bias",
    "heterogeneity",
    "outliers",
    "influence",
    "baujat",
    "gosh",
    "subgroups",
)


@dataclass
class DataSettings:
    """Where the study spreadsheet lives and how its columns are named."""

    path: str = "base.xlsx"
    sheet: Optional[str] = None
    columns: Dict[str, str] = field(default_factory=lambda: {
        "study": "Author",
        "n_nd": "nND",
        "n_cjd": "nCJD",
        "n_ai": "nAI",
        "n_total": "nTotal",
        "selection": "Selection",
        "comparability": "Comparability",
        "exposure": "Exposure",
        "nos_total": "Total",
        "latin_america": "LatinAmerica",
        "definition": "Definition",
    })
    excluded_studies: List[str] = field(default_factory=lambda: [
        "Grau-Rivera, 2015*",
    ])


@dataclass
class AnalysisDefaults:
    """Default parameters for proportion meta-analyses.

    Logit proportions are pooled with a random-intercept logistic
    model fitted by maximum likelihood. ``method=None`` picks GLMM or
    inverse-variance pooling from ``sm`` and ``method_tau``.
    """

    sm: str = "PLOGIT"
    method: Optional[str] = "GLMM"
    method_tau: Optional[str] = "ML"
    hakn: bool = False
    ci_level: float = 0.95
    incr: float = 0.5
    prediction: bool = True


@dataclass
class CategorySettings:
    """Per-etiology settings."""

    key: str
    column: str
    title: str
    outliers: List[str] = field(default_factory=list)
    egger_k_min: int = 10
    funnel_xlim: Tuple[float, float] = (-7.0, 3.0)
    contour_xlim: Tuple[float, float] = (-6.0, 3.0)
    analyses: List[str] = field(default_factory=lambda: list(ANALYSES))

    def runs(self, analysis: str) -> bool:
        """Check whether an analysis is enabled for this category."""
        return analysis in self.analyses


def _default_categories() -> Dict[str, CategorySettings]:
    no_gosh = [a for a in ANALYSES if a != "gosh"]
    return {
        "nd": CategorySettings(
            key="nd",
            column="n_nd",
            title="Neurodegenerative diseases",
            outliers=["Chandra, 2017", "Day, 2018"],
            egger_k_min=10,
        ),
        "cjd": CategorySettings(
            key="cjd",
            column="n_cjd",
            title="Prion diseases",
            outliers=["Grau-Rivera, 2015"],
            egger_k_min=9,
            analyses=no_gosh,
        ),
        "ai": CategorySettings(
            key="ai",
            column="n_ai",
            title="Autoimmune Encephalitis",
            outliers=["Chandra, 2017"],
            egger_k_min=9,
            analyses=[a for a in no_gosh if a != "baujat"],
        ),
    }


@dataclass
class GoshSettings:
    """Parameters for GOSH subset analysis and its cluster diagnostics."""

    subsets: int = 1_000_000
    method: str = "DL"
    chunk_size: int = 100_000
    km_centers: int = 2
    db_eps: float = 0.08
    db_min_pts: int = 50
    gmm_components: int = 2
    max_points: int = 10_000
    imbalance_threshold: float = 0.5
    seed: int = 42


@dataclass
class PlotSettings:
    """Figure output defaults."""

    dpi: int = 300
    figure_format: str = "png"
    contour_levels: List[float] = field(default_factory=lambda: [0.9, 0.95, 0.99])
    contour_colors: List[str] = field(default_factory=lambda: [
        "0.75", "0.85", "0.95"
    ])
    show_nos: bool = True


@dataclass
class PathSettings:
    """Default paths for outputs."""

    results_dir: str = "results"
    figures_dir: str = "figures"
    tables_dir: str = "tables"


@dataclass
class Settings:
    """
    Global settings container.

    Example:
        >>> settings = Settings.from_env()
        >>> print(settings.data.path)

        >>> settings = Settings.from_file("config.yaml")
        >>> settings.save("my_config.json")
    """

    data: DataSettings = field(default_factory=DataSettings)
    analysis: AnalysisDefaults = field(default_factory=AnalysisDefaults)
    categories: Dict[str, CategorySettings] = field(default_factory=_default_categories)
    gosh: GoshSettings = field(default_factory=GoshSettings)
    plots: PlotSettings = field(default_factory=PlotSettings)
    paths: PathSettings = field(default_factory=PathSettings)

    def category(self, key: str) -> CategorySettings:
        """Get settings for one etiology category."""
        try:
            return self.categories[key]
        except KeyError:
            raise ValueError(
                f"Unknown category '{key}'. "
                f"Available: {', '.join(self.categories)}"
            ) from None

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        settings = cls()
        settings.data.path = os.getenv("RPD_DATA_PATH", settings.data.path)
        settings.data.sheet = os.getenv("RPD_DATA_SHEET") or None
        settings.paths = PathSettings(
            results_dir=os.getenv("RPD_RESULTS_DIR", "results"),
            figures_dir=os.getenv("RPD_FIGURES_DIR", "figures"),
            tables_dir=os.getenv("RPD_TABLES_DIR", "tables"),
        )
        return settings

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Create settings from a nested dictionary.

        Category entries are merged over the defaults so a config file
        only needs to list what it changes.
        """
        categories = _default_categories()
        for key, values in (data.get("categories") or {}).items():
            if key in categories:
                merged = asdict(categories[key])
                merged.update(values)
            else:
                merged = {"key": key, **values}
            merged["key"] = key
            for xlim in ("funnel_xlim", "contour_xlim"):
                if xlim in merged:
                    merged[xlim] = tuple(merged[xlim])
            categories[key] = CategorySettings(**merged)

        analysis = dict(data.get("analysis") or {})
        if ("sm" in analysis or "method_tau" in analysis) and "method" not in analysis:
            analysis["method"] = None

        return cls(
            data=DataSettings(**data.get("data", {})),
            analysis=AnalysisDefaults(**analysis),
            categories=categories,
            gosh=GoshSettings(**data.get("gosh", {})),
            plots=PlotSettings(**data.get("plots", {})),
            paths=PathSettings(**data.get("paths", {})),
        )

    @classmethod
    def from_file(cls, path: str) -> "Settings":
        """Load settings from a JSON or YAML file."""
        path = Path(path)
        with open(path) as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to a plain dictionary."""
        return {
            "data": asdict(self.data),
            "analysis": asdict(self.analysis),
            "categories": {k: asdict(v) for k, v in self.categories.items()},
            "gosh": asdict(self.gosh),
            "plots": asdict(self.plots),
            "paths": asdict(self.paths),
        }

    def save(self, path: str):
        """Save settings to JSON or YAML depending on the suffix."""
        path = Path(path)
        data = self.to_dict()
        with open(path, 'w') as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                yaml.safe_dump(json.loads(json.dumps(data)), f, sort_keys=False)
            else:
                json.dump(data, f, indent=2)

    def ensure_dirs(self, root: Optional[str] = None) -> Dict[str, Path]:
        """Create output directories if they don't exist."""
        base = Path(root or self.paths.results_dir)
        dirs = {
            "results": base,
            "figures": base / self.paths.figures_dir,
            "tables": base / self.paths.tables_dir,
        }
        for dir_path in dirs.values():
            dir_path.mkdir(parents=True, exist_ok=True)
        return dirs


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance (lazy-loaded from env)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def configure(settings: Settings):
    """Set global settings instance."""
    global _settings
    _settings = settings
