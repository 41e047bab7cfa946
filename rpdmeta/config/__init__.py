"""Configuration and settings for the RPD meta-analysis toolkit."""

from .settings import (
    ANALYSES,
    AnalysisDefaults,
    CategorySettings,
    DataSettings,
    GoshSettings,
    PathSettings,
    PlotSettings,
    Settings,
    configure,
    get_settings,
)

__all__ = [
    "ANALYSES",
    "AnalysisDefaults",
    "CategorySettings",
    "DataSettings",
    "GoshSettings",
    "PathSettings",
    "PlotSettings",
    "Settings",
    "configure",
    "get_settings",
]
