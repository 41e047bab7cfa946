"""Core data models for the RPD meta-analysis."""

from .study import Study, NOSAssessment, CATEGORY_FIELDS
from .dataset import ProportionDataset, DatasetValidationError

__all__ = [
    "Study",
    "NOSAssessment",
    "CATEGORY_FIELDS",
    "ProportionDataset",
    "DatasetValidationError"
]
