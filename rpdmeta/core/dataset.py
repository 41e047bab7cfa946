"""
Study dataset container.

This module provides the ProportionDataset class which holds the
study rows read from the review spreadsheet and converts them to the
per-category frames the meta-analysis routines consume.
"""

from typing import List, Dict, Any, Optional, Iterable
from pathlib import Path
import math
import pandas as pd

from ..config import Settings
from .study import Study, NOSAssessment, CATEGORY_FIELDS


class DatasetValidationError(ValueError):
    """Raised when study rows violate the count invariants."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__(
            f"{len(problems)} invalid row(s):\n  " + "\n  ".join(problems)
        )


COUNT_FIELDS = ["n_nd", "n_cjd", "n_ai", "n_total"]


def _is_missing(value) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _group_value(value) -> Optional[str]:
    """Normalize a grouping cell (Yes/No, 1/0, free text) to a label."""
    if _is_missing(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


class ProportionDataset:
    """
    Container for the studies of one systematic review.

    Attributes:
        name: Dataset name
        studies: List of Study objects
    """

    def __init__(self, name: str, studies: Optional[List[Study]] = None):
        self.name = name
        self.studies: List[Study] = list(studies or [])

    # =========================================================================
    # Loading
    # =========================================================================

    @classmethod
    def from_file(cls, path: str, settings=None, validate: bool = True) -> "ProportionDataset":
        """
        Load studies from an Excel or CSV spreadsheet.

        Args:
            path: Path to .xlsx/.xls/.csv file
            settings: Settings object providing the column map, sheet
                and excluded studies (defaults used if None)
            validate: Check the count invariants after loading

        Returns:
            ProportionDataset with excluded studies already removed
        """
        settings = settings or Settings()
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Study spreadsheet not found: {path}")

        if path.suffix.lower() in (".xlsx", ".xls"):
            df = pd.read_excel(path, sheet_name=settings.data.sheet or 0)
        elif path.suffix.lower() == ".csv":
            df = pd.read_csv(path)
        else:
            raise ValueError(f"Unsupported spreadsheet format: {path.suffix}")

        return cls.from_dataframe(df, settings, name=path.stem, validate=validate)

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        settings=None,
        name: str = "studies",
        validate: bool = True
    ) -> "ProportionDataset":
        """Build a dataset from a DataFrame with the spreadsheet columns."""
        settings = settings or Settings()
        columns = settings.data.columns

        required = ["study", "n_total"] + [
            f for f in CATEGORY_FIELDS.values()
        ]
        missing = [columns[f] for f in required if columns[f] not in df.columns]
        if missing:
            raise ValueError(f"Missing required columns in spreadsheet: {missing}")

        def cell(row, key):
            column = columns.get(key)
            if column is None or column not in df.columns:
                return None
            return row[column]

        studies = []
        for _, row in df.iterrows():
            label = cell(row, "study")
            if _is_missing(label):
                continue
            counts = {}
            for f in COUNT_FIELDS:
                value = cell(row, f)
                counts[f] = None if _is_missing(value) else value
            studies.append(Study(
                label=str(label).strip(),
                n_total=counts["n_total"],
                n_nd=counts["n_nd"],
                n_cjd=counts["n_cjd"],
                n_ai=counts["n_ai"],
                nos=NOSAssessment.from_values(
                    cell(row, "selection"),
                    cell(row, "comparability"),
                    cell(row, "exposure"),
                    cell(row, "nos_total"),
                ),
                latin_america=_group_value(cell(row, "latin_america")),
                definition=_group_value(cell(row, "definition")),
            ))

        dataset = cls(name, studies)
        excluded = [s for s in settings.data.excluded_studies if s in dataset.labels]
        if excluded:
            dataset = dataset.exclude(excluded)

        if validate:
            dataset.validate()
        dataset._coerce_counts()
        return dataset

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> None:
        """
        Check that every event count is a non-negative whole number no
        larger than the study's total.

        Raises:
            DatasetValidationError: listing every offending row
        """
        problems = []
        seen = set()
        for study in self.studies:
            if study.label in seen:
                problems.append(f"{study.label}: duplicated study label")
            seen.add(study.label)

            total = study.n_total
            if _is_missing(total) or not _whole(total) or total <= 0:
                problems.append(f"{study.label}: n_total must be a positive integer (got {total})")
                continue
            for f in ("n_nd", "n_cjd", "n_ai"):
                value = getattr(study, f)
                if _is_missing(value) or not _whole(value) or value < 0:
                    problems.append(f"{study.label}: {f} must be a non-negative integer (got {value})")
                elif value > total:
                    problems.append(f"{study.label}: {f}={int(value)} exceeds n_total={int(total)}")

        if problems:
            raise DatasetValidationError(problems)

    def _coerce_counts(self) -> None:
        for study in self.studies:
            for f in COUNT_FIELDS:
                value = getattr(study, f)
                if not _is_missing(value):
                    setattr(study, f, int(value))

    # =========================================================================
    # Selection
    # =========================================================================

    @property
    def labels(self) -> List[str]:
        return [s.label for s in self.studies]

    def get_study(self, label: str) -> Optional[Study]:
        """Get a study by label."""
        for study in self.studies:
            if study.label == label:
                return study
        return None

    def exclude(self, labels: Iterable[str]) -> "ProportionDataset":
        """
        Return a new dataset without the given studies.

        Args:
            labels: Study labels to drop

        Raises:
            ValueError: If a label is not in the dataset
        """
        labels = list(labels)
        unknown = [label for label in labels if label not in self.labels]
        if unknown:
            raise ValueError(f"Studies not in dataset: {unknown}")
        kept = [s for s in self.studies if s.label not in labels]
        return ProportionDataset(self.name, kept)

    # =========================================================================
    # Frames
    # =========================================================================

    def to_frame(self) -> pd.DataFrame:
        """One row per study with canonical column names."""
        records = []
        for s in self.studies:
            records.append({
                "study": s.label,
                "n_nd": s.n_nd,
                "n_cjd": s.n_cjd,
                "n_ai": s.n_ai,
                "n_total": s.n_total,
                "selection": s.nos.selection,
                "comparability": s.nos.comparability,
                "exposure": s.nos.exposure,
                "nos_total": s.nos.total,
                "latin_america": s.latin_america,
                "definition": s.definition,
            })
        return pd.DataFrame(records)

    def category_frame(self, category: str) -> pd.DataFrame:
        """
        Export event counts for one etiology category.

        Returns:
            DataFrame with columns: study, events, n, proportion,
            latin_america, definition
        """
        records = []
        for s in self.studies:
            events = s.events(category)
            records.append({
                "study": s.label,
                "events": events,
                "n": s.n_total,
                "proportion": events / s.n_total,
                "latin_america": s.latin_america,
                "definition": s.definition,
            })
        return pd.DataFrame(
            records,
            columns=["study", "events", "n", "proportion", "latin_america", "definition"]
        )

    def nos_frame(self) -> pd.DataFrame:
        """Newcastle-Ottawa ratings as forest plot columns S, C, E, NOS."""
        rows = []
        for s in self.studies:
            row = {"study": s.label}
            row.update(s.nos.symbols())
            rows.append(row)
        return pd.DataFrame(rows, columns=["study", "S", "C", "E", "NOS"])

    # =========================================================================
    # Summary Statistics
    # =========================================================================

    @property
    def n_studies(self) -> int:
        """Total number of studies."""
        return len(self.studies)

    @property
    def total_sample_size(self) -> int:
        """Sum of RPD patients across all studies."""
        return sum(s.n_total or 0 for s in self.studies)

    def total_events(self, category: str) -> int:
        return sum(s.events(category) for s in self.studies)

    def summary(self) -> str:
        """Generate a text summary of the dataset."""
        lines = [
            f"RPD Study Dataset: {self.name}",
            f"{'=' * 50}",
            f"Studies: {self.n_studies}",
            f"Total RPD patients: {self.total_sample_size}",
            "",
            "Events by category:",
        ]
        for key in CATEGORY_FIELDS:
            lines.append(f"  - {key}: {self.total_events(key)}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert dataset to dictionary for serialization."""
        return {
            "name": self.name,
            "studies": [s.to_dict() for s in self.studies],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProportionDataset":
        """Create dataset from dictionary."""
        return cls(
            name=data["name"],
            studies=[Study.from_dict(s) for s in data.get("studies", [])],
        )

    def __len__(self) -> int:
        return len(self.studies)

    def __repr__(self):
        return f"ProportionDataset(name={self.name!r}, n_studies={self.n_studies})"


def _whole(value) -> bool:
    try:
        return float(value).is_integer() and not math.isinf(float(value))
    except (TypeError, ValueError):
        return False
