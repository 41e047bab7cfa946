"""
Core data models for proportion meta-analysis studies.

This module defines the study-level records the toolkit pools:
event counts for each etiology category, the total number of RPD
patients, Newcastle-Ottawa Scale quality ratings and the grouping
variables used for subgroup analyses.
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any
import math
import json


CATEGORY_FIELDS = {
    "nd": "n_nd",
    "cjd": "n_cjd",
    "ai": "n_ai",
}


def _stars(value) -> int:
    """Count quality stars from a star string, a number or a blank cell."""
    if value is None:
        return 0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        if set(text) == {"*"}:
            return len(text)
        return int(float(text))
    if isinstance(value, float) and math.isnan(value):
        return 0
    return int(value)


@dataclass
class NOSAssessment:
    """
    Newcastle-Ottawa Scale rating for an observational study.

    Attributes:
        selection: Stars awarded in the selection domain (0-4)
        comparability: Stars awarded for comparability (0-2)
        exposure: Stars awarded for exposure/outcome (0-3)
        total: Overall rating as recorded (a star string such as "***"
            counts as 3); summed from the domains if not given
    """
    selection: int = 0
    comparability: int = 0
    exposure: int = 0
    total: Optional[int] = None

    def __post_init__(self):
        if self.total is None:
            self.total = self.selection + self.comparability + self.exposure

    @classmethod
    def from_values(cls, selection=None, comparability=None, exposure=None,
                    total=None) -> "NOSAssessment":
        """Build a rating from spreadsheet cells (star strings or numbers)."""
        has_total = total is not None and not (
            isinstance(total, float) and math.isnan(total)
        ) and not (isinstance(total, str) and not total.strip())
        return cls(
            selection=_stars(selection),
            comparability=_stars(comparability),
            exposure=_stars(exposure),
            total=_stars(total) if has_total else None,
        )

    def symbols(self) -> Dict[str, str]:
        """Display strings for the S, C, E and NOS forest plot columns."""
        def sym(n):
            return str(n) if n > 0 else "+"

        return {
            "S": sym(self.selection),
            "C": sym(self.comparability),
            "E": sym(self.exposure),
            "NOS": str(self.total),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selection": self.selection,
            "comparability": self.comparability,
            "exposure": self.exposure,
            "total": self.total,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NOSAssessment":
        return cls(
            selection=data.get("selection", 0),
            comparability=data.get("comparability", 0),
            exposure=data.get("exposure", 0),
            total=data.get("total"),
        )


@dataclass
class Study:
    """
    One row of the study spreadsheet.

    Event counts are the number of RPD patients in the study whose
    final diagnosis fell in each etiology category; `n_total` is the
    number of RPD patients in the study.
    """
    label: str
    n_total: int
    n_nd: int = 0
    n_cjd: int = 0
    n_ai: int = 0
    nos: NOSAssessment = field(default_factory=NOSAssessment)
    latin_america: Optional[str] = None
    definition: Optional[str] = None

    def events(self, category: str) -> int:
        """Event count for a category key ('nd', 'cjd', 'ai') or field name."""
        name = CATEGORY_FIELDS.get(category, category)
        if not hasattr(self, name) or not name.startswith("n_") or name == "n_total":
            raise ValueError(f"Unknown category: {category}")
        return getattr(self, name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "label": self.label,
            "n_total": self.n_total,
            "n_nd": self.n_nd,
            "n_cjd": self.n_cjd,
            "n_ai": self.n_ai,
            "nos": self.nos.to_dict(),
            "latin_america": self.latin_america,
            "definition": self.definition,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Study":
        """Create Study from dictionary."""
        return cls(
            label=data["label"],
            n_total=data["n_total"],
            n_nd=data.get("n_nd", 0),
            n_cjd=data.get("n_cjd", 0),
            n_ai=data.get("n_ai", 0),
            nos=NOSAssessment.from_dict(data.get("nos", {})),
            latin_america=data.get("latin_america"),
            definition=data.get("definition"),
        )

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=2)
