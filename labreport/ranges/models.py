# ===============================
# File: labreport/ranges/models.py
# ===============================
from dataclasses import dataclass, field
from typing import List, Literal, Optional

Level = Literal["normal", "low", "high"]
Severity = Literal["mild", "moderate", "severe"]


@dataclass(frozen=True)
class NumericRange:
    lower: float
    upper: float  # math.inf when open above


@dataclass(frozen=True)
class Deviation:
    level: Level = "normal"
    severity: Optional[Severity] = None  # None for normal results

    @property
    def label(self) -> str:
        if self.level == "low":
            return "L"
        if self.level == "high":
            return "H"
        return ""


@dataclass
class ReportRow:
    name: str
    formatted_value: str
    unit: str
    range_display: str
    out_of_range_label: str
    indent: int = 0
    level: Level = "normal"
    severity: Optional[Severity] = None


@dataclass
class ReportSection:
    title: Optional[str]  # None for parameters outside any subheading
    rows: List[ReportRow] = field(default_factory=list)


@dataclass
class LabTestReport:
    key: str
    title: str
    sections: List[ReportSection]
    reported_on: Optional[str] = None


@dataclass
class FlaggedParameter:
    name: str
    value: str
    unit: str
    range_display: str
    level: Level
    severity: Optional[Severity]
