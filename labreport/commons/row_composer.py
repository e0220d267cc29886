from typing import Dict, Iterator, List, Optional

from labreport.commons.types import BloodTest, Parameter, PatientRecord
from labreport.ranges.age_buckets import resolve_range
from labreport.ranges.classifier import MODERATE_RATIO, SEVERE_RATIO, classify
from labreport.ranges.models import FlaggedParameter, LabTestReport, ReportRow, ReportSection
from labreport.ranges.numeric import parse_numeric
from labreport.validation.validators import patient_age_days


def format_test_title(test_key: str) -> str:
    return test_key.replace("_", " ").upper()


def format_value(value, label: str) -> str:
    if value is None or str(value).strip() == "":
        return "-"
    return f"{value} {label}" if label else str(value)


class RowComposer:
    """Turns a patient's stored results into classified report rows.

    Every parameter goes through the same steps: resolve the range for the
    patient's age and gender, parse it, classify the value, then format the row.
    """

    def __init__(
        self,
        severe_ratio: float = SEVERE_RATIO,
        moderate_ratio: float = MODERATE_RATIO,
        skip_hidden: bool = True,
        skip_outsourced: bool = True,
    ):
        self.severe_ratio = severe_ratio
        self.moderate_ratio = moderate_ratio
        self.skip_hidden = skip_hidden
        self.skip_outsourced = skip_outsourced

    def _visible(self, params: List[Parameter]) -> List[Parameter]:
        if not self.skip_hidden:
            return list(params)
        return [p for p in params if not p.hidden]

    # -------- Rows --------
    def compose_parameter(
        self, param: Parameter, age_days: float, gender: Optional[str], indent: int = 0
    ) -> List[ReportRow]:
        """Row for ``param`` followed by its subparameters, one indent level deeper."""
        range_display = resolve_range(param.range, age_days, gender)
        deviation = classify(
            param.value,
            parse_numeric(range_display),
            severe_ratio=self.severe_ratio,
            moderate_ratio=self.moderate_ratio,
        )
        rows = [
            ReportRow(
                name=param.name,
                formatted_value=format_value(param.value, deviation.label),
                unit=param.unit,
                range_display=range_display,
                out_of_range_label=deviation.label,
                indent=indent,
                level=deviation.level,
                severity=deviation.severity,
            )
        ]
        for sub in self._visible(param.subparameters):
            rows.extend(self.compose_parameter(sub, age_days, gender, indent + 1))
        return rows

    def compose_test(
        self, test_key: str, test: BloodTest, age_days: float, gender: Optional[str]
    ) -> LabTestReport:
        params = self._visible(test.parameters)
        grouped = {name for sh in test.subheadings for name in sh.parameter_names}

        sections: List[ReportSection] = []
        globals_ = [p for p in params if p.name not in grouped]
        if globals_:
            sections.append(ReportSection(title=None, rows=self._rows(globals_, age_days, gender)))

        for sh in test.subheadings:
            members = [p for p in params if p.name in sh.parameter_names]
            if not members:
                continue
            sections.append(ReportSection(title=sh.title, rows=self._rows(members, age_days, gender)))

        return LabTestReport(
            key=test_key,
            title=format_test_title(test_key),
            sections=sections,
            reported_on=test.reported_on,
        )

    def _rows(self, params: List[Parameter], age_days: float, gender: Optional[str]) -> List[ReportRow]:
        rows: List[ReportRow] = []
        for p in params:
            rows.extend(self.compose_parameter(p, age_days, gender))
        return rows

    def _tests(self, record: PatientRecord) -> Iterator:
        for key, test in record.bloodtest.items():
            if self.skip_outsourced and test.outsourced:
                continue
            yield key, test

    def compose_record(self, record: PatientRecord) -> List[LabTestReport]:
        age_days = patient_age_days(record)
        return [
            self.compose_test(key, test, age_days, record.gender)
            for key, test in self._tests(record)
        ]

    # -------- Out-of-range summary --------
    def out_of_range(self, record: PatientRecord) -> Dict[str, List[FlaggedParameter]]:
        """Flagged parameters per test title; tests with nothing flagged are left out."""
        age_days = patient_age_days(record)
        out: Dict[str, List[FlaggedParameter]] = {}
        for key, test in self._tests(record):
            if not test.parameters:
                continue
            flagged = [
                FlaggedParameter(
                    name=row.name,
                    value=row.formatted_value,
                    unit=row.unit,
                    range_display=row.range_display,
                    level=row.level,
                    severity=row.severity,
                )
                for p in self._visible(test.parameters)
                for row in self.compose_parameter(p, age_days, record.gender)
                if row.level != "normal"
            ]
            if flagged:
                out[format_test_title(key)] = flagged
        return out

    # -------- Payload mapping --------
    @staticmethod
    def row_payload(row: ReportRow) -> Dict:
        return {
            "name": row.name,
            "formattedValue": row.formatted_value,
            "unit": row.unit,
            "rangeDisplayString": row.range_display,
            "outOfRangeLabel": row.out_of_range_label,
            "indent": row.indent,
            "level": row.level,
            "severity": row.severity,
        }

    def to_payload(self, record: PatientRecord, reports: List[LabTestReport]) -> Dict:
        """Map composed tests into the JSON shape handed to the rendering layer."""
        return {
            "patient": {
                "patientId": record.patient_id,
                "name": record.name,
                "age": record.age,
                "gender": record.gender,
                "ageDays": patient_age_days(record),
                "doctorName": record.doctor_name,
                "hospitalName": record.hospital_name,
                "sampleCollectedAt": record.sample_collected_at,
                "createdAt": record.created_at,
            },
            "tests": [
                {
                    "key": r.key,
                    "title": r.title,
                    "reportedOn": r.reported_on,
                    "sections": [
                        {"title": s.title, "rows": [self.row_payload(row) for row in s.rows]}
                        for s in r.sections
                    ],
                }
                for r in reports
            ],
        }

    def summary_payload(self, flagged: Dict[str, List[FlaggedParameter]]) -> Dict:
        return {
            title: [
                {
                    "name": f.name,
                    "value": f.value,
                    "unit": f.unit,
                    "rangeDisplayString": f.range_display,
                    "level": f.level,
                    "severity": f.severity,
                }
                for f in params
            ]
            for title, params in flagged.items()
        }
