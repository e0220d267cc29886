# labreport/validation/validators.py
import json
from typing import Any, Dict, Union

from pydantic import BaseModel, field_validator

from labreport.commons.types import PatientRecord

_DAY_MULTIPLIERS = {"year": 365, "month": 30, "day": 1}


class RecordEnvelope(BaseModel):
    """Minimal shape a record must have before it is worth composing."""

    record: Dict[str, Any]

    @field_validator("record")
    @classmethod
    def _has_tests(cls, v: Dict[str, Any]):
        tests = v.get("bloodtest")
        if tests is not None and not isinstance(tests, dict):
            raise ValueError("bloodtest must be an object keyed by test name")
        return v


def _number(value: Any) -> Union[float, None]:
    if value is None or isinstance(value, bool) or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def patient_age_days(record: PatientRecord) -> float:
    """Age in days: ``total_day`` when stored, else ``age`` scaled by ``dayType`` (years by default)."""
    total = _number(record.total_day)
    if total is not None and total > 0:
        return total
    age = _number(record.age)
    if age is None or age < 0:
        return 0.0
    mult = _DAY_MULTIPLIERS.get((record.day_type or "year").strip().lower(), 365)
    return age * mult


# --------- Entry points ----------
def load_record_text(text: str) -> Dict[str, Any]:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("patient record must be a JSON object")
    return data


def validate_patient_record_or_raise(data: Dict[str, Any]) -> PatientRecord:
    """Build the record model; raises ValidationError when the shape is unusable."""
    RecordEnvelope(record=data)
    return PatientRecord.model_validate(data)
