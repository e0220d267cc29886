from typing import Any, Dict, List

import yaml

from labreport.commons.row_composer import RowComposer
from labreport.commons.types import PatientRecord, Settings
from labreport.ranges.age_buckets import resolve_range
from labreport.ranges.classifier import classify
from labreport.ranges.models import Deviation, LabTestReport
from labreport.ranges.numeric import parse_numeric
from labreport.validation.validators import validate_patient_record_or_raise


class ReportEngine:
    """Engine facade that loads config and exposes compose/summary methods.

    Accepts a path to the YAML settings, an already loaded dict, or nothing
    (defaults).
    """

    def __init__(self, config_path_or_obj: Any = None):
        if isinstance(config_path_or_obj, str):
            with open(config_path_or_obj, "r", encoding="utf-8") as f:
                self.cfg = yaml.safe_load(f) or {}
        elif isinstance(config_path_or_obj, dict):
            self.cfg = config_path_or_obj
        else:
            self.cfg = {}

        self.settings = Settings.model_validate(self.cfg)
        self.composer = RowComposer(
            severe_ratio=self.settings.classifier.severe_ratio,
            moderate_ratio=self.settings.classifier.moderate_ratio,
            skip_hidden=self.settings.report.skip_hidden,
            skip_outsourced=self.settings.report.skip_outsourced,
        )

    def load(self, data: Dict) -> PatientRecord:
        return validate_patient_record_or_raise(data)

    def compose(self, record: PatientRecord) -> List[LabTestReport]:
        return self.composer.compose_record(record)

    def compose_payload(self, data: Dict) -> Dict:
        record = self.load(data)
        return self.composer.to_payload(record, self.compose(record))

    def out_of_range_payload(self, data: Dict) -> Dict:
        record = self.load(data)
        return self.composer.summary_payload(self.composer.out_of_range(record))

    def classify_text(self, value: Any, range_def: Any, age_days: float = 0, gender: str = "") -> Deviation:
        """One-off classification of a value against a range string or gender/age table."""
        range_display = resolve_range(range_def, age_days, gender)
        return classify(
            value,
            parse_numeric(range_display),
            severe_ratio=self.settings.classifier.severe_ratio,
            moderate_ratio=self.settings.classifier.moderate_ratio,
        )
