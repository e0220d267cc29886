from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _firebase_list(v: Any) -> Any:
    """Realtime Database exports arrays as {"0": ..., "1": ...} once an index goes missing."""
    if isinstance(v, dict) and all(str(k).isdigit() for k in v):
        return [v[k] for k in sorted(v, key=lambda k: int(k))]
    if v is None:
        return []
    return v


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# --------- Reference ranges ----------
class AgeRangeItem(_Record):
    range_key: str = Field(alias="rangeKey")
    range_value: str = Field(default="", alias="rangeValue")

    @field_validator("range_key", "range_value", mode="before")
    @classmethod
    def _as_text(cls, v: Any):
        return "" if v is None else str(v)


class GenderAgeTable(_Record):
    male: List[AgeRangeItem] = []
    female: List[AgeRangeItem] = []

    @field_validator("male", "female", mode="before")
    @classmethod
    def _listify(cls, v: Any):
        return _firebase_list(v)


# Range = Fixed(str) | ByGenderAge(GenderAgeTable)
RangeDef = Union[str, GenderAgeTable, None]


# --------- Patient record ----------
class Parameter(_Record):
    name: str
    value: Union[str, int, float, None] = ""
    unit: str = ""
    range: RangeDef = None
    subparameters: List["Parameter"] = []
    visibility: Optional[str] = None

    @field_validator("unit", mode="before")
    @classmethod
    def _unit_text(cls, v: Any):
        return "" if v is None else str(v)

    @field_validator("range", mode="before")
    @classmethod
    def _lenient_range(cls, v: Any):
        # a malformed range resolves to nothing instead of rejecting the record
        if isinstance(v, str) or v is None:
            return v
        if isinstance(v, dict):
            try:
                return GenderAgeTable.model_validate(v)
            except ValueError:
                return None
        return None

    @field_validator("subparameters", mode="before")
    @classmethod
    def _listify(cls, v: Any):
        return _firebase_list(v)

    @property
    def hidden(self) -> bool:
        return (self.visibility or "").lower() == "hidden"


Parameter.model_rebuild()


class Subheading(_Record):
    title: str = ""
    parameter_names: List[str] = Field(default=[], alias="parameterNames")

    @field_validator("parameter_names", mode="before")
    @classmethod
    def _listify(cls, v: Any):
        return _firebase_list(v)


class BloodTest(_Record):
    parameters: List[Parameter] = []
    subheadings: List[Subheading] = []
    type: Optional[str] = None  # "in-house" | "outsource"
    reported_on: Optional[str] = Field(default=None, alias="reportedOn")

    @field_validator("parameters", "subheadings", mode="before")
    @classmethod
    def _listify(cls, v: Any):
        return _firebase_list(v)

    @property
    def outsourced(self) -> bool:
        return (self.type or "").lower() == "outsource"


class PatientRecord(_Record):
    name: str = ""
    age: Union[int, float, str, None] = None
    gender: str = ""
    patient_id: str = Field(default="", alias="patientId")
    contact: str = ""
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    sample_collected_at: Optional[str] = Field(default=None, alias="sampleCollectedAt")
    doctor_name: Optional[str] = Field(default=None, alias="doctorName")
    hospital_name: Optional[str] = Field(default=None, alias="hospitalName")
    total_day: Union[int, float, str, None] = None
    day_type: Optional[str] = Field(default=None, alias="dayType")  # year | month | day
    bloodtest: Dict[str, BloodTest] = {}

    @field_validator("patient_id", "contact", mode="before")
    @classmethod
    def _as_text(cls, v: Any):
        return "" if v is None else str(v)

    @field_validator("bloodtest", mode="before")
    @classmethod
    def _no_tests(cls, v: Any):
        return {} if v is None else v


# --------- Settings ----------
class AppCfg(BaseModel):
    name: str = "labreport"
    version: str = "0.1.0"


class PathsCfg(BaseModel):
    logs_root: str = "logs"
    inbox: str = "data/inbox"
    archive: str = "data/archive"
    error: str = "data/error"


class ClassifierCfg(BaseModel):
    severe_ratio: float = 0.3
    moderate_ratio: float = 0.1


class ReportCfg(BaseModel):
    skip_outsourced: bool = True
    skip_hidden: bool = True


class WatchCfg(BaseModel):
    filename_glob: str = "*.json"


class Settings(BaseModel):
    app: AppCfg = AppCfg()
    paths: PathsCfg = PathsCfg()
    classifier: ClassifierCfg = ClassifierCfg()
    report: ReportCfg = ReportCfg()
    watch: WatchCfg = WatchCfg()
