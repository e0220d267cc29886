import math
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from labreport.commons.types import AgeRangeItem, GenderAgeTable

_MULTIPLIERS = {"d": 1, "m": 30, "y": 365}
_NUMBER = re.compile(r"^\d+(?:\.\d+)?$")


def _to_float(token: str) -> Optional[float]:
    token = (token or "").strip()
    return float(token) if _NUMBER.match(token) else None


def parse_range_key(key: str) -> Tuple[float, float]:
    """Convert an age-bucket key ('0-30d', '1-12m', '18y', '5-10') to (lower, upper) days.

    Bare numbers are days. A missing upper bound means the bucket is open above.
    """
    key = (key or "").strip().lower()
    mul = 1
    if key and key[-1] in _MULTIPLIERS:
        mul = _MULTIPLIERS[key[-1]]
        key = key[:-1]

    lo, _, hi = key.partition("-")
    lower = _to_float(lo)
    upper = _to_float(hi)
    return (
        lower * mul if lower is not None else 0.0,
        upper * mul if upper is not None else math.inf,
    )


def resolve_bucket(buckets: Sequence[AgeRangeItem], age_days: float) -> str:
    """Pick the range string for ``age_days``.

    The first bucket containing the age wins. When none does the last bucket is
    used, and an empty sequence resolves to ''.
    """
    if not buckets:
        return ""
    for item in buckets:
        lower, upper = parse_range_key(item.range_key)
        if lower <= age_days <= upper:
            return item.range_value
    return buckets[-1].range_value


def select_gender_buckets(table: GenderAgeTable, gender: Optional[str]) -> List[AgeRangeItem]:
    # requested gender -> female -> male
    key = (gender or "").strip().lower()
    by_gender: Dict[str, List[AgeRangeItem]] = {"male": table.male, "female": table.female}
    for candidate in (key, "female", "male"):
        buckets = by_gender.get(candidate)
        if buckets:
            return buckets
    return []


def resolve_range(
    range_def: Union[str, GenderAgeTable, Dict[str, Any], None],
    age_days: float,
    gender: Optional[str],
) -> str:
    """Resolve a parameter's range definition to the display string for one patient.

    Malformed definitions degrade to '' so that nothing downstream gets flagged.
    """
    if range_def is None:
        return ""
    if isinstance(range_def, str):
        text = range_def
    else:
        if isinstance(range_def, dict):
            try:
                range_def = GenderAgeTable.model_validate(range_def)
            except ValueError:
                return ""
        if not isinstance(range_def, GenderAgeTable):
            return ""
        text = resolve_bucket(select_gender_buckets(range_def, gender), age_days)
    # catalog entries store line breaks as a literal "/n"
    return text.replace("/n", "\n")
