import math
import re
from typing import Any, Optional

from .models import Deviation, NumericRange

SEVERE_RATIO = 0.3
MODERATE_RATIO = 0.1

_LEADING_NUMBER = re.compile(r"^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)")


def parse_value(value: Any) -> Optional[float]:
    """Read a result value as a float; qualitative and empty results give None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    # leading number only, so "12.4 (repeated)" still reads as 12.4
    m = _LEADING_NUMBER.match(str(value))
    return float(m.group(0)) if m else None


def _severity(bound: float, distance: float, severe: float, moderate: float) -> str:
    if bound == 0:
        # relative deviation is undefined against a zero bound
        return "severe"
    ratio = distance / abs(bound)
    if ratio > severe:
        return "severe"
    if ratio > moderate:
        return "moderate"
    return "mild"


def classify(
    value: Any,
    numeric_range: Optional[NumericRange],
    severe_ratio: float = SEVERE_RATIO,
    moderate_ratio: float = MODERATE_RATIO,
) -> Deviation:
    """Classify ``value`` against ``numeric_range`` as normal/low/high with a severity tier.

    Severity is the distance past the breached bound relative to that bound:
    above ``severe_ratio`` is severe, above ``moderate_ratio`` moderate, else mild.
    Unparseable values and non-numeric ranges are always normal.
    """
    num = parse_value(value)
    if num is None or numeric_range is None:
        return Deviation()

    if num < numeric_range.lower:
        bound = numeric_range.lower
        return Deviation("low", _severity(bound, bound - num, severe_ratio, moderate_ratio))
    if num > numeric_range.upper:
        bound = numeric_range.upper
        return Deviation("high", _severity(bound, num - bound, severe_ratio, moderate_ratio))
    return Deviation()


def flag_label(value: Any, numeric_range: Optional[NumericRange]) -> str:
    """Binary print marker: 'L', 'H' or ''."""
    num = parse_value(value)
    if num is None or numeric_range is None:
        return ""
    if num < numeric_range.lower:
        return "L"
    if num > numeric_range.upper:
        return "H"
    return ""
