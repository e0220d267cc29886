import math
import re
from typing import Optional

from .models import NumericRange

# "up to N" is read as [0, N]
UP_TO_LOWER_BOUND = 0.0

_NUM = r"([\d.]+)"

_UP_TO = re.compile(rf"^\s*up\s*(?:to\s*)?{_NUM}\s*$", re.IGNORECASE)
_GREATER = re.compile(rf"^\s*>\s*=?\s*{_NUM}\s*$")
_LESS = re.compile(rf"^\s*<\s*=?\s*{_NUM}\s*$")
_INTERVAL = re.compile(rf"^\s*{_NUM}\s*(?:-|–|to)\s*{_NUM}\s*$", re.IGNORECASE)


def _num(token: str) -> Optional[float]:
    # rejects "1.2.3" and "." which the token pattern lets through
    try:
        value = float(token)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_numeric(text: Optional[str]) -> Optional[NumericRange]:
    """Parse a reference range string into a numeric interval.

    Recognised, in priority order: 'up to N', '> N' / '>= N', '< N' / '<= N',
    'A - B' / 'A to B'. Anything else is descriptive text and returns None.
    """
    if not text:
        return None

    m = _UP_TO.match(text)
    if m:
        upper = _num(m.group(1))
        return NumericRange(UP_TO_LOWER_BOUND, upper) if upper is not None else None

    m = _GREATER.match(text)
    if m:
        lower = _num(m.group(1))
        return NumericRange(lower, math.inf) if lower is not None else None

    m = _LESS.match(text)
    if m:
        upper = _num(m.group(1))
        return NumericRange(0.0, upper) if upper is not None else None

    m = _INTERVAL.match(text)
    if m:
        lower, upper = _num(m.group(1)), _num(m.group(2))
        if lower is None or upper is None:
            return None
        return NumericRange(lower, upper)

    return None
