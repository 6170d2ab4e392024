"""
Exposure Compliance Engine - Input Normalization.

Lab and field data arrive partially populated: dates as Date
objects, epoch milliseconds or strings; numbers as floats,
Decimals or text. These helpers coerce what they can and return
None for everything else. They never raise.
"""

import math
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from .types import NO_NAME_SENTINELS


def coerce_float(value: Any) -> Optional[float]:
    """
    Coerce a numeric-looking value to a finite float.

    Returns None for None, booleans, blank or non-numeric strings,
    NaN and infinities.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        try:
            result = float(value)
        except (InvalidOperation, OverflowError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            result = float(text)
        except ValueError:
            return None
    else:
        return None

    if math.isnan(result) or math.isinf(result):
        return None
    return result


def normalize_date(value: Any) -> Optional[datetime]:
    """
    Normalize a sample date to a naive UTC datetime.

    Accepts:
        - datetime (aware values are converted to UTC)
        - date (midnight of that day)
        - int/float epoch milliseconds
        - ISO-8601 strings, with or without a trailing "Z"

    Anything else (None, "", unparseable text, out-of-range numbers)
    yields None.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    if isinstance(value, date):
        return datetime.combine(value, time.min)

    if isinstance(value, (int, float, Decimal)):
        millis = coerce_float(value)
        if millis is None:
            return None
        try:
            return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return normalize_date(parsed)

    return None


def normalize_end_date(value: Any) -> Optional[datetime]:
    """
    Normalize an inclusive upper date bound.

    A bare calendar day (a date, or a "YYYY-MM-DD" string) covers the
    whole day, so records taken later that day stay inside the bound.
    Other forms behave like normalize_date.
    """
    parsed = normalize_date(value)
    if parsed is None:
        return None

    day_only = isinstance(value, date) and not isinstance(value, datetime)
    if isinstance(value, str):
        day_only = len(value.strip()) == 10
    if day_only:
        return datetime.combine(parsed.date(), time.max)
    return parsed


def normalize_name(value: Optional[str]) -> Optional[str]:
    """
    Normalize a free-text person name for matching.

    Trims, lower-cases and collapses inner whitespace. Blank names
    and "n/a" placeholders yield None.
    """
    if value is None:
        return None
    normalized = " ".join(str(value).split()).lower()
    if not normalized or normalized in NO_NAME_SENTINELS:
        return None
    return normalized


def normalize_person_id(value: Optional[str]) -> Optional[str]:
    """Trimmed person reference, or None when blank."""
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None
