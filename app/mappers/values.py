"""
app/mappers/values.py

Scalar coercion for schema-less row cells.

Cells arrive as whatever the upload decoder produced (numbers, strings,
booleans, ``None``, occasionally native dates). Both helpers return ``None``
rather than raising when a cell cannot be interpreted.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

MIN_DATE_YEAR = 1990
MAX_DATE_YEAR = 2100

_SPREADSHEET_EPOCH = date(1899, 12, 30)
_SERIAL_MIN = 32874  # 1990-01-01
_SERIAL_MAX = 73051  # 2100-01-01
_EPOCH_MS_FLOOR = 1e12

_NON_NUMERIC = re.compile(r"[^0-9.\-eE+]")
_NUMERIC_TEXT = re.compile(r"^[+-]?\d+(\.\d+)?$")
_ISO_DATE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?:$|[ T])")
_COMPACT_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_SLASH_DATE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})(?:$|[ T])")

_TEXT_DATE_FORMATS = (
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d-%b-%Y",
    "%d-%b-%y",
)


def parse_number(value: Any) -> float | None:
    """
    Coerce a cell to a finite float.

    Thousands separators, currency symbols and unit suffixes are stripped;
    accounting-style ``(123.45)`` is read as negative. Booleans are not numbers.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None

    text = str(value).strip()
    if not text:
        return None

    negative = text.startswith("(") and text.endswith(")")
    cleaned = _NON_NUMERIC.sub("", text.replace(",", ""))
    if not cleaned or cleaned in {"-", ".", "+", "-.", "e", "E"}:
        return None
    if not any(ch.isdigit() for ch in cleaned):
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return -abs(number) if negative else number


def _within_bounds(candidate: date | None) -> date | None:
    if candidate is None:
        return None
    if MIN_DATE_YEAR <= candidate.year <= MAX_DATE_YEAR:
        return candidate
    return None


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _date_from_number(number: float) -> date | None:
    """
    Interpret a bare number as a compact YYYYMMDD value, epoch milliseconds,
    epoch seconds or a spreadsheet serial day, in that order.
    """

    if not math.isfinite(number):
        return None

    if number.is_integer():
        match = _COMPACT_DATE.match(str(int(number)))
        if match:
            compact = _safe_date(*(int(part) for part in match.groups()))
            if _within_bounds(compact) is not None:
                return compact

    try:
        if abs(number) >= _EPOCH_MS_FLOOR:
            stamp = datetime.fromtimestamp(number / 1000.0, tz=timezone.utc)
            return _within_bounds(stamp.date())
        if _SERIAL_MIN <= number <= _SERIAL_MAX:
            return _within_bounds(_SPREADSHEET_EPOCH + timedelta(days=int(number)))
        stamp = datetime.fromtimestamp(number, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return _within_bounds(stamp.date())


def parse_date(value: Any) -> date | None:
    """
    Coerce a cell to a calendar date.

    Priority: native date values, ISO ``YYYY-MM-DD``/``YYYY/MM/DD`` and
    compact ``YYYYMMDD``, slash dates tried month-first then day-first,
    free-text month names, and finally numeric epoch or serial heuristics.
    Anything outside years 1990-2100 is rejected.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _within_bounds(value.date())
    if isinstance(value, date):
        return _within_bounds(value)
    if isinstance(value, (int, float)):
        return _date_from_number(float(value))

    text = str(value).strip()
    if not text:
        return None

    match = _ISO_DATE.match(text)
    if match:
        return _within_bounds(_safe_date(*(int(part) for part in match.groups())))

    match = _COMPACT_DATE.match(text)
    if match:
        compact = _within_bounds(_safe_date(*(int(part) for part in match.groups())))
        if compact is not None:
            return compact

    match = _SLASH_DATE.match(text)
    if match:
        first, second, year = (int(part) for part in match.groups())
        month_first = _safe_date(year, first, second)
        if month_first is not None:
            return _within_bounds(month_first)
        return _within_bounds(_safe_date(year, second, first))

    try:
        return _within_bounds(datetime.fromisoformat(text).date())
    except ValueError:
        pass

    for fmt in _TEXT_DATE_FORMATS:
        try:
            return _within_bounds(datetime.strptime(text, fmt).date())
        except ValueError:
            continue

    if _NUMERIC_TEXT.match(text):
        return _date_from_number(float(text))
    return None


def to_text(value: Any) -> str:
    """Trimmed string form of a cell; ``None`` becomes an empty string."""
    if value is None:
        return ""
    return str(value).strip()
