"""Calendar-date helpers shared by the scheduler, recurrence engine and export.

Everything here works on ``datetime.date``. Time of day and time zones never
enter the calculation, so stepping across a daylight-saving change cannot
drift a date. Weekdays use the Sunday=0 convention throughout the project.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

DATE_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Sunday=0 .. Saturday=6
WEEKDAY_CODES = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")
WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def as_date(value: date | datetime) -> date:
    """Strip the time component of a datetime; dates pass through."""
    if isinstance(value, datetime):
        return value.date()
    return value


def add_days(day: date, days: int) -> date:
    return as_date(day) + timedelta(days=days)


def add_months(day: date, months: int) -> date:
    """Step by calendar months, clamping to the last day of shorter months.

    Jan 31 + 1 month is Feb 28 (or 29), never Mar 3.
    """
    return as_date(day) + relativedelta(months=months)


def format_date_key(day: date) -> str:
    """Format a date as ``YYYY-MM-DD`` (zero-padded year, valid for years 1-9999)."""
    day = as_date(day)
    return f"{day.year:04d}-{day.month:02d}-{day.day:02d}"


def parse_date_key(key: str) -> date:
    """Parse a strict ``YYYY-MM-DD`` key.

    Raises:
        ValueError: If the key is not in that exact shape or names no real date
    """
    if not isinstance(key, str) or not DATE_KEY_PATTERN.match(key):
        raise ValueError(f"Invalid date key: {key!r} (expected YYYY-MM-DD)")
    year, month, day = (int(part) for part in key.split("-"))
    return date(year, month, day)


def to_compact_date(day: date) -> str:
    """``YYYYMMDD`` form used for all-day calendar values."""
    return format_date_key(day).replace("-", "")


def sunday_weekday(day: date) -> int:
    """Weekday number with Sunday=0 (Python's own weekday() has Monday=0)."""
    return as_date(day).isoweekday() % 7


def normalize_weekdays(weekdays: Iterable[object]) -> list[int]:
    """Drop non-integers and values outside 0-6, de-duplicate, sort ascending."""
    valid = {day for day in weekdays if isinstance(day, int) and not isinstance(day, bool) and 0 <= day <= 6}
    return sorted(valid)


def weekdays_changed(draft: Iterable[object], current: Iterable[object]) -> bool:
    """True when two weekday lists differ after normalization."""
    return normalize_weekdays(draft) != normalize_weekdays(current)


def iter_dates(start: date, end: date) -> Iterable[date]:
    """Yield every date from start to end inclusive.

    Offsets are computed from ``start`` so iterating up to date.max never
    overflows.
    """
    start = as_date(start)
    end = as_date(end)
    for offset in range((end - start).days + 1):
        yield start + timedelta(days=offset)
