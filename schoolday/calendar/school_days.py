"""School-day calendar model.

A date is a school day when its weekday is one of the year's school weekdays
and no exclude override exists for it, or when an include override exists
for it. Overrides win in the direction they specify.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum

from schoolday.calendar.dates import add_days, as_date, iter_dates, sunday_weekday

# Matches the original planner's search horizon (roughly ten years of days)
NEXT_SCHOOL_DATE_LIMIT = 3700


class OverrideKind(StrEnum):
    EXCLUDE = "exclude"
    INCLUDE = "include"


OverrideMap = Mapping[date, OverrideKind]


def is_school_date(day: date, weekdays: Collection[int], overrides: OverrideMap) -> bool:
    """Decide whether ``day`` is a school day.

    Args:
        day: Calendar date to test
        weekdays: School weekdays, Sunday=0
        overrides: Per-date overrides keyed by date

    Returns:
        True if lessons may be scheduled on ``day``
    """
    day = as_date(day)
    override = overrides.get(day)
    if override == OverrideKind.INCLUDE:
        return True
    if override == OverrideKind.EXCLUDE:
        return False
    return sunday_weekday(day) in weekdays


def next_school_date(
    start: date,
    weekdays: Collection[int],
    overrides: OverrideMap,
    limit: int = NEXT_SCHOOL_DATE_LIMIT,
) -> date:
    """First school date on or after ``start``.

    Falls back to ``start`` itself when nothing qualifies within ``limit``
    days (e.g. an empty weekday set with no include overrides).
    """
    cursor = as_date(start)
    for _ in range(limit):
        if is_school_date(cursor, weekdays, overrides):
            return cursor
        cursor = add_days(cursor, 1)
    return as_date(start)


def school_dates_between(start: date, end: date, weekdays: Collection[int], overrides: OverrideMap) -> list[date]:
    """All school dates in the inclusive window [start, end]."""
    return [day for day in iter_dates(start, end) if is_school_date(day, weekdays, overrides)]


def build_override_map(rows: Iterable[tuple[date, str]]) -> dict[date, OverrideKind]:
    """Collapse (date, kind) rows into a lookup map; a later row for a date wins."""
    overrides: dict[date, OverrideKind] = {}
    for day, kind in rows:
        overrides[as_date(day)] = OverrideKind(kind)
    return overrides


@dataclass(frozen=True)
class SchoolCalendar:
    """Snapshot of one school year's calendar configuration."""

    start_date: date
    end_date: date
    weekdays: frozenset[int]
    overrides: Mapping[date, OverrideKind] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.start_date > self.end_date:
            raise ValueError(f"School year starts after it ends: {self.start_date} > {self.end_date}")

    def contains(self, day: date) -> bool:
        return self.start_date <= as_date(day) <= self.end_date

    def is_school_date(self, day: date) -> bool:
        return is_school_date(day, self.weekdays, self.overrides)

    def school_dates(self, start: date | None = None, end: date | None = None) -> list[date]:
        """School dates of this year, optionally narrowed to a window."""
        window_start = max(self.start_date, as_date(start)) if start else self.start_date
        window_end = min(self.end_date, as_date(end)) if end else self.end_date
        if window_start > window_end:
            return []
        return school_dates_between(window_start, window_end, self.weekdays, self.overrides)
