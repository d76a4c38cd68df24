"""Recurrence rules for external events.

Two directions:
- infer_recurrence(): turn a pasted list of real-world dates into the smallest
  rule that explains them, plus the dates the rule predicts but the list skips
  (holidays, cancelled weeks). Those become exception dates on import.
- expand_occurrences(): turn a rule plus exception dates back into concrete
  dates inside a query window.

Both share iter_rule_dates() so a rule inferred from a list expands back to
exactly that list.
"""

from __future__ import annotations

import re
from collections.abc import Collection, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum

from dateutil import parser as date_parser
from loguru import logger
from pydantic import BaseModel, Field, model_validator

from schoolday.calendar.dates import add_days, add_months, as_date, format_date_key, sunday_weekday
from schoolday.core.errors import NoValidDatesError

ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


class RecurrenceType(StrEnum):
    ONCE = "once"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


STEP_DAYS: dict[RecurrenceType, int] = {
    RecurrenceType.WEEKLY: 7,
    RecurrenceType.BIWEEKLY: 14,
}


class RecurrenceRule(BaseModel):
    """When a recurring event happens.

    Attributes:
        type: once | weekly | biweekly | monthly
        anchor_weekday: Weekday (Sunday=0) for once/weekly/biweekly; None for monthly,
            which anchors on the day-of-month of start_date
        start_date: First occurrence
        end_date: Last possible occurrence, None for open-ended rules
    """

    type: RecurrenceType
    anchor_weekday: int | None = Field(default=None, ge=0, le=6)
    start_date: date
    end_date: date | None = None

    @model_validator(mode="after")
    def check_anchor(self) -> RecurrenceRule:
        if self.type == RecurrenceType.MONTHLY:
            if self.anchor_weekday is not None:
                raise ValueError("Monthly rules anchor on day-of-month and take no weekday")
        elif self.anchor_weekday is None:
            raise ValueError(f"A {self.type} rule needs an anchor weekday")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("Recurrence end date is before its start date")
        return self


class ImportedRecurrence(BaseModel):
    """Result of inferring a rule from pasted dates."""

    rule: RecurrenceRule
    dates: list[date] = Field(description="Parsed input dates, de-duplicated and ascending")
    implied_exceptions: list[date] = Field(default_factory=list)


@dataclass(frozen=True)
class Occurrence:
    """One concrete date of an external event, computed on demand."""

    event_id: str
    date: date
    title: str
    description: str | None = None
    color: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    all_day: bool = False
    learner_ids: tuple[str, ...] = field(default_factory=tuple)


def parse_flexible_date(line: str) -> date | None:
    """Parse one pasted line: ``YYYY-MM-DD``, ``M/D/YYYY``, or anything dateutil understands.

    Returns:
        The date, or None when the line is blank or unparseable
    """
    trimmed = line.strip()
    if not trimmed:
        return None

    try:
        iso = ISO_DATE.match(trimmed)
        if iso:
            year, month, day = (int(part) for part in iso.groups())
            return date(year, month, day)

        us = US_DATE.match(trimmed)
        if us:
            month, day, year = (int(part) for part in us.groups())
            return date(year, month, day)

        return date_parser.parse(trimmed).date()
    except (ValueError, OverflowError):
        return None


def first_occurrence(rule: RecurrenceRule) -> date:
    """First date a rule can produce.

    Weekly and biweekly rules start on the first anchor weekday on or after
    start_date; once and monthly rules start on start_date itself.
    """
    if rule.type in STEP_DAYS:
        return add_days(rule.start_date, (rule.anchor_weekday - sunday_weekday(rule.start_date)) % 7)
    return rule.start_date


def iter_rule_dates(rule: RecurrenceRule, until: date) -> Iterator[date]:
    """Yield the dates a rule steps through, from its first occurrence up to ``until`` inclusive.

    ``until`` is capped by the rule's own end date. Steps are computed from the
    first occurrence (first + k * step, start + k months) so monthly rules
    never drift after a short month.
    """
    hard_end = min(until, rule.end_date) if rule.end_date else until
    try:
        start = first_occurrence(rule)
    except OverflowError:
        return

    if rule.type == RecurrenceType.ONCE:
        if start <= hard_end:
            yield start
        return

    k = 0
    while True:
        try:
            cursor = add_months(start, k) if rule.type == RecurrenceType.MONTHLY else add_days(start, k * STEP_DAYS[rule.type])
        except (OverflowError, ValueError):
            return
        if cursor > hard_end:
            return
        yield cursor
        k += 1


def expand_occurrences(
    rule: RecurrenceRule,
    exceptions: Collection[date],
    range_start: date,
    range_end: date,
) -> list[date]:
    """Concrete dates of ``rule`` inside [range_start, range_end], minus exceptions.

    Open-ended rules run to range_end. The result is ascending and the
    function has no side effects, so repeated calls return equal lists.
    """
    range_start = as_date(range_start)
    range_end = as_date(range_end)
    if range_start > range_end:
        return []

    excluded = {as_date(day) for day in exceptions}
    return [
        day
        for day in iter_rule_dates(rule, range_end)
        if range_start <= day and day not in excluded
    ]


def _classify(dates: list[date]) -> RecurrenceType:
    weekdays = {sunday_weekday(day) for day in dates}
    gaps = [(later - earlier).days for earlier, later in zip(dates, dates[1:])]

    if len(weekdays) == 1 and all(gap % 14 == 0 for gap in gaps):
        return RecurrenceType.BIWEEKLY
    if len(weekdays) == 1 and all(gap % 7 == 0 for gap in gaps):
        return RecurrenceType.WEEKLY
    if all(day.day == dates[0].day for day in dates):
        return RecurrenceType.MONTHLY
    # Irregular lists are approximated, not rejected
    return RecurrenceType.WEEKLY


def infer_recurrence(lines: Iterable[str]) -> ImportedRecurrence:
    """Infer the simplest recurrence rule behind a list of pasted dates.

    Args:
        lines: One date per entry; unparseable entries are skipped

    Returns:
        ImportedRecurrence with the rule, the parsed dates and the implied exceptions

    Raises:
        NoValidDatesError: If no entry parses as a date
    """
    parsed = {day for day in (parse_flexible_date(line) for line in lines) if day is not None}
    if not parsed:
        raise NoValidDatesError()

    dates = sorted(parsed)
    first, last = dates[0], dates[-1]

    if len(dates) == 1:
        rule = RecurrenceRule(type=RecurrenceType.ONCE, anchor_weekday=sunday_weekday(first), start_date=first)
        return ImportedRecurrence(rule=rule, dates=dates, implied_exceptions=[])

    recurrence_type = _classify(dates)
    rule = RecurrenceRule(
        type=recurrence_type,
        anchor_weekday=None if recurrence_type == RecurrenceType.MONTHLY else sunday_weekday(first),
        start_date=first,
        end_date=last,
    )

    actual = set(dates)
    implied = [day for day in iter_rule_dates(rule, last) if day not in actual]

    logger.debug(
        f"[EVENTS] Inferred {recurrence_type} rule from {len(dates)} dates "
        f"({format_date_key(first)}..{format_date_key(last)}), {len(implied)} implied exceptions"
    )
    return ImportedRecurrence(rule=rule, dates=dates, implied_exceptions=implied)


def preview_imported_dates(raw_text: str) -> ImportedRecurrence:
    """Split pasted text on line breaks and infer its recurrence."""
    return infer_recurrence(raw_text.splitlines())
