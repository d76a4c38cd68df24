"""School-year configuration: bounds, default weekdays and per-date overrides.

Replacing a year's default weekdays reflows already planned lessons onto the
new calendar; everything else only edits configuration.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from schoolday.calendar.dates import add_days, normalize_weekdays
from schoolday.calendar.school_days import OverrideKind, OverrideMap, SchoolCalendar, next_school_date
from schoolday.core.errors import NotFoundError
from schoolday.db.models import CurriculumAssignment, DateOverride, Lesson, SchoolDay, SchoolYear
from schoolday.scheduling.auto_scheduler import COMPLETED, year_overrides, year_weekdays

DEFAULT_WEEKDAYS = (1, 2, 3, 4, 5)


@dataclass(frozen=True)
class ReflowResult:
    """Outcome of moving planned lessons onto a changed calendar.

    Attributes:
        moved_dates: Number of distinct planned dates that changed
        updated_lessons: Number of lesson rows whose planned date changed
    """

    moved_dates: int
    updated_lessons: int


def _validate_bounds(label: str, start_date: date, end_date: date) -> str:
    if not label or not label.strip():
        raise ValueError("Label is required")
    if end_date <= start_date:
        raise ValueError("End date must be after start date")
    return label.strip()


def _validate_weekdays(weekdays: Sequence[int]) -> list[int]:
    for value in weekdays:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 6:
            raise ValueError(f"Weekday must be an integer between 0 and 6, got {value!r}")
    unique = normalize_weekdays(weekdays)
    if not unique:
        raise ValueError("Select at least one school day")
    return unique


def get_school_year(session: Session, school_year_id: str) -> SchoolYear:
    year = session.get(SchoolYear, school_year_id)
    if year is None:
        raise NotFoundError(f"School year not found: {school_year_id}")
    return year


def create_school_year(
    session: Session,
    label: str,
    start_date: date,
    end_date: date,
    weekdays: Sequence[int] | None = None,
) -> SchoolYear:
    """Create a school year with default weekdays (Monday-Friday unless given).

    Raises:
        ValueError: If the label is blank, end_date is not after start_date,
            or a weekday is out of range
    """
    label = _validate_bounds(label, start_date, end_date)
    days = _validate_weekdays(weekdays if weekdays is not None else DEFAULT_WEEKDAYS)

    year = SchoolYear(label=label, start_date=start_date, end_date=end_date)
    session.add(year)
    session.flush()
    session.add_all(SchoolDay(school_year_id=year.id, weekday=weekday) for weekday in days)
    session.commit()

    logger.info(f"[CALENDAR] Created school year {year.id} '{label}' {start_date}..{end_date} weekdays={days}")
    return year


def update_school_year(session: Session, school_year_id: str, label: str, start_date: date, end_date: date) -> SchoolYear:
    """Replace a school year's label and bounds. Planned lessons are not moved."""
    label = _validate_bounds(label, start_date, end_date)
    year = get_school_year(session, school_year_id)
    year.label = label
    year.start_date = start_date
    year.end_date = end_date
    session.commit()
    logger.info(f"[CALENDAR] Updated school year {school_year_id} to {start_date}..{end_date}")
    return year


def delete_school_year(session: Session, school_year_id: str) -> None:
    """Delete a school year together with its weekdays, overrides and assignments."""
    year = get_school_year(session, school_year_id)
    for model, column in (
        (SchoolDay, SchoolDay.school_year_id),
        (DateOverride, DateOverride.school_year_id),
        (CurriculumAssignment, CurriculumAssignment.school_year_id),
    ):
        session.execute(delete(model).where(column == school_year_id))
    session.delete(year)
    session.commit()
    logger.info(f"[CALENDAR] Deleted school year {school_year_id}")


def load_school_calendar(session: Session, school_year_id: str) -> SchoolCalendar:
    """Snapshot of a year's bounds, default weekdays and overrides."""
    year = get_school_year(session, school_year_id)
    return SchoolCalendar(
        start_date=year.start_date,
        end_date=year.end_date,
        weekdays=frozenset(year_weekdays(session, school_year_id)),
        overrides=year_overrides(session, school_year_id),
    )


def list_school_dates(
    session: Session, school_year_id: str, start: date | None = None, end: date | None = None
) -> list[date]:
    return load_school_calendar(session, school_year_id).school_dates(start, end)


def remap_planned_dates(planned: Sequence[date], weekdays: Sequence[int], overrides: OverrideMap) -> dict[date, date]:
    """Map each distinct planned date onto the changed calendar.

    Dates keep their relative order and never collapse onto one another: each
    date moves to the first school date on or after both itself and the day
    after the previous mapped date.
    """
    ordered = sorted(set(planned))
    remap: dict[date, date] = {}
    if not ordered:
        return remap

    weekday_set = frozenset(weekdays)
    cursor = ordered[0]
    for original in ordered:
        if original > cursor:
            cursor = original
        target = next_school_date(cursor, weekday_set, overrides)
        remap[original] = target
        cursor = add_days(target, 1)
    return remap


def reflow_planned_lessons(session: Session, school_year_id: str) -> ReflowResult:
    """Move planned, non-completed lessons of a year's curricula onto its current calendar.

    Does not commit; callers own the transaction.
    """
    weekdays = year_weekdays(session, school_year_id)
    overrides = year_overrides(session, school_year_id)

    curricula = select(CurriculumAssignment.curriculum_id).where(CurriculumAssignment.school_year_id == school_year_id)
    lessons = session.scalars(
        select(Lesson)
        .where(Lesson.curriculum_id.in_(curricula))
        .where(Lesson.planned_date.is_not(None))
        .where(Lesson.status != COMPLETED)
        .order_by(Lesson.planned_date, Lesson.order_index, Lesson.id)
        .with_for_update()
    ).all()
    if not lessons:
        return ReflowResult(moved_dates=0, updated_lessons=0)

    remap = remap_planned_dates([lesson.planned_date for lesson in lessons], weekdays, overrides)
    updated = 0
    for lesson in lessons:
        target = remap[lesson.planned_date]
        if target != lesson.planned_date:
            lesson.planned_date = target
            updated += 1

    moved = sum(1 for original, target in remap.items() if original != target)
    logger.info(f"[CALENDAR] Reflowed school year {school_year_id}: {moved} dates moved, {updated} lessons updated")
    return ReflowResult(moved_dates=moved, updated_lessons=updated)


def set_school_days(session: Session, school_year_id: str, weekdays: Sequence[int]) -> ReflowResult:
    """Replace a year's default weekdays and reflow planned lessons in one transaction.

    Raises:
        ValueError: If the set is empty or holds a value outside 0-6
        NotFoundError: If the school year does not exist
    """
    days = _validate_weekdays(weekdays)
    get_school_year(session, school_year_id)

    session.execute(delete(SchoolDay).where(SchoolDay.school_year_id == school_year_id))
    session.add_all(SchoolDay(school_year_id=school_year_id, weekday=weekday) for weekday in days)
    session.flush()

    result = reflow_planned_lessons(session, school_year_id)
    session.commit()
    logger.info(f"[CALENDAR] School year {school_year_id} weekdays set to {days}")
    return result


def add_date_override(
    session: Session,
    school_year_id: str,
    override_date: date,
    kind: OverrideKind | str,
    reason: str | None = None,
) -> DateOverride:
    """Create or replace the override for one date of a school year."""
    try:
        kind = OverrideKind(kind)
    except ValueError as e:
        raise ValueError(f"Override kind must be 'exclude' or 'include', got {kind!r}") from e
    get_school_year(session, school_year_id)

    override = session.scalars(
        select(DateOverride)
        .where(DateOverride.school_year_id == school_year_id)
        .where(DateOverride.override_date == override_date)
    ).first()
    if override is None:
        override = DateOverride(school_year_id=school_year_id, override_date=override_date)
        session.add(override)
    override.kind = str(kind)
    override.reason = reason or None
    session.commit()

    logger.info(f"[CALENDAR] Override {kind} on {override_date} for school year {school_year_id}")
    return override


def remove_date_override(session: Session, override_id: str) -> None:
    override = session.get(DateOverride, override_id)
    if override is None:
        raise NotFoundError(f"Date override not found: {override_id}")
    session.delete(override)
    session.commit()
    logger.info(f"[CALENDAR] Removed override {override_id}")
