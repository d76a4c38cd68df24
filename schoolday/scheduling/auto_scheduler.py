"""Lesson auto-scheduler.

Assigns planned dates to a curriculum's unscheduled lessons by walking the
school calendar of the learner's assignment, one lesson per school date, in
lesson order. All dates of one run are written in a single transaction.

Domain-state failures (no assignment, no weekdays, nothing to schedule, no
dates left) are reported through ScheduleOutcome. Malformed input raises.
"""

from __future__ import annotations

import threading
import weakref
from collections.abc import Collection, Generator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum

from loguru import logger
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from schoolday.calendar.dates import as_date, iter_dates, normalize_weekdays
from schoolday.calendar.school_days import OverrideMap, build_override_map, is_school_date
from schoolday.core.errors import NotFoundError
from schoolday.db.models import (
    CurriculumAssignment,
    CurriculumAssignmentDay,
    DateOverride,
    Learner,
    Lesson,
    SchoolDay,
    SchoolYear,
)

COMPLETED = "completed"
MAX_WEEKDAYS = 7


class ScheduleErrorCode(StrEnum):
    ASSIGNMENT_NOT_FOUND = "assignment_not_found"
    NO_WEEKDAYS_CONFIGURED = "no_weekdays_configured"
    NO_UNSCHEDULED_LESSONS = "no_unscheduled_lessons"
    NO_AVAILABLE_DATES = "no_available_dates"

    @property
    def message(self) -> str:
        return ERROR_MESSAGES[self]


ERROR_MESSAGES: dict[ScheduleErrorCode, str] = {
    ScheduleErrorCode.ASSIGNMENT_NOT_FOUND: "Assignment not found",
    ScheduleErrorCode.NO_WEEKDAYS_CONFIGURED: "No schedule days configured",
    ScheduleErrorCode.NO_UNSCHEDULED_LESSONS: "No unscheduled lessons",
    ScheduleErrorCode.NO_AVAILABLE_DATES: "No available dates in this school year",
}


@dataclass(frozen=True)
class ScheduleOutcome:
    """Result of an auto-schedule run.

    Attributes:
        ok: True when at least one lesson received a date
        scheduled_count: Lessons that received a date in this run
        remaining_count: Pending lessons left without a date (school year ran out)
        error: Domain-state error code when ok is False
    """

    ok: bool
    scheduled_count: int = 0
    remaining_count: int = 0
    error: ScheduleErrorCode | None = None

    @classmethod
    def failure(cls, error: ScheduleErrorCode) -> ScheduleOutcome:
        return cls(ok=False, error=error)

    @property
    def message(self) -> str | None:
        return self.error.message if self.error else None

    def to_dict(self) -> dict[str, object]:
        if not self.ok:
            return {"ok": False, "error": str(self.error), "message": self.message}
        return {"ok": True, "scheduled_count": self.scheduled_count, "remaining_count": self.remaining_count}


@dataclass(frozen=True)
class AssignmentSchedule:
    """Schedule configuration of one learner's assignment to a curriculum."""

    assignment_id: str
    learner_id: str
    learner_name: str | None
    school_year_id: str
    configured_weekdays: list[int]
    school_weekdays: list[int]


@dataclass(frozen=True)
class ScheduleStatus:
    curriculum_id: str
    unscheduled_count: int
    assignments: list[AssignmentSchedule] = field(default_factory=list)


# Entries vanish once no run holds or waits on the lock
_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


@contextmanager
def curriculum_lock(curriculum_id: str) -> Generator[None, None, None]:
    """Serialize scheduling runs for one curriculum within this process.

    Row locks taken while reading pending lessons cover other processes on
    databases that support SELECT ... FOR UPDATE.
    """
    with _locks_guard:
        lock = _locks.get(curriculum_id)
        if lock is None:
            lock = threading.Lock()
            _locks[curriculum_id] = lock
    with lock:
        yield


def plan_lesson_dates(
    lesson_ids: Sequence[str],
    start: date,
    end: date,
    weekdays: Collection[int],
    overrides: OverrideMap,
) -> list[tuple[str, date]]:
    """Pair lessons with school dates in order.

    Walks [start, end] one day at a time and gives each school date to the
    next pending lesson. Stops when either lessons or dates run out, so the
    result may be shorter than ``lesson_ids``.

    Args:
        lesson_ids: Pending lessons in schedule order
        start: First date that may be used
        end: Last date that may be used
        weekdays: Effective school weekdays, Sunday=0
        overrides: Per-date overrides; pass an empty map for custom weekday sets

    Returns:
        (lesson_id, date) pairs with strictly increasing dates
    """
    plan: list[tuple[str, date]] = []
    if not lesson_ids or as_date(start) > as_date(end):
        return plan

    pending = iter(lesson_ids)
    next_lesson = next(pending, None)
    for day in iter_dates(start, end):
        if next_lesson is None:
            break
        if is_school_date(day, weekdays, overrides):
            plan.append((next_lesson, day))
            next_lesson = next(pending, None)
    return plan


def _require_id(value: str, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid {name}")
    return value.strip()


def _resolve_assignment(
    session: Session, curriculum_id: str, learner_id: str, today: date
) -> tuple[CurriculumAssignment, SchoolYear] | None:
    """Prefer the assignment whose school year contains today, else the latest-ending one."""
    base = (
        select(CurriculumAssignment, SchoolYear)
        .join(SchoolYear, SchoolYear.id == CurriculumAssignment.school_year_id)
        .where(CurriculumAssignment.curriculum_id == curriculum_id)
        .where(CurriculumAssignment.learner_id == learner_id)
    )
    active = session.execute(
        base.where(SchoolYear.start_date <= today)
        .where(SchoolYear.end_date >= today)
        .order_by(SchoolYear.start_date.desc())
        .limit(1)
    ).first()
    if active:
        return active[0], active[1]

    latest = session.execute(base.order_by(SchoolYear.end_date.desc()).limit(1)).first()
    if latest:
        return latest[0], latest[1]
    return None


def assignment_weekdays(session: Session, assignment_id: str) -> list[int]:
    rows = session.scalars(
        select(CurriculumAssignmentDay.weekday)
        .where(CurriculumAssignmentDay.assignment_id == assignment_id)
        .order_by(CurriculumAssignmentDay.weekday)
    ).all()
    return list(rows)


def year_weekdays(session: Session, school_year_id: str) -> list[int]:
    rows = session.scalars(
        select(SchoolDay.weekday).where(SchoolDay.school_year_id == school_year_id).order_by(SchoolDay.weekday)
    ).all()
    return list(rows)


def year_overrides(session: Session, school_year_id: str) -> OverrideMap:
    rows = session.execute(
        select(DateOverride.override_date, DateOverride.kind).where(DateOverride.school_year_id == school_year_id)
    ).all()
    return build_override_map((row[0], row[1]) for row in rows)


def effective_calendar(
    session: Session, assignment: CurriculumAssignment
) -> tuple[list[int], OverrideMap]:
    """Weekdays and overrides that govern one assignment.

    A non-empty custom weekday set replaces the year defaults and ignores the
    year's date overrides entirely.
    """
    custom = assignment_weekdays(session, assignment.id)
    if custom:
        return custom, {}
    return year_weekdays(session, assignment.school_year_id), year_overrides(session, assignment.school_year_id)


def _pending_lessons(session: Session, curriculum_id: str) -> list[Lesson]:
    stmt = (
        select(Lesson)
        .where(Lesson.curriculum_id == curriculum_id)
        .where(Lesson.planned_date.is_(None))
        .where(Lesson.status != COMPLETED)
        .order_by(Lesson.order_index, Lesson.id)
        .with_for_update()
    )
    return list(session.scalars(stmt).all())


def _auto_schedule_locked(session: Session, curriculum_id: str, learner_id: str, today: date) -> ScheduleOutcome:
    resolved = _resolve_assignment(session, curriculum_id, learner_id, today)
    if resolved is None:
        logger.info(f"[SCHEDULER] No assignment for curriculum={curriculum_id} learner={learner_id}")
        return ScheduleOutcome.failure(ScheduleErrorCode.ASSIGNMENT_NOT_FOUND)
    assignment, year = resolved

    weekdays, overrides = effective_calendar(session, assignment)
    if not weekdays:
        return ScheduleOutcome.failure(ScheduleErrorCode.NO_WEEKDAYS_CONFIGURED)

    lessons = _pending_lessons(session, curriculum_id)
    if not lessons:
        return ScheduleOutcome.failure(ScheduleErrorCode.NO_UNSCHEDULED_LESSONS)

    start = max(today, year.start_date)
    plan = plan_lesson_dates([lesson.id for lesson in lessons], start, year.end_date, weekdays, overrides)
    if not plan:
        logger.info(
            f"[SCHEDULER] No school dates left in year {year.id} from {start} for curriculum={curriculum_id}"
        )
        return ScheduleOutcome.failure(ScheduleErrorCode.NO_AVAILABLE_DATES)

    by_id = {lesson.id: lesson for lesson in lessons}
    for lesson_id, planned in plan:
        by_id[lesson_id].planned_date = planned

    remaining = len(lessons) - len(plan)
    logger.info(
        f"[SCHEDULER] Scheduled {len(plan)} lessons for curriculum={curriculum_id} "
        f"({plan[0][1]}..{plan[-1][1]}), {remaining} remaining"
    )
    return ScheduleOutcome(ok=True, scheduled_count=len(plan), remaining_count=remaining)


def _clear_locked(session: Session, curriculum_id: str) -> int:
    result = session.execute(
        update(Lesson)
        .where(Lesson.curriculum_id == curriculum_id)
        .where(Lesson.status != COMPLETED)
        .where(Lesson.planned_date.is_not(None))
        .values(planned_date=None)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


def auto_schedule(session: Session, curriculum_id: str, learner_id: str, today: date | None = None) -> ScheduleOutcome:
    """Give every unscheduled, non-completed lesson of a curriculum a school date.

    Args:
        session: Database session; committed once when dates were assigned
        curriculum_id: Curriculum whose lessons are scheduled
        learner_id: Learner whose assignment provides the calendar
        today: Scheduling never starts before this date (defaults to date.today())

    Returns:
        ScheduleOutcome with counts or a domain-state error code

    Raises:
        ValueError: If an id is empty
    """
    curriculum_id = _require_id(curriculum_id, "curriculum ID")
    learner_id = _require_id(learner_id, "learner ID")
    today = as_date(today or date.today())

    with curriculum_lock(curriculum_id):
        outcome = _auto_schedule_locked(session, curriculum_id, learner_id, today)
        if outcome.ok:
            session.commit()
    return outcome


def clear_schedule(session: Session, curriculum_id: str) -> int:
    """Remove planned dates from all non-completed lessons of a curriculum.

    Returns:
        Number of lessons whose date was cleared
    """
    curriculum_id = _require_id(curriculum_id, "curriculum ID")
    with curriculum_lock(curriculum_id):
        cleared = _clear_locked(session, curriculum_id)
        session.commit()
    logger.info(f"[SCHEDULER] Cleared {cleared} planned dates for curriculum={curriculum_id}")
    return cleared


def reschedule_all(session: Session, curriculum_id: str, learner_id: str, today: date | None = None) -> ScheduleOutcome:
    """Clear every non-completed lesson date, then auto-schedule from scratch.

    Both steps run under the curriculum lock and share one commit. The cleared
    dates stay cleared even when the scheduling step reports an error.
    """
    curriculum_id = _require_id(curriculum_id, "curriculum ID")
    learner_id = _require_id(learner_id, "learner ID")
    today = as_date(today or date.today())

    with curriculum_lock(curriculum_id):
        cleared = _clear_locked(session, curriculum_id)
        logger.debug(f"[SCHEDULER] Reschedule cleared {cleared} dates for curriculum={curriculum_id}")
        outcome = _auto_schedule_locked(session, curriculum_id, learner_id, today)
        session.commit()
    return outcome


def set_assignment_weekdays(session: Session, assignment_id: str, weekdays: Sequence[int]) -> list[int]:
    """Replace the custom weekday set of an assignment.

    An empty list removes the custom set so the year defaults apply again.

    Args:
        session: Database session
        assignment_id: Assignment to update
        weekdays: Integers 0-6 (Sunday=0), at most seven values

    Returns:
        The stored weekdays, de-duplicated and ascending

    Raises:
        ValueError: If a value is not an integer in 0-6 or more than seven are given
        NotFoundError: If the assignment does not exist
    """
    assignment_id = _require_id(assignment_id, "assignment ID")
    values = list(weekdays)
    if len(values) > MAX_WEEKDAYS:
        raise ValueError(f"At most {MAX_WEEKDAYS} weekdays may be given")
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 6:
            raise ValueError(f"Weekday must be an integer between 0 and 6, got {value!r}")
    unique = normalize_weekdays(values)

    assignment = session.get(CurriculumAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError("Assignment not found")

    session.execute(delete(CurriculumAssignmentDay).where(CurriculumAssignmentDay.assignment_id == assignment_id))
    session.add_all(CurriculumAssignmentDay(assignment_id=assignment_id, weekday=weekday) for weekday in unique)
    session.commit()

    logger.info(f"[SCHEDULER] Assignment {assignment_id} weekdays set to {unique or 'year defaults'}")
    return unique


def get_schedule_status(session: Session, curriculum_id: str) -> ScheduleStatus:
    """Read-out of a curriculum's scheduling configuration and backlog."""
    curriculum_id = _require_id(curriculum_id, "curriculum ID")

    unscheduled = session.scalar(
        select(func.count())
        .select_from(Lesson)
        .where(Lesson.curriculum_id == curriculum_id)
        .where(Lesson.planned_date.is_(None))
        .where(Lesson.status != COMPLETED)
    )

    rows = session.execute(
        select(CurriculumAssignment, Learner.name)
        .outerjoin(Learner, Learner.id == CurriculumAssignment.learner_id)
        .where(CurriculumAssignment.curriculum_id == curriculum_id)
        .order_by(Learner.name)
    ).all()

    assignments = [
        AssignmentSchedule(
            assignment_id=assignment.id,
            learner_id=assignment.learner_id,
            learner_name=learner_name,
            school_year_id=assignment.school_year_id,
            configured_weekdays=assignment_weekdays(session, assignment.id),
            school_weekdays=year_weekdays(session, assignment.school_year_id),
        )
        for assignment, learner_name in rows
    ]
    return ScheduleStatus(curriculum_id=curriculum_id, unscheduled_count=unscheduled or 0, assignments=assignments)
