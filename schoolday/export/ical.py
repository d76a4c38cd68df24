"""iCalendar export of planned lessons and external events.

Lessons become all-day VEVENTs with two reminders. External events keep
their recurrence as an RRULE with EXDATEs instead of being expanded, so
calendar clients see one series per event. Timed events use floating local
times (no TZID): event times are stored without a time zone.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

from icalendar import Alarm, Calendar, Event
from loguru import logger
from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from schoolday.calendar.dates import WEEKDAY_CODES, add_days
from schoolday.calendar.recurrence import RecurrenceRule, RecurrenceType, first_occurrence
from schoolday.config.settings import settings
from schoolday.db.models import (
    Curriculum,
    CurriculumAssignment,
    ExternalEvent,
    ExternalEventLearner,
    Learner,
    Lesson,
    Subject,
)
from schoolday.events.service import event_rule, load_event_links

PRODID = "-//Schoolday//Lesson Calendar//EN"
DEFAULT_EVENT_LENGTH = timedelta(hours=1)
# Every month has a 28th
MONTH_SAFE_DAY = 28

LESSON_ALARMS = (
    (timedelta(days=-1), "Lesson tomorrow"),
    (timedelta(minutes=-30), "Lesson starting soon"),
)


@dataclass(frozen=True)
class LessonExportRow:
    lesson_id: str
    title: str
    planned_date: date
    subject_name: str
    curriculum_name: str
    learner_names: tuple[str, ...] = ()
    description: str | None = None


@dataclass(frozen=True)
class EventExportRow:
    event_id: str
    title: str
    rule: RecurrenceRule
    description: str | None = None
    category: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    all_day: bool = True
    exception_dates: tuple[date, ...] = field(default_factory=tuple)


def _parse_time(value: str | None) -> time | None:
    if not value:
        return None
    hour, minute = value.split(":")[:2]
    return time(int(hour), int(minute))


def lesson_summary(row: LessonExportRow) -> str:
    summary = f"[{row.subject_name}] {row.title}"
    if row.learner_names:
        summary = f"{summary} - {', '.join(row.learner_names)}"
    return summary


def lesson_description(row: LessonExportRow) -> str:
    if row.description:
        return f"{row.curriculum_name}\n\n{row.description}"
    return row.curriculum_name


def _lesson_event(row: LessonExportRow, stamp: datetime, uid_domain: str) -> Event:
    event = Event()
    event.add("uid", f"lesson-{row.lesson_id}@{uid_domain}")
    event.add("dtstamp", stamp)
    event.add("dtstart", row.planned_date)
    event.add("dtend", add_days(row.planned_date, 1))
    event.add("summary", lesson_summary(row))
    event.add("description", lesson_description(row))
    event.add("status", "CONFIRMED")
    event.add("transp", "TRANSPARENT")

    for trigger, text in LESSON_ALARMS:
        alarm = Alarm()
        alarm.add("action", "DISPLAY")
        alarm.add("description", text)
        alarm.add("trigger", trigger)
        event.add_component(alarm)
    return event


def _recurrence(rule: RecurrenceRule, until: date | datetime | None) -> dict[str, object] | None:
    if rule.type == RecurrenceType.ONCE:
        return None
    if rule.type == RecurrenceType.MONTHLY:
        day = rule.start_date.day
        if day > MONTH_SAFE_DAY:
            # Last existing day of 28..day, so short months clamp instead of being skipped
            recur: dict[str, object] = {
                "freq": "monthly",
                "bymonthday": list(range(MONTH_SAFE_DAY, day + 1)),
                "bysetpos": -1,
            }
        else:
            recur = {"freq": "monthly", "bymonthday": day}
    else:
        recur = {"freq": "weekly", "byday": WEEKDAY_CODES[rule.anchor_weekday]}
        if rule.type == RecurrenceType.BIWEEKLY:
            recur["interval"] = 2
    if until is not None:
        recur["until"] = until
    return recur


def has_occurrences(row: EventExportRow) -> bool:
    """False when the event can never produce a date (e.g. a one-off on an excepted day)."""
    first = first_occurrence(row.rule)
    if row.rule.end_date is not None and first > row.rule.end_date:
        return False
    if row.rule.type == RecurrenceType.ONCE:
        return first not in set(row.exception_dates)
    return True


def _external_event(row: EventExportRow, stamp: datetime, uid_domain: str) -> Event:
    rule = row.rule
    first = first_occurrence(rule)
    event = Event()
    event.add("uid", f"event-{row.event_id}@{uid_domain}")
    event.add("dtstamp", stamp)
    event.add("summary", row.title)
    if row.description:
        event.add("description", row.description)
    if row.category:
        event.add("categories", [row.category])

    excepted = sorted(
        day for day in set(row.exception_dates) if first <= day and (rule.end_date is None or day <= rule.end_date)
    )
    start_time = None if row.all_day else _parse_time(row.start_time)
    until: date | datetime | None = rule.end_date
    if start_time is None:
        event.add("dtstart", first)
        event.add("dtend", add_days(first, 1))
        exdates: list[date | datetime] = list(excepted)
    else:
        starts_at = datetime.combine(first, start_time)
        end_time = _parse_time(row.end_time)
        ends_at = datetime.combine(first, end_time) if end_time else None
        if ends_at is None or ends_at <= starts_at:
            ends_at = starts_at + DEFAULT_EVENT_LENGTH
        event.add("dtstart", starts_at)
        event.add("dtend", ends_at)
        if rule.end_date is not None:
            until = datetime.combine(rule.end_date, start_time)
        exdates = [datetime.combine(day, start_time) for day in excepted]

    recur = _recurrence(rule, until)
    if recur is not None:
        event.add("rrule", recur)
        if exdates:
            parameters = {"VALUE": "DATE"} if start_time is None else None
            event.add("exdate", exdates, parameters=parameters)
    return event


def serialize_calendar(
    lessons: Sequence[LessonExportRow],
    events: Sequence[EventExportRow] = (),
    generated_at: datetime | None = None,
    calendar_name: str | None = None,
    uid_domain: str | None = None,
) -> str:
    """Render lessons and external events as one iCalendar document.

    Args:
        lessons: Planned lessons, one all-day VEVENT each
        events: External events, one VEVENT (with RRULE when recurring) each; events
            that can no longer produce a date are left out
        generated_at: DTSTAMP for every component (defaults to now, UTC)
        calendar_name: X-WR-CALNAME (defaults to settings.calendar_name)
        uid_domain: Right-hand side of every UID (defaults to settings.ical_uid_domain)

    Returns:
        iCalendar text with CRLF line endings
    """
    stamp = generated_at or datetime.now(timezone.utc)
    uid_domain = uid_domain or settings.ical_uid_domain

    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("method", "PUBLISH")
    cal.add("x-wr-calname", calendar_name or settings.calendar_name)

    for row in lessons:
        cal.add_component(_lesson_event(row, stamp, uid_domain))
    for row in events:
        if not has_occurrences(row):
            logger.debug(f"[ICAL] Skipping event {row.event_id}: no remaining occurrences")
            continue
        cal.add_component(_external_event(row, stamp, uid_domain))

    return cal.to_ical().decode("utf-8")


def collect_export_rows(
    session: Session, learner_id: str | None = None, today: date | None = None
) -> tuple[list[LessonExportRow], list[EventExportRow]]:
    """Read what the feed publishes: upcoming non-completed lessons and still-running events.

    Args:
        session: Database session
        learner_id: Only lessons of curricula assigned to this learner, and events they attend
        today: Lessons planned before this date are left out (defaults to date.today())
    """
    today = today or date.today()

    assignment_stmt = select(CurriculumAssignment.curriculum_id, Learner.id, Learner.name).join(
        Learner, Learner.id == CurriculumAssignment.learner_id
    )
    if learner_id:
        assignment_stmt = assignment_stmt.where(CurriculumAssignment.learner_id == learner_id)

    learners_by_curriculum: dict[str, dict[str, str]] = defaultdict(dict)
    for curriculum_id, assigned_learner_id, learner_name in session.execute(assignment_stmt).all():
        learners_by_curriculum[curriculum_id][assigned_learner_id] = learner_name

    lesson_rows: list[LessonExportRow] = []
    if learners_by_curriculum:
        lessons = session.execute(
            select(Lesson, Curriculum.name, Subject.name)
            .join(Curriculum, Curriculum.id == Lesson.curriculum_id)
            .join(Subject, Subject.id == Curriculum.subject_id)
            .where(Lesson.curriculum_id.in_(list(learners_by_curriculum)))
            .where(Lesson.status != "completed")
            .where(Lesson.planned_date.is_not(None))
            .where(Lesson.planned_date >= today)
            .order_by(Lesson.planned_date, Subject.name, Lesson.order_index, Lesson.id)
        ).all()
        lesson_rows = [
            LessonExportRow(
                lesson_id=lesson.id,
                title=lesson.title,
                planned_date=lesson.planned_date,
                subject_name=subject_name,
                curriculum_name=curriculum_name,
                learner_names=tuple(sorted(learners_by_curriculum[lesson.curriculum_id].values())),
                description=lesson.description,
            )
            for lesson, curriculum_name, subject_name in lessons
        ]

    one_off = ExternalEvent.recurrence_type == RecurrenceType.ONCE.value
    event_stmt = select(ExternalEvent).where(
        or_(
            and_(one_off, ExternalEvent.start_date >= today),
            and_(~one_off, or_(ExternalEvent.end_date.is_(None), ExternalEvent.end_date >= today)),
        )
    )
    if learner_id:
        attending = select(ExternalEventLearner.event_id).where(ExternalEventLearner.learner_id == learner_id)
        event_stmt = event_stmt.where(ExternalEvent.id.in_(attending))
    events = list(session.scalars(event_stmt.order_by(ExternalEvent.start_date, ExternalEvent.title)).all())
    _, exceptions = load_event_links(session, [event.id for event in events])

    event_rows = [
        EventExportRow(
            event_id=event.id,
            title=event.title,
            rule=event_rule(event),
            description=event.description,
            category=event.category,
            start_time=event.start_time,
            end_time=event.end_time,
            all_day=event.all_day or not event.start_time,
            exception_dates=tuple(exceptions.get(event.id, [])),
        )
        for event in events
    ]

    logger.info(f"[ICAL] Collected {len(lesson_rows)} lessons and {len(event_rows)} events for export")
    return lesson_rows, event_rows
