"""External events: authoring, pasted-date import and occurrence listing.

Events are stored as a recurrence rule plus exception dates. Occurrences are
never stored; list_occurrences() expands them for the requested window.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Sequence
from datetime import date
from enum import StrEnum

from loguru import logger
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from schoolday.calendar.dates import sunday_weekday
from schoolday.calendar.recurrence import (
    ImportedRecurrence,
    Occurrence,
    RecurrenceRule,
    RecurrenceType,
    expand_occurrences,
    preview_imported_dates,
)
from schoolday.core.errors import NotFoundError
from schoolday.db.models import ExternalEvent, ExternalEventException, ExternalEventLearner, Learner

IMPORTED_EXCEPTION_REASON = "Not in imported schedule"
DEFAULT_COLOR = "#3b82f6"
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class EventCategory(StrEnum):
    CO_OP = "co-op"
    SPORT = "sport"
    MUSIC = "music"
    ART = "art"
    FIELD_TRIP = "field-trip"
    OTHER = "other"


class ExternalEventDraft(BaseModel):
    """Fields of an external event as entered by a parent.

    Either ``pasted_dates`` or ``start_date`` must be given. Pasted dates win:
    the rule, the bounds and the exception dates are inferred from them.
    """

    title: str = Field(..., min_length=1, description="Event title")
    description: str | None = None
    category: EventCategory = EventCategory.OTHER
    recurrence_type: RecurrenceType = RecurrenceType.WEEKLY
    day_of_week: int | None = Field(default=None, ge=0, le=6, description="Sunday=0")
    start_date: date | None = None
    end_date: date | None = None
    start_time: str | None = Field(default=None, description="Local time HH:MM")
    end_time: str | None = Field(default=None, description="Local time HH:MM")
    all_day: bool = False
    color: str = DEFAULT_COLOR
    learner_ids: list[str] = Field(..., min_length=1, description="Learners attending")
    pasted_dates: str | None = Field(default=None, description="One date per line")
    exception_dates: list[date] = Field(default_factory=list)
    exception_reason: str | None = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required")
        return value

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        value = value.strip()[:5]
        if not TIME_PATTERN.match(value):
            raise ValueError(f"Time must be HH:MM, got {value!r}")
        return value


def _rule_from_draft(draft: ExternalEventDraft) -> tuple[RecurrenceRule, list[date], str | None]:
    """Resolve the stored rule and exception dates for a draft."""
    if draft.pasted_dates and draft.pasted_dates.strip():
        imported = preview_imported_dates(draft.pasted_dates)
        return imported.rule, imported.implied_exceptions, IMPORTED_EXCEPTION_REASON

    if draft.start_date is None:
        raise ValueError("Start date is required")

    anchor = None
    if draft.recurrence_type != RecurrenceType.MONTHLY:
        anchor = draft.day_of_week if draft.day_of_week is not None else sunday_weekday(draft.start_date)
    rule = RecurrenceRule(
        type=draft.recurrence_type,
        anchor_weekday=anchor,
        start_date=draft.start_date,
        end_date=draft.end_date,
    )
    return rule, sorted(set(draft.exception_dates)), draft.exception_reason


def _check_learners(session: Session, learner_ids: Sequence[str]) -> list[str]:
    unique = list(dict.fromkeys(learner_ids))
    found = set(session.scalars(select(Learner.id).where(Learner.id.in_(unique))).all())
    missing = [learner_id for learner_id in unique if learner_id not in found]
    if missing:
        raise NotFoundError(f"Learner not found: {', '.join(missing)}")
    return unique


def _apply_draft(event: ExternalEvent, draft: ExternalEventDraft, rule: RecurrenceRule) -> None:
    event.title = draft.title
    event.description = draft.description.strip() if draft.description and draft.description.strip() else None
    event.category = str(draft.category)
    event.recurrence_type = str(rule.type)
    event.day_of_week = rule.anchor_weekday
    event.start_date = rule.start_date
    event.end_date = rule.end_date
    event.start_time = draft.start_time
    event.end_time = draft.end_time
    event.all_day = draft.all_day
    event.color = draft.color or DEFAULT_COLOR


def _replace_links(
    session: Session, event_id: str, learner_ids: Sequence[str], exceptions: Sequence[date], reason: str | None
) -> None:
    session.execute(delete(ExternalEventLearner).where(ExternalEventLearner.event_id == event_id))
    session.execute(delete(ExternalEventException).where(ExternalEventException.event_id == event_id))
    session.add_all(ExternalEventLearner(event_id=event_id, learner_id=learner_id) for learner_id in learner_ids)
    session.add_all(
        ExternalEventException(event_id=event_id, exception_date=day, reason=reason) for day in sorted(set(exceptions))
    )


def preview(raw_text: str) -> ImportedRecurrence:
    """Infer the rule behind pasted dates without storing anything.

    Raises:
        NoValidDatesError: If no line parses as a date
    """
    return preview_imported_dates(raw_text)


def create_external_event(session: Session, draft: ExternalEventDraft) -> ExternalEvent:
    """Store a new external event with its learners and exception dates.

    Raises:
        ValueError: If neither pasted dates nor a start date are given, or the rule is invalid
        NoValidDatesError: If pasted dates are given but none parses
        NotFoundError: If a learner does not exist
    """
    rule, exceptions, reason = _rule_from_draft(draft)
    learner_ids = _check_learners(session, draft.learner_ids)

    event = ExternalEvent()
    _apply_draft(event, draft, rule)
    session.add(event)
    session.flush()
    _replace_links(session, event.id, learner_ids, exceptions, reason)
    session.commit()

    logger.info(
        f"[EVENTS] Created external event {event.id} '{event.title}' ({rule.type}, "
        f"{rule.start_date}..{rule.end_date or 'open'}) with {len(exceptions)} exceptions"
    )
    return event


def update_external_event(session: Session, event_id: str, draft: ExternalEventDraft) -> ExternalEvent:
    """Replace an event's fields, learners and exception dates."""
    event = session.get(ExternalEvent, event_id)
    if event is None:
        raise NotFoundError(f"External event not found: {event_id}")

    rule, exceptions, reason = _rule_from_draft(draft)
    learner_ids = _check_learners(session, draft.learner_ids)

    _apply_draft(event, draft, rule)
    _replace_links(session, event.id, learner_ids, exceptions, reason)
    session.commit()
    logger.info(f"[EVENTS] Updated external event {event_id}")
    return event


def delete_external_event(session: Session, event_id: str) -> None:
    event = session.get(ExternalEvent, event_id)
    if event is None:
        raise NotFoundError(f"External event not found: {event_id}")
    session.execute(delete(ExternalEventLearner).where(ExternalEventLearner.event_id == event_id))
    session.execute(delete(ExternalEventException).where(ExternalEventException.event_id == event_id))
    session.delete(event)
    session.commit()
    logger.info(f"[EVENTS] Deleted external event {event_id}")


def event_rule(event: ExternalEvent) -> RecurrenceRule:
    """Rebuild the recurrence rule stored on an event row."""
    recurrence_type = RecurrenceType(event.recurrence_type)
    anchor = event.day_of_week
    if recurrence_type == RecurrenceType.MONTHLY:
        anchor = None
    elif anchor is None:
        anchor = sunday_weekday(event.start_date)
    return RecurrenceRule(type=recurrence_type, anchor_weekday=anchor, start_date=event.start_date, end_date=event.end_date)


def load_event_links(session: Session, event_ids: Sequence[str]) -> tuple[dict[str, list[str]], dict[str, list[date]]]:
    """Learner ids and exception dates for a batch of events."""
    learners: dict[str, list[str]] = defaultdict(list)
    exceptions: dict[str, list[date]] = defaultdict(list)
    if not event_ids:
        return learners, exceptions

    for event_id, learner_id in session.execute(
        select(ExternalEventLearner.event_id, ExternalEventLearner.learner_id)
        .where(ExternalEventLearner.event_id.in_(event_ids))
        .order_by(ExternalEventLearner.learner_id)
    ).all():
        learners[event_id].append(learner_id)

    for event_id, day in session.execute(
        select(ExternalEventException.event_id, ExternalEventException.exception_date)
        .where(ExternalEventException.event_id.in_(event_ids))
        .order_by(ExternalEventException.exception_date)
    ).all():
        exceptions[event_id].append(day)

    return learners, exceptions


def events_overlapping(
    session: Session, start: date | None, end: date | None, learner_id: str | None = None
) -> list[ExternalEvent]:
    """Events whose rule span can produce dates in [start, end]; None leaves that side open."""
    stmt = select(ExternalEvent)
    if end is not None:
        stmt = stmt.where(ExternalEvent.start_date <= end)
    if start is not None:
        stmt = stmt.where(or_(ExternalEvent.end_date.is_(None), ExternalEvent.end_date >= start))
    if learner_id:
        attending = select(ExternalEventLearner.event_id).where(ExternalEventLearner.learner_id == learner_id)
        stmt = stmt.where(ExternalEvent.id.in_(attending))
    return list(session.scalars(stmt.order_by(ExternalEvent.start_date, ExternalEvent.title)).all())


def list_occurrences(session: Session, start: date, end: date, learner_id: str | None = None) -> list[Occurrence]:
    """Concrete occurrences of all events in [start, end], ordered by date then title.

    Raises:
        ValueError: If start is after end
    """
    if start > end:
        raise ValueError("Range start must not be after range end")

    events = events_overlapping(session, start, end, learner_id)
    learners, exceptions = load_event_links(session, [event.id for event in events])

    occurrences = [
        Occurrence(
            event_id=event.id,
            date=day,
            title=event.title,
            description=event.description,
            color=event.color,
            start_time=event.start_time,
            end_time=event.end_time,
            all_day=event.all_day,
            learner_ids=tuple(learners.get(event.id, [])),
        )
        for event in events
        for day in expand_occurrences(event_rule(event), exceptions.get(event.id, []), start, end)
    ]
    occurrences.sort(key=lambda occurrence: (occurrence.date, occurrence.title))
    logger.debug(f"[EVENTS] {len(occurrences)} occurrences from {len(events)} events in {start}..{end}")
    return occurrences
