from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""


class Learner(Base):
    """A child being homeschooled.

    Managed by the profile screens; the scheduling engine only reads the id
    and display name.
    """

    __tablename__ = "learners"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class Subject(Base):
    """Subject label (Math, Reading, ...) shown in exported lesson titles."""

    __tablename__ = "subjects"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String, nullable=False)


class Curriculum(Base):
    """An ordered list of lessons for one subject."""

    __tablename__ = "curricula"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    subject_id: Mapped[str] = mapped_column(String, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)


class SchoolYear(Base):
    """A bounded school year.

    Schema:
    - label: Display label ("2025-2026")
    - start_date / end_date: Inclusive calendar-date bounds, start <= end

    Default school weekdays live in school_days, per-date exceptions in
    date_overrides.
    """

    __tablename__ = "school_years"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    label: Mapped[str] = mapped_column(String, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class SchoolDay(Base):
    """One default school weekday (0=Sunday .. 6=Saturday) of a school year."""

    __tablename__ = "school_days"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_year_id: Mapped[str] = mapped_column(
        String, ForeignKey("school_years.id", ondelete="CASCADE"), nullable=False, index=True
    )
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (UniqueConstraint("school_year_id", "weekday", name="uq_school_day_year_weekday"),)


class DateOverride(Base):
    """Force-exclude (holiday, sick day) or force-include (make-up day) one date.

    At most one override per (school_year_id, date); writes upsert.
    """

    __tablename__ = "date_overrides"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    school_year_id: Mapped[str] = mapped_column(
        String, ForeignKey("school_years.id", ondelete="CASCADE"), nullable=False, index=True
    )
    override_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)  # "exclude" | "include"
    reason: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (UniqueConstraint("school_year_id", "date", name="uq_date_override_year_date"),)


class CurriculumAssignment(Base):
    """Links a curriculum to a learner for one school year."""

    __tablename__ = "curriculum_assignments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    curriculum_id: Mapped[str] = mapped_column(
        String, ForeignKey("curricula.id", ondelete="CASCADE"), nullable=False, index=True
    )
    learner_id: Mapped[str] = mapped_column(String, ForeignKey("learners.id", ondelete="CASCADE"), nullable=False, index=True)
    school_year_id: Mapped[str] = mapped_column(
        String, ForeignKey("school_years.id", ondelete="CASCADE"), nullable=False, index=True
    )

    __table_args__ = (
        UniqueConstraint("curriculum_id", "learner_id", "school_year_id", name="uq_assignment_curriculum_learner_year"),
    )


class CurriculumAssignmentDay(Base):
    """Custom weekday for one assignment. A non-empty set replaces the year defaults."""

    __tablename__ = "curriculum_assignment_days"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assignment_id: Mapped[str] = mapped_column(
        String, ForeignKey("curriculum_assignments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (UniqueConstraint("assignment_id", "weekday", name="uq_assignment_day_weekday"),)


class Lesson(Base):
    """A single lesson of a curriculum.

    Schema:
    - order_index: Position within the curriculum (ties broken by id)
    - planned_date: Date chosen by the scheduler or by hand, NULL when unscheduled
    - status: planned | in_progress | completed

    Completed lessons are never moved by the scheduler.
    """

    __tablename__ = "lessons"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    curriculum_id: Mapped[str] = mapped_column(
        String, ForeignKey("curricula.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    planned_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="planned")
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (Index("idx_lessons_curriculum_order", "curriculum_id", "order_index"),)


class ExternalEvent(Base):
    """Co-op classes, sports practice, music lessons and other outside commitments.

    Recurrence is stored as a rule (recurrence_type, day_of_week, start/end)
    and expanded on read. start_time/end_time are opaque local "HH:MM"
    strings; no time zone is attached.
    """

    __tablename__ = "external_events"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String, nullable=False, default="other")
    recurrence_type: Mapped[str] = mapped_column(String, nullable=False)  # once | weekly | biweekly | monthly
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    start_time: Mapped[str | None] = mapped_column(String, nullable=True)
    end_time: Mapped[str | None] = mapped_column(String, nullable=True)
    all_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    color: Mapped[str] = mapped_column(String, nullable=False, default="#3b82f6")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class ExternalEventLearner(Base):
    """Which learners attend an external event."""

    __tablename__ = "external_event_learners"

    event_id: Mapped[str] = mapped_column(
        String, ForeignKey("external_events.id", ondelete="CASCADE"), primary_key=True
    )
    learner_id: Mapped[str] = mapped_column(String, ForeignKey("learners.id", ondelete="CASCADE"), primary_key=True)


class ExternalEventException(Base):
    """A date on which a recurring external event does not happen."""

    __tablename__ = "external_event_exceptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(
        String, ForeignKey("external_events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    exception_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (UniqueConstraint("event_id", "exception_date", name="uq_event_exception_date"),)
