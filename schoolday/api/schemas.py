"""API contract schemas.

Request and response models for the scheduling, school-year, external-event
and calendar-feed endpoints. Dates travel as ISO 8601 (YYYY-MM-DD) strings.
"""

from datetime import date

from pydantic import BaseModel, Field

from schoolday.calendar.recurrence import RecurrenceType
from schoolday.calendar.school_days import OverrideKind

# ============================================================================
# Scheduling Schemas
# ============================================================================


class WeekdaysRequest(BaseModel):
    """Body for endpoints that replace a weekday set."""

    weekdays: list[int] = Field(description="Weekdays 0-6, Sunday=0", max_length=7)


class WeekdaysResponse(BaseModel):
    weekdays: list[int] = Field(description="Stored weekdays, de-duplicated and ascending")


class ScheduleRequest(BaseModel):
    """Body for auto-schedule and reschedule."""

    learner_id: str = Field(..., min_length=1, description="Learner whose assignment provides the calendar")


class ScheduleResponse(BaseModel):
    """Result of a scheduling run.

    ``ok`` is false for domain-state outcomes (no assignment, no weekdays,
    nothing to schedule, no dates left); ``error`` then holds the code and
    ``message`` the human-readable text.
    """

    ok: bool
    scheduled_count: int | None = Field(default=None, description="Lessons that received a date")
    remaining_count: int | None = Field(default=None, description="Pending lessons left without a date")
    error: str | None = Field(default=None, description="Error code when ok is false")
    message: str | None = Field(default=None, description="Error message when ok is false")


class ClearScheduleResponse(BaseModel):
    cleared_count: int = Field(description="Lessons whose planned date was removed")


class AssignmentScheduleResponse(BaseModel):
    assignment_id: str
    learner_id: str
    learner_name: str | None = None
    school_year_id: str
    configured_weekdays: list[int] = Field(description="Custom weekdays; empty means year defaults apply")
    school_weekdays: list[int] = Field(description="Default weekdays of the school year")


class ScheduleStatusResponse(BaseModel):
    curriculum_id: str
    unscheduled_count: int
    assignments: list[AssignmentScheduleResponse]


# ============================================================================
# School Year Schemas
# ============================================================================


class SchoolYearRequest(BaseModel):
    label: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    weekdays: list[int] | None = Field(default=None, description="Default weekdays; Monday-Friday when omitted")


class SchoolYearUpdateRequest(BaseModel):
    label: str = Field(..., min_length=1)
    start_date: date
    end_date: date


class SchoolYearResponse(BaseModel):
    id: str
    label: str
    start_date: date
    end_date: date
    weekdays: list[int]


class ReflowResponse(BaseModel):
    weekdays: list[int]
    moved_dates: int = Field(description="Distinct planned dates that moved")
    updated_lessons: int = Field(description="Lessons whose planned date changed")


class DateOverrideRequest(BaseModel):
    date: date
    kind: OverrideKind = Field(description="exclude | include")
    reason: str | None = None


class DateOverrideResponse(BaseModel):
    id: str
    school_year_id: str
    date: date
    kind: OverrideKind
    reason: str | None = None


class SchoolDatesResponse(BaseModel):
    school_year_id: str
    dates: list[date]


# ============================================================================
# External Event Schemas
# ============================================================================


class PreviewRequest(BaseModel):
    raw_text: str = Field(description="Pasted dates, one per line")


class RecurrenceRuleResponse(BaseModel):
    type: RecurrenceType
    anchor_weekday: int | None = None
    start_date: date
    end_date: date | None = None


class PreviewResponse(BaseModel):
    rule: RecurrenceRuleResponse
    dates: list[date]
    implied_exceptions: list[date]


class ExternalEventResponse(BaseModel):
    id: str
    title: str
    category: str
    rule: RecurrenceRuleResponse
    start_time: str | None = None
    end_time: str | None = None
    all_day: bool
    color: str


class OccurrenceResponse(BaseModel):
    event_id: str
    date: date
    title: str
    description: str | None = None
    color: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    all_day: bool
    learner_ids: list[str]


class OccurrencesResponse(BaseModel):
    start: date
    end: date
    occurrences: list[OccurrenceResponse]
