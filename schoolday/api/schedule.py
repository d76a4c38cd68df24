"""Lesson scheduling endpoints.

Domain-state outcomes (no assignment, no weekdays, nothing to schedule, no
dates left) are returned with status 200 and ``ok: false``. Malformed input
is rejected with 4xx.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from sqlalchemy.orm import Session

from schoolday.api.schemas import (
    AssignmentScheduleResponse,
    ClearScheduleResponse,
    ScheduleRequest,
    ScheduleResponse,
    ScheduleStatusResponse,
    WeekdaysRequest,
    WeekdaysResponse,
)
from schoolday.core.errors import NotFoundError
from schoolday.db.session import get_db
from schoolday.scheduling.auto_scheduler import (
    auto_schedule,
    clear_schedule,
    get_schedule_status,
    reschedule_all,
    set_assignment_weekdays,
)

router = APIRouter(tags=["schedule"])


@router.put("/assignments/{assignment_id}/weekdays", response_model=WeekdaysResponse)
def put_assignment_weekdays(
    assignment_id: str,
    request: WeekdaysRequest,
    db: Session = Depends(get_db),
):
    """Replace the custom weekday set of an assignment (empty restores year defaults).

    Raises:
        HTTPException: 400 for invalid weekdays, 404 if the assignment does not exist
    """
    logger.info(f"[SCHEDULER] PUT /assignments/{assignment_id}/weekdays weekdays={request.weekdays}")
    try:
        stored = set_assignment_weekdays(db, assignment_id, request.weekdays)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return WeekdaysResponse(weekdays=stored)


@router.get("/curricula/{curriculum_id}/schedule", response_model=ScheduleStatusResponse)
def get_curriculum_schedule(curriculum_id: str, db: Session = Depends(get_db)):
    """Configured weekdays per assignment and the number of unscheduled lessons."""
    schedule = get_schedule_status(db, curriculum_id)
    return ScheduleStatusResponse(
        curriculum_id=schedule.curriculum_id,
        unscheduled_count=schedule.unscheduled_count,
        assignments=[
            AssignmentScheduleResponse(
                assignment_id=item.assignment_id,
                learner_id=item.learner_id,
                learner_name=item.learner_name,
                school_year_id=item.school_year_id,
                configured_weekdays=item.configured_weekdays,
                school_weekdays=item.school_weekdays,
            )
            for item in schedule.assignments
        ],
    )


@router.post("/curricula/{curriculum_id}/schedule/auto", response_model=ScheduleResponse, response_model_exclude_none=True)
def post_auto_schedule(curriculum_id: str, request: ScheduleRequest, db: Session = Depends(get_db)):
    """Give every unscheduled lesson of the curriculum a school date."""
    try:
        outcome = auto_schedule(db, curriculum_id, request.learner_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return ScheduleResponse(**outcome.to_dict())


@router.post(
    "/curricula/{curriculum_id}/schedule/reschedule", response_model=ScheduleResponse, response_model_exclude_none=True
)
def post_reschedule(curriculum_id: str, request: ScheduleRequest, db: Session = Depends(get_db)):
    """Clear all non-completed lesson dates, then schedule them again from today."""
    try:
        outcome = reschedule_all(db, curriculum_id, request.learner_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return ScheduleResponse(**outcome.to_dict())


@router.delete("/curricula/{curriculum_id}/schedule", response_model=ClearScheduleResponse)
def delete_schedule(curriculum_id: str, db: Session = Depends(get_db)):
    cleared = clear_schedule(db, curriculum_id)
    return ClearScheduleResponse(cleared_count=cleared)
