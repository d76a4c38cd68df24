"""School-year configuration endpoints: bounds, default weekdays, date overrides."""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger
from sqlalchemy.orm import Session

from schoolday.api.schemas import (
    DateOverrideRequest,
    DateOverrideResponse,
    ReflowResponse,
    SchoolDatesResponse,
    SchoolYearRequest,
    SchoolYearResponse,
    SchoolYearUpdateRequest,
    WeekdaysRequest,
)
from schoolday.calendar.school_days import OverrideKind
from schoolday.core.errors import NotFoundError
from schoolday.db.models import SchoolYear
from schoolday.db.session import get_db
from schoolday.scheduling.auto_scheduler import year_weekdays
from schoolday.scheduling.school_years import (
    add_date_override,
    create_school_year,
    delete_school_year,
    list_school_dates,
    remove_date_override,
    set_school_days,
    update_school_year,
)

router = APIRouter(prefix="/school-years", tags=["school-years"])


def _year_response(db: Session, year: SchoolYear) -> SchoolYearResponse:
    return SchoolYearResponse(
        id=year.id,
        label=year.label,
        start_date=year.start_date,
        end_date=year.end_date,
        weekdays=year_weekdays(db, year.id),
    )


@router.post("", response_model=SchoolYearResponse, status_code=status.HTTP_201_CREATED)
def post_school_year(request: SchoolYearRequest, db: Session = Depends(get_db)):
    try:
        year = create_school_year(db, request.label, request.start_date, request.end_date, request.weekdays)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return _year_response(db, year)


@router.patch("/{school_year_id}", response_model=SchoolYearResponse)
def patch_school_year(school_year_id: str, request: SchoolYearUpdateRequest, db: Session = Depends(get_db)):
    try:
        year = update_school_year(db, school_year_id, request.label, request.start_date, request.end_date)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return _year_response(db, year)


@router.delete("/{school_year_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_school_year(school_year_id: str, db: Session = Depends(get_db)):
    try:
        delete_school_year(db, school_year_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.put("/{school_year_id}/weekdays", response_model=ReflowResponse)
def put_school_weekdays(school_year_id: str, request: WeekdaysRequest, db: Session = Depends(get_db)):
    """Replace the year's default weekdays and move planned lessons onto the new calendar."""
    logger.info(f"[CALENDAR] PUT /school-years/{school_year_id}/weekdays weekdays={request.weekdays}")
    try:
        result = set_school_days(db, school_year_id, request.weekdays)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return ReflowResponse(
        weekdays=year_weekdays(db, school_year_id),
        moved_dates=result.moved_dates,
        updated_lessons=result.updated_lessons,
    )


@router.post("/{school_year_id}/overrides", response_model=DateOverrideResponse)
def post_date_override(school_year_id: str, request: DateOverrideRequest, db: Session = Depends(get_db)):
    """Create or replace the exclude/include override for one date."""
    try:
        override = add_date_override(db, school_year_id, request.date, request.kind, request.reason)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return DateOverrideResponse(
        id=override.id,
        school_year_id=override.school_year_id,
        date=override.override_date,
        kind=OverrideKind(override.kind),
        reason=override.reason,
    )


@router.delete("/overrides/{override_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_date_override(override_id: str, db: Session = Depends(get_db)):
    try:
        remove_date_override(db, override_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.get("/{school_year_id}/school-dates", response_model=SchoolDatesResponse)
def get_school_dates(
    school_year_id: str,
    start: date | None = Query(default=None, description="Window start (defaults to year start)"),
    end: date | None = Query(default=None, description="Window end (defaults to year end)"),
    db: Session = Depends(get_db),
):
    try:
        dates = list_school_dates(db, school_year_id, start, end)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return SchoolDatesResponse(school_year_id=school_year_id, dates=dates)
