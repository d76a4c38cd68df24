"""External event endpoints: pasted-date preview, authoring and occurrence listing."""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger
from sqlalchemy.orm import Session

from schoolday.api.schemas import (
    ExternalEventResponse,
    OccurrenceResponse,
    OccurrencesResponse,
    PreviewRequest,
    PreviewResponse,
    RecurrenceRuleResponse,
)
from schoolday.calendar.recurrence import RecurrenceRule
from schoolday.core.errors import NotFoundError
from schoolday.db.models import ExternalEvent
from schoolday.db.session import get_db
from schoolday.events.service import (
    ExternalEventDraft,
    create_external_event,
    delete_external_event,
    event_rule,
    list_occurrences,
    preview,
    update_external_event,
)

router = APIRouter(prefix="/external-events", tags=["external-events"])


def _rule_response(rule: RecurrenceRule) -> RecurrenceRuleResponse:
    return RecurrenceRuleResponse(
        type=rule.type,
        anchor_weekday=rule.anchor_weekday,
        start_date=rule.start_date,
        end_date=rule.end_date,
    )


def _event_response(event: ExternalEvent) -> ExternalEventResponse:
    return ExternalEventResponse(
        id=event.id,
        title=event.title,
        category=event.category,
        rule=_rule_response(event_rule(event)),
        start_time=event.start_time,
        end_time=event.end_time,
        all_day=event.all_day,
        color=event.color,
    )


@router.post("/preview", response_model=PreviewResponse)
def post_preview(request: PreviewRequest):
    """Infer the recurrence behind pasted dates without storing anything.

    Raises:
        HTTPException: 400 if no line parses as a date
    """
    try:
        imported = preview(request.raw_text)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return PreviewResponse(
        rule=_rule_response(imported.rule),
        dates=imported.dates,
        implied_exceptions=imported.implied_exceptions,
    )


@router.post("", response_model=ExternalEventResponse, status_code=status.HTTP_201_CREATED)
def post_external_event(draft: ExternalEventDraft, db: Session = Depends(get_db)):
    """Create an event from an explicit rule or from pasted dates."""
    logger.info(f"[EVENTS] POST /external-events title={draft.title!r} pasted={bool(draft.pasted_dates)}")
    try:
        event = create_external_event(db, draft)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return _event_response(event)


@router.get("/occurrences", response_model=OccurrencesResponse)
def get_occurrences(
    start: date = Query(..., description="Window start (YYYY-MM-DD)"),
    end: date = Query(..., description="Window end (YYYY-MM-DD)"),
    learner_id: str | None = Query(default=None, description="Only events this learner attends"),
    db: Session = Depends(get_db),
):
    try:
        occurrences = list_occurrences(db, start, end, learner_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return OccurrencesResponse(
        start=start,
        end=end,
        occurrences=[
            OccurrenceResponse(
                event_id=occurrence.event_id,
                date=occurrence.date,
                title=occurrence.title,
                description=occurrence.description,
                color=occurrence.color,
                start_time=occurrence.start_time,
                end_time=occurrence.end_time,
                all_day=occurrence.all_day,
                learner_ids=list(occurrence.learner_ids),
            )
            for occurrence in occurrences
        ],
    )


@router.put("/{event_id}", response_model=ExternalEventResponse)
def put_external_event(event_id: str, draft: ExternalEventDraft, db: Session = Depends(get_db)):
    try:
        event = update_external_event(db, event_id, draft)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return _event_response(event)


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_external_event(event_id: str, db: Session = Depends(get_db)):
    try:
        delete_external_event(db, event_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
