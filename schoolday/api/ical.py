"""Subscribable iCalendar feed of upcoming lessons and external events.

Read-only. Access is gated by the shared ICAL_TOKEN passed as ``?token=``
because calendar clients cannot send auth headers.
"""

import secrets

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from loguru import logger
from sqlalchemy.orm import Session

from schoolday.config.settings import settings
from schoolday.db.session import get_db
from schoolday.export.ical import collect_export_rows, serialize_calendar

router = APIRouter(prefix="/calendar", tags=["calendar"])


def _check_token(token: str | None) -> None:
    expected = settings.ical_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Calendar feed is disabled")
    if not token or not secrets.compare_digest(token.encode(), expected.encode()):
        logger.warning("[ICAL] Rejected calendar feed request with invalid token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.get("/ical")
def get_ical_feed(
    token: str | None = Query(default=None),
    learner_id: str | None = Query(default=None, description="Only this learner's lessons and events"),
    db: Session = Depends(get_db),
):
    """Export upcoming lessons and active external events as text/calendar.

    Raises:
        HTTPException: 403 when no ICAL_TOKEN is configured, 401 for a wrong or missing token
    """
    _check_token(token)

    lessons, events = collect_export_rows(db, learner_id=learner_id)
    body = serialize_calendar(lessons, events)

    return Response(
        content=body,
        media_type="text/calendar; charset=utf-8",
        headers={
            "Content-Disposition": 'inline; filename="schoolday.ics"',
            "Cache-Control": "no-cache, no-store, must-revalidate",
        },
    )
