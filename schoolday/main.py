from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from loguru import logger

from schoolday.api.external_events import router as external_events_router
from schoolday.api.ical import router as ical_router
from schoolday.api.schedule import router as schedule_router
from schoolday.api.school_years import router as school_years_router
from schoolday.core.logger import setup_logger
from schoolday.db import session as db_session
from schoolday.db.models import Base

# Initialize logger
setup_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Ensure database tables exist before serving requests."""
    logger.info("Ensuring database tables exist")
    Base.metadata.create_all(bind=db_session.get_engine())
    logger.info("Database tables verified")
    yield


app = FastAPI(title="Schoolday", lifespan=lifespan)

app.include_router(schedule_router)
app.include_router(school_years_router)
app.include_router(external_events_router)
app.include_router(ical_router)

logger.info("FastAPI application initialized")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    logger.debug(f"Request: {request.method} {request.url.path}")
    response = await call_next(request)
    logger.debug(f"Response: {response.status_code} for {request.method} {request.url.path}")
    return response
