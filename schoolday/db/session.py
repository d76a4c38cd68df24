from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from schoolday.config.settings import settings
from schoolday.core.errors import BUSINESS_ERRORS


def _is_postgresql(url: str) -> bool:
    lowered = url.lower()
    return "postgresql" in lowered or "postgres" in lowered


def _validate_postgresql_driver() -> None:
    """Validate PostgreSQL driver is installed when using PostgreSQL.

    Must actually import psycopg2 (not just find_spec) because SQLAlchemy
    will try to import it when creating the engine.
    """
    try:
        import psycopg2  # noqa: F401

        logger.info("[DB] PostgreSQL driver (psycopg2) is available")
    except ImportError as e:
        logger.error("[DB] PostgreSQL driver (psycopg2) is not installed. Install with: pip install 'schoolday[postgres]'")
        raise ImportError("PostgreSQL driver required. Install with: pip install psycopg2-binary") from e


_engine = None
_SessionLocal = None


def _get_engine():
    """Get or create the database engine (lazy initialization).

    The engine is only created when first accessed, not at import time, so
    tests and the CLI can patch the URL before anything connects.
    """
    global _engine
    if _engine is None:
        logger.info(f"[DB] Initializing database engine: {settings.database_url}")

        connect_args = {}
        if "sqlite" in settings.database_url.lower():
            connect_args = {"check_same_thread": False}
        elif _is_postgresql(settings.database_url):
            _validate_postgresql_driver()
            connect_args = {
                "connect_timeout": 10,
                "application_name": "schoolday",
            }

        _engine = create_engine(
            settings.database_url,
            connect_args=connect_args,
            echo=False,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
        logger.info("[DB] Database engine initialized")
    return _engine


def get_engine():
    """Get or create the database engine (public API)."""
    return _get_engine()


def _get_session_local():
    """Get or create the session factory (lazy initialization)."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_get_engine())
        logger.info("[DB] Database session factory initialized")
    return _SessionLocal


def check_connection() -> None:
    """Run SELECT 1 against the configured database.

    Raises:
        Exception: Whatever the driver raises when the database is unreachable
    """
    with get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info("[DB] Database connection test successful")


def get_db() -> Generator[Session, None, None]:
    """Get database session for FastAPI dependencies.

    This is a plain generator function (NOT a context manager) that FastAPI
    can use directly with Depends(). Services commit their own unit of work;
    anything left uncommitted is discarded when the session closes.

    For non-FastAPI code that needs a context manager, use get_session() instead.

    Yields:
        Session: SQLAlchemy database session
    """
    session = _get_session_local()()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get database session context manager.

    Commits on clean exit. Rolls back and re-raises on error:
    - HTTPException and business errors (not found, invalid input) are
      re-raised without being logged as database errors
    - anything else is logged with its traceback first
    """
    session = _get_session_local()()
    try:
        yield session
        if session.dirty or session.new or session.deleted:
            session.commit()
            logger.debug("[DB] Database session committed")
    except HTTPException:
        session.rollback()
        raise
    except BUSINESS_ERRORS:
        logger.debug("[DB] Business error in session, rolling back")
        session.rollback()
        raise
    except Exception as e:
        logger.error(f"[DB] Database session error, rolling back: {type(e).__name__}: {e}")
        logger.exception("Full exception traceback:")
        session.rollback()
        raise
    finally:
        session.close()
