"""Root conftest for all tests.

This file makes shared fixtures available across all test modules.
"""

from collections.abc import Callable
from contextlib import contextmanager
from datetime import date

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from schoolday.db.models import (
    Base,
    Curriculum,
    CurriculumAssignment,
    CurriculumAssignmentDay,
    Learner,
    Lesson,
    SchoolDay,
    SchoolYear,
    Subject,
)


# Enable foreign key constraints for SQLite
@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints in SQLite connections."""
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture(scope="function")
def db_session(monkeypatch):
    """
    Provides a transactional in-memory SQLite DB session for tests.

    This fixture:
    - Creates an isolated in-memory SQLite database per test
    - Patches the engine getters to use it
    - Patches get_session() to return the test session
    - Uses transaction rollback for cleanup, so service-level commits never
      reach the database

    Usage:
        def test_something(db_session):
            db_session.add(SchoolYear(...))
            db_session.commit()
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
    )

    def mock_get_engine():
        return engine

    monkeypatch.setattr("schoolday.db.session._get_engine", mock_get_engine)
    monkeypatch.setattr("schoolday.db.session.get_engine", mock_get_engine)

    Base.metadata.create_all(engine)

    connection = engine.connect()
    transaction = connection.begin()

    test_session_local = sessionmaker(bind=connection, autocommit=False, autoflush=False)
    session = test_session_local()

    @contextmanager
    def mock_get_session():
        yield session

    import schoolday.db.session as session_module

    monkeypatch.setattr(session_module, "get_session", mock_get_session)

    try:
        yield session
    finally:
        session.close()
        if transaction.is_active:
            transaction.rollback()
        connection.close()
        engine.dispose()


@pytest.fixture
def make_school_year(db_session: Session) -> Callable[..., SchoolYear]:
    """Factory for a school year with default weekdays (Monday-Friday)."""

    def _make(
        start: date = date(2025, 8, 18),
        end: date = date(2026, 5, 29),
        weekdays: tuple[int, ...] = (1, 2, 3, 4, 5),
        label: str = "2025-2026",
    ) -> SchoolYear:
        year = SchoolYear(label=label, start_date=start, end_date=end)
        db_session.add(year)
        db_session.flush()
        db_session.add_all(SchoolDay(school_year_id=year.id, weekday=weekday) for weekday in weekdays)
        db_session.flush()
        return year

    return _make


@pytest.fixture
def make_curriculum(db_session: Session) -> Callable[..., Curriculum]:
    """Factory for a curriculum (with its subject) holding ``lesson_count`` planned lessons."""

    def _make(name: str = "Saxon Math 5", subject: str = "Math", lesson_count: int = 5) -> Curriculum:
        subject_row = Subject(name=subject)
        db_session.add(subject_row)
        db_session.flush()
        curriculum = Curriculum(subject_id=subject_row.id, name=name)
        db_session.add(curriculum)
        db_session.flush()
        db_session.add_all(
            Lesson(curriculum_id=curriculum.id, title=f"Lesson {index + 1}", order_index=index)
            for index in range(lesson_count)
        )
        db_session.flush()
        return curriculum

    return _make


@pytest.fixture
def make_learner(db_session: Session) -> Callable[..., Learner]:
    def _make(name: str = "Ada") -> Learner:
        learner = Learner(name=name)
        db_session.add(learner)
        db_session.flush()
        return learner

    return _make


@pytest.fixture
def make_assignment(db_session: Session) -> Callable[..., CurriculumAssignment]:
    """Factory linking curriculum, learner and year, with optional custom weekdays."""

    def _make(
        curriculum: Curriculum,
        learner: Learner,
        year: SchoolYear,
        custom_weekdays: tuple[int, ...] = (),
    ) -> CurriculumAssignment:
        assignment = CurriculumAssignment(curriculum_id=curriculum.id, learner_id=learner.id, school_year_id=year.id)
        db_session.add(assignment)
        db_session.flush()
        db_session.add_all(
            CurriculumAssignmentDay(assignment_id=assignment.id, weekday=weekday) for weekday in custom_weekdays
        )
        db_session.flush()
        return assignment

    return _make


@pytest.fixture
def scheduling_setup(make_school_year, make_curriculum, make_learner, make_assignment):
    """One Mon-Fri year 2025-08-18..2026-05-29, one learner, one five-lesson curriculum."""
    year = make_school_year()
    curriculum = make_curriculum()
    learner = make_learner()
    assignment = make_assignment(curriculum, learner, year)
    return {"year": year, "curriculum": curriculum, "learner": learner, "assignment": assignment}
