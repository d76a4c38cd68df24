"""HTTP-level tests for the scheduling, school-year, event and calendar routes."""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from schoolday.config.settings import settings
from schoolday.db.session import get_db
from schoolday.main import app


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class TestScheduleRoutes:
    def test_auto_schedule_success(self, client, make_school_year, make_curriculum, make_learner, make_assignment):
        year = make_school_year(start=date(2020, 1, 6), end=date(2099, 12, 31))
        curriculum = make_curriculum(lesson_count=3)
        learner = make_learner()
        make_assignment(curriculum, learner, year)

        response = client.post(f"/curricula/{curriculum.id}/schedule/auto", json={"learner_id": learner.id})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "scheduled_count": 3, "remaining_count": 0}

        status_body = client.get(f"/curricula/{curriculum.id}/schedule").json()
        assert status_body["unscheduled_count"] == 0
        assert status_body["assignments"][0]["school_weekdays"] == [1, 2, 3, 4, 5]

    def test_domain_failure_is_ok_false(self, client, make_curriculum, make_learner):
        curriculum = make_curriculum()
        learner = make_learner()

        response = client.post(f"/curricula/{curriculum.id}/schedule/auto", json={"learner_id": learner.id})

        assert response.status_code == 200
        assert response.json() == {"ok": False, "error": "assignment_not_found", "message": "Assignment not found"}

    def test_missing_learner_id_is_422(self, client, make_curriculum):
        curriculum = make_curriculum()
        response = client.post(f"/curricula/{curriculum.id}/schedule/auto", json={})
        assert response.status_code == 422

    def test_clear(self, client, scheduling_setup):
        response = client.delete(f"/curricula/{scheduling_setup['curriculum'].id}/schedule")
        assert response.status_code == 200
        assert response.json() == {"cleared_count": 0}

    def test_assignment_weekdays(self, client, scheduling_setup):
        assignment_id = scheduling_setup["assignment"].id

        ok = client.put(f"/assignments/{assignment_id}/weekdays", json={"weekdays": [5, 1, 1]})
        assert ok.status_code == 200
        assert ok.json() == {"weekdays": [1, 5]}

        assert client.put(f"/assignments/{assignment_id}/weekdays", json={"weekdays": [9]}).status_code == 400
        assert client.put(f"/assignments/{assignment_id}/weekdays", json={"weekdays": list(range(8))}).status_code == 422
        assert client.put("/assignments/missing/weekdays", json={"weekdays": [1]}).status_code == 404


class TestSchoolYearRoutes:
    def test_lifecycle(self, client):
        created = client.post(
            "/school-years",
            json={"label": "2025-2026", "start_date": "2025-08-18", "end_date": "2026-05-29"},
        )
        assert created.status_code == 201
        year = created.json()
        assert year["weekdays"] == [1, 2, 3, 4, 5]

        override = client.post(
            f"/school-years/{year['id']}/overrides",
            json={"date": "2025-09-01", "kind": "exclude", "reason": "Labor Day"},
        )
        assert override.status_code == 200
        assert override.json()["kind"] == "exclude"

        dates = client.get(
            f"/school-years/{year['id']}/school-dates", params={"start": "2025-08-29", "end": "2025-09-02"}
        ).json()
        assert dates["dates"] == ["2025-08-29", "2025-09-02"]

        reflow = client.put(f"/school-years/{year['id']}/weekdays", json={"weekdays": [2, 4]})
        assert reflow.status_code == 200
        assert reflow.json() == {"weekdays": [2, 4], "moved_dates": 0, "updated_lessons": 0}

        assert client.delete(f"/school-years/overrides/{override.json()['id']}").status_code == 204
        assert client.delete(f"/school-years/{year['id']}").status_code == 204
        assert client.delete(f"/school-years/{year['id']}").status_code == 404

    def test_invalid_bounds_is_400(self, client):
        response = client.post(
            "/school-years",
            json={"label": "Backwards", "start_date": "2026-05-29", "end_date": "2025-08-18"},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "End date must be after start date"

    def test_bad_override_kind_is_422(self, client, make_school_year):
        year = make_school_year()
        response = client.post(f"/school-years/{year.id}/overrides", json={"date": "2025-09-01", "kind": "holiday"})
        assert response.status_code == 422

    def test_empty_weekdays_is_400(self, client, make_school_year):
        year = make_school_year()
        assert client.put(f"/school-years/{year.id}/weekdays", json={"weekdays": []}).status_code == 400


class TestExternalEventRoutes:
    def test_preview(self, client):
        response = client.post("/external-events/preview", json={"raw_text": "2025-09-01\n2025-09-08\n2025-09-22"})
        assert response.status_code == 200
        body = response.json()
        assert body["rule"]["type"] == "weekly"
        assert body["rule"]["anchor_weekday"] == 1
        assert body["implied_exceptions"] == ["2025-09-15"]

    def test_preview_without_dates_is_400(self, client):
        response = client.post("/external-events/preview", json={"raw_text": "tbd"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Paste at least one valid date"

    def test_create_list_delete(self, client, make_learner):
        learner = make_learner()
        created = client.post(
            "/external-events",
            json={
                "title": "Co-op",
                "category": "co-op",
                "pasted_dates": "2025-09-01\n2025-09-08\n2025-09-22",
                "learner_ids": [learner.id],
            },
        )
        assert created.status_code == 201
        event_id = created.json()["id"]

        listed = client.get("/external-events/occurrences", params={"start": "2025-09-01", "end": "2025-09-30"})
        assert listed.status_code == 200
        assert [item["date"] for item in listed.json()["occurrences"]] == ["2025-09-01", "2025-09-08", "2025-09-22"]

        assert client.delete(f"/external-events/{event_id}").status_code == 204
        assert client.delete(f"/external-events/{event_id}").status_code == 404

    def test_create_requires_learners(self, client):
        response = client.post(
            "/external-events", json={"title": "Co-op", "start_date": "2025-09-01", "learner_ids": []}
        )
        assert response.status_code == 422

    def test_create_unknown_learner_is_404(self, client):
        response = client.post(
            "/external-events", json={"title": "Co-op", "start_date": "2025-09-01", "learner_ids": ["ghost"]}
        )
        assert response.status_code == 404

    def test_reversed_window_is_400(self, client):
        response = client.get("/external-events/occurrences", params={"start": "2025-09-30", "end": "2025-09-01"})
        assert response.status_code == 400


class TestCalendarFeed:
    def test_disabled_without_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ical_token", "")
        assert client.get("/calendar/ical", params={"token": "anything"}).status_code == 403

    def test_wrong_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ical_token", "secret")
        assert client.get("/calendar/ical", params={"token": "nope"}).status_code == 401
        assert client.get("/calendar/ical").status_code == 401

    def test_feed(self, client, monkeypatch, make_school_year, make_curriculum, make_learner, make_assignment):
        monkeypatch.setattr(settings, "ical_token", "secret")
        year = make_school_year(start=date(2020, 1, 6), end=date(2099, 12, 31))
        curriculum = make_curriculum(lesson_count=2)
        learner = make_learner()
        make_assignment(curriculum, learner, year)
        client.post(f"/curricula/{curriculum.id}/schedule/auto", json={"learner_id": learner.id})

        response = client.get("/calendar/ical", params={"token": "secret"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/calendar")
        body = response.text.replace("\r\n ", "")
        assert body.startswith("BEGIN:VCALENDAR")
        assert body.count("BEGIN:VEVENT") == 2
        assert "[Math] Lesson 1 - Ada" in body
