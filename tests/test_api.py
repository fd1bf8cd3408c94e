"""
Integration Tests: FastAPI Endpoints
Uses TestClient against an in-memory backend; no hosted database is required.
"""
from __future__ import annotations

from datetime import date

import pytest
from fastapi.testclient import TestClient

from api.auth.security import Role, User, create_access_token
from api.main import create_app
from fakes import FakeBackend, grade_row, student_row


# ── Helpers ────────────────────────────────────────────────────────────────────
def seeded_backend() -> FakeBackend:
    return FakeBackend({
        "students": [
            student_row("1", minutes=1, program="CS", status="active",    gpa=3.2, current_semester=3),
            student_row("2", minutes=2, program="CS", status="graduated", gpa=3.6, current_semester=8),
            student_row("3", minutes=3, program="EE", status="active",    gpa=2.8, current_semester=3),
            student_row("4", minutes=4, program="EE", status="dropout",   gpa=0.0, current_semester=1),
        ],
        "grades": [
            grade_row("g1", student_id="1", minutes=1),
            grade_row("g2", student_id="2", minutes=2, course_id="CRS0002", grade="B"),
        ],
    })


@pytest.fixture
def backend() -> FakeBackend:
    return seeded_backend()


@pytest.fixture
def client(backend):
    async def factory():
        return backend

    with TestClient(create_app(backend_factory=factory)) as c:
        yield c


def login(client, email: str, password: str) -> dict:
    resp = client.post("/auth/token", data={"username": email, "password": password})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
def admin(client) -> dict:
    return login(client, "admin@campus.edu", "admin123")


@pytest.fixture
def lecturer(client) -> dict:
    return login(client, "lecturer@campus.edu", "lecturer123")


NEW_STUDENT = {
    "student_number":   "2024123456",
    "name":             "Ada Lovelace",
    "program":          "Mathematics",
    "cohort_year":      2024,
    "status":           "active",
    "gpa":              0.0,
    "current_semester": 1,
}


# ── Auth Tests ─────────────────────────────────────────────────────────────────
class TestAuth:
    def test_health_no_auth(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_login_wrong_password(self, client):
        resp = client.post("/auth/token", data={"username": "admin@campus.edu", "password": "wrong"})
        assert resp.status_code == 401

    def test_me(self, client, lecturer):
        resp = client.get("/auth/me", headers=lecturer)
        assert resp.status_code == 200
        assert resp.json()["role"] == "LECTURER"
        assert resp.json()["department"] == "Computer Science"

    def test_no_token(self, client):
        assert client.get("/students").status_code == 401

    def test_bad_token(self, client):
        resp = client.get("/students", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_token_for_removed_account(self, client):
        ghost = User(id="deleted-profile", email="ghost@campus.edu", role=Role.ADMIN, full_name="Ghost")
        headers = {"Authorization": f"Bearer {create_access_token(ghost)}"}
        assert client.get("/auth/me", headers=headers).status_code == 401

    def test_email_is_case_insensitive(self, client):
        assert login(client, "Admin@Campus.edu", "admin123")


# ── Student listing ────────────────────────────────────────────────────────────
class TestStudentList:
    def test_newest_first(self, client, lecturer):
        resp = client.get("/students", headers=lecturer)
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 4
        assert [s["id"] for s in body["data"]] == ["4", "3", "2", "1"]
        assert body["realtime"]["subscribed"] is True
        assert body["error"] is None

    def test_filter_by_program(self, client, lecturer):
        body = client.get("/students", params={"program": "EE"}, headers=lecturer).json()
        assert {s["id"] for s in body["data"]} == {"3", "4"}

    def test_filter_by_status(self, client, lecturer):
        body = client.get("/students", params={"status": "graduated"}, headers=lecturer).json()
        assert [s["id"] for s in body["data"]] == ["2"]

    def test_search(self, client, lecturer):
        body = client.get("/students", params={"search": "student 3"}, headers=lecturer).json()
        assert [s["id"] for s in body["data"]] == ["3"]

    def test_sort_and_paginate(self, client, lecturer):
        params = {"sort_by": "gpa", "descending": False, "page": 2, "page_size": 2}
        body = client.get("/students", params=params, headers=lecturer).json()
        assert body["total_pages"] == 2
        assert [s["id"] for s in body["data"]] == ["1", "2"]

    def test_unknown_sort_field(self, client, lecturer):
        resp = client.get("/students", params={"sort_by": "password"}, headers=lecturer)
        assert resp.status_code == 400

    def test_invalid_status(self, client, lecturer):
        resp = client.get("/students", params={"status": "expelled"}, headers=lecturer)
        assert resp.status_code == 422

    def test_get_one(self, client, lecturer):
        resp = client.get("/students/2", headers=lecturer)
        assert resp.status_code == 200
        assert resp.json()["status"] == "graduated"

    def test_get_missing(self, client, lecturer):
        assert client.get("/students/999", headers=lecturer).status_code == 404


# ── Student mutations ──────────────────────────────────────────────────────────
class TestStudentMutations:
    def test_admin_creates(self, client, admin, backend):
        resp = client.post("/students", json=NEW_STUDENT, headers=admin)
        assert resp.status_code == 201
        assert resp.json()["id"]
        assert any(r["student_number"] == "2024123456" for r in backend.tables["students"])

    def test_lecturer_cannot_create(self, client, lecturer):
        assert client.post("/students", json=NEW_STUDENT, headers=lecturer).status_code == 403

    def test_markup_stripped(self, client, admin):
        payload = {**NEW_STUDENT, "name": "<script>x</script><b>Ada</b>"}
        resp = client.post("/students", json=payload, headers=admin)
        assert resp.status_code == 201
        assert resp.json()["name"] == "xAda"

    @pytest.mark.parametrize("override", [
        {"student_number": "12ab"},
        {"name": ""},
        {"gpa": 4.5},
        {"current_semester": 15},
        {"cohort_year": 1999},
        {"cohort_year": date.today().year + 1},
    ])
    def test_invalid_payload(self, client, admin, override):
        resp = client.post("/students", json={**NEW_STUDENT, **override}, headers=admin)
        assert resp.status_code == 422

    def test_duplicate_number(self, client, admin):
        payload = {**NEW_STUDENT, "student_number": student_row("1")["student_number"]}
        resp = client.post("/students", json=payload, headers=admin)
        assert resp.status_code == 409

    def test_update(self, client, admin, backend):
        resp = client.patch("/students/3", json={"status": "on_leave"}, headers=admin)
        assert resp.status_code == 200
        assert resp.json()["status"] == "on_leave"

    def test_update_nothing(self, client, admin):
        assert client.patch("/students/3", json={}, headers=admin).status_code == 400

    def test_update_missing(self, client, admin):
        assert client.patch("/students/999", json={"gpa": 3.0}, headers=admin).status_code == 404

    def test_delete(self, client, admin, backend):
        assert client.delete("/students/4", headers=admin).status_code == 204
        assert all(r["id"] != "4" for r in backend.tables["students"])


# ── Grades ─────────────────────────────────────────────────────────────────────
class TestGrades:
    def test_filter_by_student(self, client, lecturer):
        resp = client.get("/grades", params={"student_id": "1"}, headers=lecturer)
        assert resp.status_code == 200
        assert [g["id"] for g in resp.json()] == ["g1"]

    def test_all(self, client, lecturer):
        assert [g["id"] for g in client.get("/grades", headers=lecturer).json()] == ["g2", "g1"]


# ── Dashboard ──────────────────────────────────────────────────────────────────
class TestDashboard:
    def test_stats(self, client, lecturer):
        resp = client.get("/dashboard/stats", headers=lecturer)
        assert resp.status_code == 200
        body = resp.json()
        stats = body["stats"]
        assert stats["total_students"] == 4
        assert stats["active_students"] == 2
        assert stats["graduation_rate"] == pytest.approx(0.25)
        assert stats["dropout_rate"] == pytest.approx(0.25)
        assert stats["average_gpa"] == pytest.approx(3.2)
        assert body["realtime"]["subscribed"] is True

    def test_refresh_failure_keeps_snapshot(self, client, lecturer, backend):
        backend.query_error = RuntimeError("connection reset")
        body = client.post("/dashboard/refresh", headers=lecturer).json()
        assert body["error"] == "connection reset"
        assert body["stats"]["total_students"] == 4


# ── Realtime ───────────────────────────────────────────────────────────────────
class TestRealtime:
    def test_status(self, client, lecturer):
        body = client.get("/realtime/status", headers=lecturer).json()
        assert set(body) == {"students", "grades", "stats"}
        assert all(s["state"] == "subscribed" for s in body.values())

    def test_reconnect(self, client, lecturer, backend):
        before = len(backend.channels)
        body = client.post("/realtime/reconnect", headers=lecturer).json()
        assert all(s["retry_count"] == 0 for s in body.values())
        assert len(backend.channels) == before + 3

    def test_notifications_limit(self, client, lecturer):
        resp = client.get("/realtime/notifications", params={"limit": 5}, headers=lecturer)
        assert resp.status_code == 200
        assert len(resp.json()) <= 5
