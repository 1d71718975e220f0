from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import api  # noqa: E402
from database import AuditLog, init_database  # noqa: E402
from store import AssignmentStore  # noqa: E402

UTC = datetime.timezone.utc
NOW = datetime.datetime(2024, 3, 20, 7, 0, tzinfo=UTC)


def at(hour: int, minute: int = 0) -> datetime.datetime:
    return datetime.datetime(2024, 3, 20, hour, minute, tzinfo=UTC)


@pytest.fixture()
def env():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_database(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    store = AssignmentStore(Session)
    clock = {"now": NOW}

    store.add_staff("Alice", staff_id="alice")
    store.add_staff("Bob", staff_id="bob")
    store.create_job(title="Install New AC", status="scheduled", start_time=at(9), end_time=at(10), job_id="job1")
    store.create_job(title="Fix Leaky Faucet", status="unscheduled", start_time=at(13), end_time=at(14), job_id="job2")
    store.create_assignment({"id": "assign1", "job_id": "job1", "staff_id": "alice", "start_time": at(9), "end_time": at(10)})
    store.create_assignment({"id": "assign2", "job_id": "job2", "staff_id": "bob", "start_time": at(15), "end_time": at(16)})

    api.app.dependency_overrides[api.get_store] = lambda: store
    api.app.dependency_overrides[api.get_clock] = lambda: (lambda: clock["now"])
    client = TestClient(api.app)
    try:
        yield {"client": client, "store": store, "session": Session, "clock": clock}
    finally:
        api.app.dependency_overrides.clear()
        engine.dispose()


def _actions(env) -> list:
    with env["session"]() as session:
        return [log.action for log in session.scalars(select(AuditLog).order_by(AuditLog.id))]


def test_health(env):
    response = env["client"].get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_jobs_listing_uses_utc_timestamps(env):
    response = env["client"].get("/api/v1/jobs", params={"status": "scheduled"})
    assert response.status_code == 200
    jobs = response.json()["jobs"]
    assert [job["id"] for job in jobs] == ["job1"]
    assert jobs[0]["assignments"][0]["start_time"] == "2024-03-20T09:00:00Z"

    assert env["client"].get("/api/v1/jobs", params={"status": "bogus"}).status_code == 400


def test_grid_places_scheduled_assignments(env):
    response = env["client"].get("/api/v1/grid", params={"date": "2024-03-20"})
    assert response.status_code == 200
    body = response.json()
    assert len(body["time_slots"]) == 20
    assert body["boundaries"][-1] == "18:00"
    assert [member["id"] for member in body["staff"]] == ["alice", "bob"]
    assert [(item["assignment_id"], item["row_index"], item["start_slot"], item["slot_span"]) for item in body["placements"]] == [
        ("assign1", 0, 2, 2)
    ]

    everything = env["client"].get(
        "/api/v1/grid", params={"date": "2024-03-20", "include_unscheduled": "true"}
    ).json()
    assert [item["assignment_id"] for item in everything["placements"]] == ["assign1", "assign2"]
    assert env["client"].get("/api/v1/grid", params={"date": "20/03/2024"}).status_code == 400


def test_move_commits_and_persists(env):
    response = env["client"].post(
        "/api/v1/assignments/assign1/move", json={"staff_id": "bob", "time_slot": "10:00", "date": "2024-03-20"}
    )
    assert response.status_code == 200
    body = response.json()
    assert (body["staff_id"], body["start_time"], body["end_time"]) == (
        "bob",
        "2024-03-20T10:00:00Z",
        "2024-03-20T11:00:00Z",
    )
    stored = env["store"].get_assignment("assign1")
    assert (stored.staff_id, stored.start_time) == ("bob", at(10))
    assert _actions(env) == ["MOVE_COMMITTED"]


def test_move_onto_booked_slot_conflicts(env):
    response = env["client"].post(
        "/api/v1/assignments/assign2/move", json={"staff_id": "alice", "time_slot": "09:30", "date": "2024-03-20"}
    )
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["reason"] == "conflict"
    assert detail["conflicts"] == ["assign1"]
    assert env["store"].get_assignment("assign2").staff_id == "bob"
    assert _actions(env) == ["MOVE_REJECTED"]


def test_move_into_the_past_is_rejected(env):
    env["clock"]["now"] = at(12)
    response = env["client"].post(
        "/api/v1/assignments/assign2/move", json={"staff_id": "alice", "time_slot": "09:00", "date": "2024-03-20"}
    )
    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "past_time"


def test_move_validation_errors(env):
    client = env["client"]
    assert client.post("/api/v1/assignments/assign1/move", json={"staff_id": "bob"}).status_code == 400
    assert client.post("/api/v1/assignments/missing/move", json={"staff_id": "bob", "time_slot": "10:00"}).status_code == 404
    assert client.post("/api/v1/assignments/assign1/move", json={"staff_id": "carol", "time_slot": "10:00"}).status_code == 404
    assert client.post("/api/v1/assignments/assign1/move", json={"staff_id": "bob", "time_slot": "19:00"}).status_code == 400
    closing = client.post("/api/v1/assignments/assign1/move", json={"staff_id": "bob", "time_slot": "18:00", "date": "2024-03-20"})
    assert closing.status_code == 400
    assert env["store"].get_assignment("assign1").staff_id == "alice"


def test_create_assignment_rejects_double_booking(env):
    client = env["client"]
    payload = {
        "job_id": "job2",
        "staff_id": "alice",
        "start_time": "2024-03-20T09:30:00Z",
        "end_time": "2024-03-20T10:30:00Z",
    }
    response = client.post("/api/v1/assignments", json=payload)
    assert response.status_code == 409
    assert response.json()["detail"]["conflicts"] == ["assign1"]

    payload.update(start_time="2024-03-20T10:00:00Z", end_time="2024-03-20T11:00:00Z")
    created = client.post("/api/v1/assignments", json=payload)
    assert created.status_code == 201
    assert created.json()["start_time"] == "2024-03-20T10:00:00Z"


def test_patch_and_delete_assignment(env):
    client = env["client"]
    patched = client.patch("/api/v1/assignments/assign1", json={"start_time": "2024-03-20T09:30:00Z"})
    assert patched.status_code == 200
    assert patched.json()["start_time"] == "2024-03-20T09:30:00Z"

    clash = client.patch("/api/v1/assignments/assign2", json={"staff_id": "alice", "start_time": "2024-03-20T09:00:00Z", "end_time": "2024-03-20T10:00:00Z"})
    assert clash.status_code == 409

    assert client.patch("/api/v1/assignments/missing", json={}).status_code == 404
    assert client.delete("/api/v1/assignments/assign1").status_code == 200
    assert env["store"].list_assignments(job_id="job1") == []
    assert _actions(env) == ["ASSIGNMENT_EDIT", "ASSIGNMENT_DELETE"]


def test_create_and_update_job(env):
    client = env["client"]
    created = client.post(
        "/api/v1/jobs",
        json={"title": "Quote", "start_time": "2024-03-21T09:00:00Z", "end_time": "2024-03-21T10:00:00Z"},
    )
    assert created.status_code == 201
    job_id = created.json()["id"]
    assert created.json()["status"] == "unscheduled"

    updated = client.patch(f"/api/v1/jobs/{job_id}", json={"status": "scheduled"})
    assert updated.status_code == 200
    assert updated.json()["status"] == "scheduled"
    assert client.patch(f"/api/v1/jobs/{job_id}", json={"status": "archived"}).status_code == 400
    assert client.post("/api/v1/jobs", json={"title": "Bad", "start_time": "soon"}).status_code == 400


def test_non_string_actor_is_recorded_as_text(env):
    response = env["client"].post(
        "/api/v1/assignments/assign1/move",
        json={"staff_id": "bob", "time_slot": "10:00", "date": "2024-03-20", "actor": 42},
    )
    assert response.status_code == 200
    with env["session"]() as session:
        users = [log.user_id for log in session.scalars(select(AuditLog))]
    assert users == ["42"]
