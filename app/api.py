"""FastAPI surface over the assignment store and the grid engine.

Moves posted here go through the same :class:`drag.DragController` the desktop
grid uses, evaluated against the persisted assignments at request time, so a
stale client snapshot cannot double-book a staff member.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
import datetime
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure absolute imports (e.g., "import database") resolve when served from the repo root.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import PersistenceError, RecordNotFound, SessionLocal, init_database  # noqa: E402
from drag import DragController, DragPayload, DropCommitted, DropIgnored, RejectionReason  # noqa: E402
from overlap import conflicting_assignments, find_conflicts  # noqa: E402
from placement import resolve_placements  # noqa: E402
from schemas import Assignment, JobWithAssignments, all_assignments  # noqa: E402
from store import AssignmentStore  # noqa: E402
from timegrid import BOUNDARY_LABELS, TIME_SLOTS, UTC, ensure_utc, parse_instant, to_iso  # noqa: E402


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    yield


app = FastAPI(title="Job Grid Scheduler API", version="0.1", lifespan=lifespan)
default_store = AssignmentStore(SessionLocal)


def get_store() -> AssignmentStore:
    return default_store


def get_clock() -> Callable[[], datetime.datetime]:
    return lambda: datetime.datetime.now(UTC)


@app.exception_handler(RecordNotFound)
async def _not_found_handler(_: Request, exc: RecordNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def _persistence_handler(_: Request, exc: PersistenceError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def _parse_date(value: Optional[str], clock: Callable[[], datetime.datetime]) -> datetime.date:
    if not value:
        return ensure_utc(clock()).date()
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD")


def _serialize_assignment(assignment: Assignment) -> Dict[str, Any]:
    return {
        "id": assignment.id,
        "job_id": assignment.job_id,
        "staff_id": assignment.staff_id,
        "start_time": to_iso(assignment.start_time),
        "end_time": to_iso(assignment.end_time),
    }


def _serialize_job(job: JobWithAssignments) -> Dict[str, Any]:
    return {
        "id": job.id,
        "title": job.title,
        "description": job.description,
        "status": job.status,
        "start_time": to_iso(job.start_time),
        "end_time": to_iso(job.end_time),
        "assignments": [_serialize_assignment(item) for item in job.assignments],
    }


def _audit(store: AssignmentStore, actor: str, action: str, target: Optional[str], payload: Optional[Dict[str, Any]] = None) -> None:
    store.record_audit(actor, action, target_id=target, payload=payload)


def _actor(payload: Optional[Dict[str, Any]]) -> str:
    return str((payload or {}).get("actor") or "api").strip() or "api"


def _instant(payload: Dict[str, Any], key: str) -> datetime.datetime:
    try:
        return parse_instant(payload.get(key))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{key} must be an ISO-8601 timestamp")


def _reject_overlap(store: AssignmentStore, staff_id: str, start, end, *, exclude_id: Optional[str] = None) -> None:
    conflicts = conflicting_assignments(
        start, end, staff_id, store.list_assignments(staff_id=staff_id), exclude_id=exclude_id
    )
    if conflicts:
        raise HTTPException(
            status_code=409,
            detail={
                "reason": RejectionReason.CONFLICT.value,
                "message": "This time slot overlaps with another job for this staff member.",
                "conflicts": [item.id for item in conflicts],
            },
        )


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/staff")
def staff_list(store: AssignmentStore = Depends(get_store)) -> JSONResponse:
    staff = store.list_staff()
    return JSONResponse(content=jsonable_encoder({"staff": [member.model_dump() for member in staff]}))


@app.get("/api/v1/jobs")
def job_list(status: Optional[str] = Query(None), store: AssignmentStore = Depends(get_store)) -> JSONResponse:
    try:
        jobs = store.list_jobs_with_assignments(status=status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(content={"jobs": [_serialize_job(job) for job in jobs]})


@app.post("/api/v1/jobs")
def create_job(payload: Dict[str, Any], store: AssignmentStore = Depends(get_store)) -> JSONResponse:
    try:
        job = store.create_job(
            title=payload.get("title") or "",
            description=payload.get("description") or "",
            status=payload.get("status") or "unscheduled",
            start_time=_instant(payload, "start_time"),
            end_time=_instant(payload, "end_time"),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _audit(store, _actor(payload), "JOB_CREATE", job.id, {"title": job.title})
    return JSONResponse(status_code=201, content=_serialize_job(job))


@app.patch("/api/v1/jobs/{job_id}")
def update_job(job_id: str, payload: Dict[str, Any], store: AssignmentStore = Depends(get_store)) -> JSONResponse:
    changes = {
        key: payload[key]
        for key in ("title", "description", "status", "start_time", "end_time")
        if key in payload
    }
    try:
        job = store.update_job(job_id, changes)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _audit(store, _actor(payload), "JOB_EDIT", job.id, {"fields": sorted(changes)})
    return JSONResponse(content=_serialize_job(job))


@app.get("/api/v1/grid")
def grid(
    date: Optional[str] = Query(None),
    include_unscheduled: bool = Query(False),
    store: AssignmentStore = Depends(get_store),
    clock=Depends(get_clock),
) -> JSONResponse:
    day = _parse_date(date, clock)
    staff = store.list_staff()
    jobs = store.list_jobs_with_assignments()
    placements = resolve_placements(jobs, staff, only_scheduled=not include_unscheduled, day=day)
    conflicts = [
        [first.id, second.id]
        for first, second in find_conflicts(all_assignments(jobs))
    ]
    return JSONResponse(
        content=jsonable_encoder(
            {
                "date": day.isoformat(),
                "time_slots": TIME_SLOTS,
                "boundaries": BOUNDARY_LABELS,
                "staff": [member.model_dump() for member in staff],
                "placements": [asdict(item) for item in placements],
                "conflicts": conflicts,
            }
        )
    )


@app.post("/api/v1/assignments")
def create_assignment(payload: Dict[str, Any], store: AssignmentStore = Depends(get_store)) -> JSONResponse:
    job_id = payload.get("job_id")
    staff_id = payload.get("staff_id")
    if not job_id or not staff_id:
        raise HTTPException(status_code=400, detail="job_id and staff_id are required")
    start = _instant(payload, "start_time")
    end = _instant(payload, "end_time")
    _reject_overlap(store, str(staff_id), start, end)
    try:
        assignment = store.create_assignment(
            {"job_id": job_id, "staff_id": staff_id, "start_time": start, "end_time": end}
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _audit(store, _actor(payload), "ASSIGNMENT_CREATE", assignment.id, _serialize_assignment(assignment))
    return JSONResponse(status_code=201, content=_serialize_assignment(assignment))


@app.patch("/api/v1/assignments/{assignment_id}")
def update_assignment(
    assignment_id: str,
    payload: Dict[str, Any],
    store: AssignmentStore = Depends(get_store),
) -> JSONResponse:
    current = store.get_assignment(assignment_id)
    patch = {key: payload[key] for key in ("staff_id", "start_time", "end_time") if key in payload}
    staff_id = str(patch.get("staff_id") or current.staff_id)
    start = _instant(patch, "start_time") if "start_time" in patch else current.start_time
    end = _instant(patch, "end_time") if "end_time" in patch else current.end_time
    _reject_overlap(store, staff_id, start, end, exclude_id=assignment_id)
    try:
        assignment = store.update_assignment(assignment_id, patch)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _audit(store, _actor(payload), "ASSIGNMENT_EDIT", assignment.id, _serialize_assignment(assignment))
    return JSONResponse(content=_serialize_assignment(assignment))


@app.delete("/api/v1/assignments/{assignment_id}")
def delete_assignment(
    assignment_id: str,
    actor: str = Query("api"),
    store: AssignmentStore = Depends(get_store),
) -> JSONResponse:
    store.delete_assignment(assignment_id)
    _audit(store, actor, "ASSIGNMENT_DELETE", assignment_id)
    return JSONResponse(content={"deleted": assignment_id})


@app.post("/api/v1/assignments/{assignment_id}/move")
def move_assignment(
    assignment_id: str,
    payload: Dict[str, Any],
    store: AssignmentStore = Depends(get_store),
    clock=Depends(get_clock),
) -> JSONResponse:
    staff_id = payload.get("staff_id")
    time_slot = payload.get("time_slot")
    if not staff_id or not time_slot:
        raise HTTPException(status_code=400, detail="staff_id and time_slot are required")
    staff_id = str(staff_id)
    if staff_id not in {member.id for member in store.list_staff()}:
        raise HTTPException(status_code=404, detail=f"Staff with id {staff_id} was not found.")
    grid_date = _parse_date(payload.get("date"), clock)

    jobs = store.list_jobs_with_assignments()
    current = next((item for item in all_assignments(jobs) if item.id == assignment_id), None)
    if current is None:
        raise HTTPException(status_code=404, detail=f"Assignment with id {assignment_id} was not found.")

    controller = DragController(store.update_assignment, now=clock, grid_date=grid_date)
    result = controller.drop(
        DragPayload(job_id=current.job_id, assignment_id=assignment_id),
        staff_id,
        str(time_slot),
        jobs,
    )
    actor = _actor(payload)
    if isinstance(result, DropIgnored):
        raise HTTPException(status_code=400, detail=f"'{time_slot}' is not a slot on the grid")
    if not isinstance(result, DropCommitted):
        status_code = {
            RejectionReason.PAST_TIME: 422,
            RejectionReason.CONFLICT: 409,
            RejectionReason.PERSISTENCE_FAILED: 503,
        }[result.reason]
        _audit(store, actor, "MOVE_REJECTED", assignment_id, {"reason": result.reason.value})
        raise HTTPException(
            status_code=status_code,
            detail={
                "reason": result.reason.value,
                "message": result.message,
                "conflicts": [item.id for item in result.conflicts],
            },
        )
    _audit(store, actor, "MOVE_COMMITTED", assignment_id, result.move.as_patch())
    return JSONResponse(content=_serialize_assignment(store.get_assignment(assignment_id)))


def serve_api(host: str = "127.0.0.1", port: int = 8000) -> None:
    import uvicorn

    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    serve_api()
