from __future__ import annotations

import datetime
import json
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, selectinload, sessionmaker

from timegrid import ensure_utc, parse_instant


DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = f"sqlite:///{(DATA_DIR / 'scheduler.db').as_posix()}"
JOB_STATUS_CHOICES = {"scheduled", "unscheduled"}
ASSIGNMENT_PATCH_FIELDS = {"staff_id", "start_time", "end_time"}


class RecordNotFound(LookupError):
    """Raised when a staff member, job or assignment id does not exist."""


class PersistenceError(RuntimeError):
    """Raised when the database cannot complete a read or write."""


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for staff/job/assignment tables living in scheduler.db."""

    pass


class Staff(Base):
    __tablename__ = "staff"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(160), nullable=False)
    description: Mapped[str] = mapped_column(String(2000), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="unscheduled")
    start_time: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    assignments: Mapped[List["Assignment"]] = relationship(
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="Assignment.position",
    )


class Assignment(Base):
    __tablename__ = "assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    job_id: Mapped[str] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False)
    staff_id: Mapped[str] = mapped_column(ForeignKey("staff.id"), nullable=False)
    start_time: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Insertion order within the job; the grid never sorts assignments by time.
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    job: Mapped[Job] = relationship(back_populates="assignments")


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Assignment")
    target_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_database(bind=None) -> None:
    bind = bind or engine
    Base.metadata.create_all(bind)
    with bind.begin() as conn:
        columns = {row[1]: True for row in conn.execute(text("PRAGMA table_info(assignments)"))}
        if "position" not in columns:
            conn.execute(text("ALTER TABLE assignments ADD COLUMN position INTEGER NOT NULL DEFAULT 0"))
        job_columns = {row[1]: True for row in conn.execute(text("PRAGMA table_info(jobs)"))}
        if "description" not in job_columns:
            conn.execute(text("ALTER TABLE jobs ADD COLUMN description VARCHAR(2000) NOT NULL DEFAULT ''"))


def _coerce_instant(value: Any, label: str) -> datetime.datetime:
    if isinstance(value, (str, datetime.datetime)):
        return parse_instant(value)
    raise TypeError(f"{label} must be an ISO timestamp or datetime instance.")


def _check_interval(start: datetime.datetime, end: datetime.datetime, label: str) -> None:
    if ensure_utc(end) <= ensure_utc(start):
        raise ValueError(f"{label} end time must be after start time.")


def _normalize_status(status: Optional[str]) -> str:
    normalized = (status or "unscheduled").strip().lower()
    if normalized not in JOB_STATUS_CHOICES:
        raise ValueError(f"Unsupported job status '{status}'.")
    return normalized


def _get_or_raise(session, model, record_id: str):
    record = session.get(model, record_id)
    if record is None:
        raise RecordNotFound(f"{model.__name__} with id {record_id} was not found.")
    return record


def list_staff(session) -> List[Staff]:
    stmt = select(Staff).order_by(Staff.name.asc(), Staff.id.asc())
    return list(session.scalars(stmt))


def add_staff(session, name: str, *, staff_id: Optional[str] = None) -> Staff:
    name = (name or "").strip()
    if not name:
        raise ValueError("Staff name is required.")
    member = Staff(id=staff_id or _new_id(), name=name)
    session.add(member)
    session.commit()
    session.refresh(member)
    return member


def list_jobs(session, *, status: Optional[str] = None) -> List[Job]:
    stmt = select(Job).options(selectinload(Job.assignments)).order_by(Job.start_time, Job.id)
    if status and status.lower() != "all":
        stmt = stmt.where(Job.status == _normalize_status(status))
    return list(session.scalars(stmt))


def get_job(session, job_id: str) -> Job:
    return _get_or_raise(session, Job, job_id)


def create_job(
    session,
    *,
    title: str,
    start_time: Any,
    end_time: Any,
    description: str = "",
    status: str = "unscheduled",
    job_id: Optional[str] = None,
) -> Job:
    title = (title or "").strip()
    if not title:
        raise ValueError("Job title is required.")
    start = _coerce_instant(start_time, "Job start_time")
    end = _coerce_instant(end_time, "Job end_time")
    _check_interval(start, end, "Job")
    job = Job(
        id=job_id or _new_id(),
        title=title,
        description=(description or "").strip(),
        status=_normalize_status(status),
        start_time=start,
        end_time=end,
    )
    session.add(job)
    session.commit()
    session.refresh(job)
    return job


def update_job(session, job_id: str, changes: Dict[str, Any]) -> Job:
    job = get_job(session, job_id)
    _apply_job_changes(job, changes)
    session.commit()
    session.refresh(job)
    return job


def _apply_job_changes(job: Job, changes: Dict[str, Any]) -> None:
    if "title" in changes:
        title = (changes.get("title") or "").strip()
        if not title:
            raise ValueError("Job title is required.")
        job.title = title
    if "description" in changes:
        job.description = (changes.get("description") or "").strip()
    if "status" in changes:
        job.status = _normalize_status(changes.get("status"))
    start = _coerce_instant(changes["start_time"], "Job start_time") if "start_time" in changes else job.start_time
    end = _coerce_instant(changes["end_time"], "Job end_time") if "end_time" in changes else job.end_time
    _check_interval(start, end, "Job")
    job.start_time = start
    job.end_time = end


def list_assignments(
    session,
    *,
    job_id: Optional[str] = None,
    staff_id: Optional[str] = None,
) -> List[Assignment]:
    stmt = select(Assignment).order_by(Assignment.job_id, Assignment.position, Assignment.id)
    if job_id:
        stmt = stmt.where(Assignment.job_id == job_id)
    if staff_id:
        stmt = stmt.where(Assignment.staff_id == staff_id)
    return list(session.scalars(stmt))


def _next_position(session, job_id: str) -> int:
    # Positions are never reused after a delete.
    current = session.scalar(select(func.max(Assignment.position)).where(Assignment.job_id == job_id))
    return 0 if current is None else current + 1


def get_assignment(session, assignment_id: str) -> Assignment:
    return _get_or_raise(session, Assignment, assignment_id)


def create_assignment(session, payload: Dict[str, Any]) -> Assignment:
    job_id = payload.get("job_id")
    staff_id = payload.get("staff_id")
    if not job_id or not staff_id:
        raise ValueError("Assignment job_id and staff_id are required.")
    job = get_job(session, str(job_id))
    _get_or_raise(session, Staff, str(staff_id))
    start = _coerce_instant(payload.get("start_time"), "Assignment start_time")
    end = _coerce_instant(payload.get("end_time"), "Assignment end_time")
    _check_interval(start, end, "Assignment")
    assignment = Assignment(
        id=str(payload.get("id") or _new_id()),
        job_id=job.id,
        staff_id=str(staff_id),
        start_time=start,
        end_time=end,
        position=_next_position(session, job.id),
    )
    session.add(assignment)
    session.commit()
    session.refresh(assignment)
    return assignment


def update_assignment(session, assignment_id: str, patch: Dict[str, Any]) -> Assignment:
    unknown = set(patch or {}) - ASSIGNMENT_PATCH_FIELDS
    if unknown:
        raise ValueError(f"Unsupported assignment fields: {', '.join(sorted(unknown))}.")
    assignment = get_assignment(session, assignment_id)
    if "staff_id" in patch:
        staff_id = str(patch["staff_id"] or "")
        _get_or_raise(session, Staff, staff_id)
        assignment.staff_id = staff_id
    start = (
        _coerce_instant(patch["start_time"], "Assignment start_time")
        if "start_time" in patch
        else assignment.start_time
    )
    end = _coerce_instant(patch["end_time"], "Assignment end_time") if "end_time" in patch else assignment.end_time
    _check_interval(start, end, "Assignment")
    assignment.start_time = start
    assignment.end_time = end
    session.commit()
    session.refresh(assignment)
    return assignment


def delete_assignment(session, assignment_id: str) -> None:
    assignment = session.get(Assignment, assignment_id)
    if not assignment:
        return
    session.delete(assignment)
    session.commit()


def replace_job_assignments(session, job_id: str, assignments: Iterable[Dict[str, Any]]) -> List[Assignment]:
    job = get_job(session, job_id)
    _swap_assignments(session, job, assignments)
    session.commit()
    return list(job.assignments)


def save_job_edits(
    session,
    job_id: str,
    changes: Dict[str, Any],
    assignments: Iterable[Dict[str, Any]],
) -> Job:
    """Apply job field changes and swap its assignment list in one commit (job editor save)."""
    job = get_job(session, job_id)
    _apply_job_changes(job, changes)
    _swap_assignments(session, job, assignments)
    session.commit()
    session.refresh(job)
    return job


def _swap_assignments(session, job: Job, assignments: Iterable[Dict[str, Any]]) -> None:
    rows: List[Assignment] = []
    for position, payload in enumerate(assignments):
        staff_id = payload.get("staff_id")
        if not staff_id:
            raise ValueError("Every assignment needs a staff member.")
        _get_or_raise(session, Staff, str(staff_id))
        start = _coerce_instant(payload.get("start_time"), "Assignment start_time")
        end = _coerce_instant(payload.get("end_time"), "Assignment end_time")
        _check_interval(start, end, "Assignment")
        rows.append(
            Assignment(
                id=_new_id(),
                job_id=job.id,
                staff_id=str(staff_id),
                start_time=start,
                end_time=end,
                position=position,
            )
        )
    job.assignments.clear()
    session.flush()
    job.assignments.extend(rows)


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Assignment",
    target_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
