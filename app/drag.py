"""Drag-and-drop relocation of assignments on the day grid.

A drag moves through ``IDLE -> PREVIEWING -> (COMMITTING | REJECTED) -> IDLE``.
Every drag-over produces a fresh :class:`DragPreview`; a drop re-runs the same
snap/duration computation, applies the past-time and double-booking rules and,
when the move is legal, hands the new staff/start/end to the data-access
collaborator. The controller never edits the jobs it is given; the caller
refreshes them when the store signals a change.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union

from overlap import conflicting_assignments
from schemas import Assignment, JobWithAssignments, all_assignments
from timegrid import UTC, column_start, ensure_utc, to_iso

logger = logging.getLogger(__name__)

UpdateAssignment = Callable[[str, Dict[str, Any]], Any]
AuditHook = Callable[[str, Dict[str, Any]], None]


class DragState(str, Enum):
    IDLE = "idle"
    PREVIEWING = "previewing"
    COMMITTING = "committing"
    REJECTED = "rejected"


class RejectionReason(str, Enum):
    PAST_TIME = "past_time"
    CONFLICT = "conflict"
    PERSISTENCE_FAILED = "persistence_failed"


REJECTION_TITLES = {
    RejectionReason.PAST_TIME: "Cannot schedule in the past",
    RejectionReason.CONFLICT: "Schedule conflict",
    RejectionReason.PERSISTENCE_FAILED: "Could not save the move",
}


@dataclass(frozen=True)
class DragPayload:
    job_id: str
    assignment_id: str

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> Optional["DragPayload"]:
        """Build a payload from loose drag data (``jobId``/``job_id`` style keys)."""
        if not isinstance(data, Mapping):
            return None
        job_id = data.get("job_id", data.get("jobId"))
        assignment_id = data.get("assignment_id", data.get("assignmentId"))
        if job_id in (None, "") or assignment_id in (None, ""):
            return None
        return cls(job_id=str(job_id), assignment_id=str(assignment_id))


@dataclass(frozen=True)
class DragPreview:
    job: JobWithAssignments
    assignment: Assignment
    staff_id: str
    time_slot: str


@dataclass(frozen=True)
class CommittedMove:
    assignment_id: str
    staff_id: str
    start_time: datetime.datetime
    end_time: datetime.datetime

    @property
    def start_iso(self) -> str:
        return to_iso(self.start_time)

    @property
    def end_iso(self) -> str:
        return to_iso(self.end_time)

    def as_patch(self) -> Dict[str, str]:
        return {"staff_id": self.staff_id, "start_time": self.start_iso, "end_time": self.end_iso}


@dataclass(frozen=True)
class DropCommitted:
    move: CommittedMove
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class DropRejected:
    reason: RejectionReason
    message: str
    conflicts: Tuple[Assignment, ...] = ()
    ok: bool = field(default=False, init=False)

    @property
    def title(self) -> str:
        return REJECTION_TITLES[self.reason]


@dataclass(frozen=True)
class DropIgnored:
    ok: bool = field(default=False, init=False)


DropResult = Union[DropCommitted, DropRejected, DropIgnored]


def resolve_payload(
    payload: Optional[DragPayload], jobs: Iterable[JobWithAssignments]
) -> Optional[Tuple[JobWithAssignments, Assignment]]:
    if payload is None:
        return None
    for job in jobs:
        if job.id != payload.job_id:
            continue
        assignment = job.find_assignment(payload.assignment_id)
        if assignment is None:
            return None
        return job, assignment
    return None


def propose_move(
    assignment: Assignment,
    staff_id: str,
    time_slot: Union[str, int],
    grid_date: datetime.date,
) -> CommittedMove:
    """Snap the target slot and keep the dragged assignment's own duration."""
    start = column_start(grid_date, time_slot)
    return CommittedMove(
        assignment_id=assignment.id,
        staff_id=staff_id,
        start_time=start,
        end_time=start + assignment.duration,
    )


def evaluate_move(
    move: CommittedMove,
    existing: Iterable[Assignment],
    *,
    now: datetime.datetime,
) -> Optional[DropRejected]:
    """Return the rejection for ``move`` or None when it may be committed.

    The past-time rule wins over conflicts. The assignment being moved is
    excluded from the double-booking scan since it is relocated, not copied.
    """
    if move.start_time < ensure_utc(now):
        return DropRejected(
            RejectionReason.PAST_TIME,
            "Please select a time slot in the future.",
        )
    conflicts = conflicting_assignments(
        move.start_time,
        move.end_time,
        move.staff_id,
        existing,
        exclude_id=move.assignment_id,
    )
    if conflicts:
        return DropRejected(
            RejectionReason.CONFLICT,
            "This time slot overlaps with another job for this staff member.",
            conflicts=tuple(conflicts),
        )
    return None


class DragController:
    """Single-drag state machine fed by the interaction surface."""

    def __init__(
        self,
        update_assignment: UpdateAssignment,
        *,
        now: Optional[Callable[[], datetime.datetime]] = None,
        grid_date: Optional[datetime.date] = None,
        audit: Optional[AuditHook] = None,
    ) -> None:
        self._update_assignment = update_assignment
        self._now = now or (lambda: datetime.datetime.now(UTC))
        self.grid_date = grid_date
        self._audit = audit
        self.state = DragState.IDLE
        self.preview: Optional[DragPreview] = None

    def current_grid_date(self) -> datetime.date:
        if self.grid_date is not None:
            return self.grid_date
        return ensure_utc(self._now()).date()

    def drag_over(
        self,
        payload: Optional[DragPayload],
        staff_id: str,
        time_slot: str,
        jobs: Iterable[JobWithAssignments],
    ) -> Optional[DragPreview]:
        resolved = resolve_payload(payload, jobs)
        if resolved is None:
            self._reset()
            return None
        job, assignment = resolved
        try:
            move = propose_move(assignment, staff_id, time_slot, self.current_grid_date())
        except ValueError:
            self._reset()
            return None
        hypothesis = assignment.model_copy(
            update={"staff_id": staff_id, "start_time": move.start_time, "end_time": move.end_time}
        )
        self.preview = DragPreview(job=job, assignment=hypothesis, staff_id=staff_id, time_slot=time_slot)
        self.state = DragState.PREVIEWING
        return self.preview

    def drag_leave(self) -> None:
        self._reset()

    cancel = drag_leave

    def drop(
        self,
        payload: Optional[DragPayload],
        staff_id: str,
        time_slot: str,
        jobs: Iterable[JobWithAssignments],
    ) -> DropResult:
        self._reset()
        jobs = list(jobs)
        resolved = resolve_payload(payload, jobs)
        if resolved is None:
            return DropIgnored()
        _, assignment = resolved
        try:
            move = propose_move(assignment, staff_id, time_slot, self.current_grid_date())
        except ValueError:
            return DropIgnored()

        rejection = evaluate_move(move, all_assignments(jobs), now=self._now())
        if rejection is not None:
            self.state = DragState.REJECTED
            self._record("MOVE_REJECTED", move, reason=rejection.reason.value)
            self._reset()
            return rejection

        self.state = DragState.COMMITTING
        try:
            self._update_assignment(move.assignment_id, move.as_patch())
        except Exception as exc:
            logger.exception("Assignment %s move failed", move.assignment_id)
            self._record("MOVE_FAILED", move, reason=RejectionReason.PERSISTENCE_FAILED.value)
            return DropRejected(RejectionReason.PERSISTENCE_FAILED, str(exc) or "Persistence failed.")
        finally:
            self._reset()
        self._record("MOVE_COMMITTED", move)
        return DropCommitted(move)

    def _reset(self) -> None:
        self.preview = None
        self.state = DragState.IDLE

    def _record(self, event: str, move: CommittedMove, **extra: Any) -> None:
        if not self._audit:
            return
        details = {"assignment_id": move.assignment_id, **move.as_patch(), **extra}
        self._audit(event, details)
