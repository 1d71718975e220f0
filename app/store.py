"""Data-access collaborator used by the grid, the drag controller and the API.

Wraps the session-level helpers in :mod:`database`, converts ORM rows into
validated :mod:`schemas` values and announces successful writes on a
:class:`~notifications.ChangeNotifier`.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

import database
from database import PersistenceError, RecordNotFound
from notifications import ChangeNotifier
from schemas import Assignment, JobWithAssignments, Staff, coerce_assignment, coerce_jobs, coerce_staff

logger = logging.getLogger(__name__)

__all__ = ["AssignmentStore", "PersistenceError", "RecordNotFound"]


class AssignmentStore:
    def __init__(self, session_factory=None, notifier: Optional[ChangeNotifier] = None) -> None:
        self.session_factory = session_factory or database.SessionLocal
        self.notifier = notifier or ChangeNotifier()

    def _run(self, operation: Callable[[Any], Any], *, write: bool = False):
        try:
            with self.session_factory() as session:
                result = operation(session)
        except SQLAlchemyError as exc:
            logger.error("Database operation failed: %s", exc)
            raise PersistenceError(f"Persistence failed: {exc.__class__.__name__}") from exc
        if write:
            self.notifier.notify()
        return result

    def list_staff(self) -> List[Staff]:
        return self._run(lambda session: coerce_staff(database.list_staff(session)))

    def add_staff(self, name: str, *, staff_id: Optional[str] = None) -> Staff:
        return self._run(
            lambda session: coerce_staff([database.add_staff(session, name, staff_id=staff_id)])[0],
            write=True,
        )

    def list_jobs_with_assignments(self, status: Optional[str] = None) -> List[JobWithAssignments]:
        return self._run(lambda session: coerce_jobs(database.list_jobs(session, status=status)))

    def get_job(self, job_id: str) -> JobWithAssignments:
        return self._run(lambda session: coerce_jobs([database.get_job(session, job_id)])[0])

    def create_job(self, **fields: Any) -> JobWithAssignments:
        return self._run(lambda session: coerce_jobs([database.create_job(session, **fields)])[0], write=True)

    def update_job(self, job_id: str, changes: Dict[str, Any]) -> JobWithAssignments:
        return self._run(lambda session: coerce_jobs([database.update_job(session, job_id, changes)])[0], write=True)

    def list_assignments(self, *, job_id: Optional[str] = None, staff_id: Optional[str] = None) -> List[Assignment]:
        return self._run(
            lambda session: [
                coerce_assignment(row)
                for row in database.list_assignments(session, job_id=job_id, staff_id=staff_id)
            ]
        )

    def get_assignment(self, assignment_id: str) -> Assignment:
        return self._run(lambda session: coerce_assignment(database.get_assignment(session, assignment_id)))

    def create_assignment(self, patch: Dict[str, Any]) -> Assignment:
        return self._run(lambda session: coerce_assignment(database.create_assignment(session, patch)), write=True)

    def update_assignment(self, assignment_id: str, patch: Dict[str, Any]) -> Assignment:
        return self._run(
            lambda session: coerce_assignment(database.update_assignment(session, assignment_id, patch)),
            write=True,
        )

    def delete_assignment(self, assignment_id: str) -> None:
        self._run(lambda session: database.delete_assignment(session, assignment_id), write=True)

    def replace_job_assignments(self, job_id: str, assignments: Iterable[Dict[str, Any]]) -> List[Assignment]:
        payload = list(assignments)
        return self._run(
            lambda session: [
                coerce_assignment(row) for row in database.replace_job_assignments(session, job_id, payload)
            ],
            write=True,
        )

    def save_job_edits(
        self, job_id: str, changes: Dict[str, Any], assignments: Iterable[Dict[str, Any]]
    ) -> JobWithAssignments:
        payload = list(assignments)
        return self._run(
            lambda session: coerce_jobs([database.save_job_edits(session, job_id, changes, payload)])[0],
            write=True,
        )

    def record_audit(
        self,
        actor: str,
        action: str,
        *,
        target_type: str = "Assignment",
        target_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._run(
            lambda session: database.record_audit_log(
                session,
                user_id=actor,
                action=action,
                target_type=target_type,
                target_id=target_id,
                payload=payload,
            )
        )
