"""Validated value objects for staff, jobs and assignments.

Rows coming back from the data store (ORM objects, dicts decoded from JSON)
are coerced into these models exactly once, at the boundary. Everything past
that point can rely on string ids, aware UTC datetimes and a known job status.
"""

from __future__ import annotations

import datetime
from typing import Any, Iterable, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from timegrid import parse_instant

JOB_STATUSES = ("scheduled", "unscheduled")


class PayloadError(ValueError):
    """Raised when a record from the data store cannot be coerced."""


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True, extra="ignore")

    @field_validator("id", "job_id", "staff_id", mode="before", check_fields=False)
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("start_time", "end_time", mode="before", check_fields=False)
    @classmethod
    def _normalize_instant(cls, value: Any) -> Any:
        if isinstance(value, (str, datetime.datetime)):
            return parse_instant(value)
        return value


class Staff(_Record):
    id: str = Field(min_length=1)
    name: str


class Assignment(_Record):
    id: str = Field(min_length=1)
    job_id: str = Field(min_length=1)
    staff_id: str = Field(min_length=1)
    start_time: datetime.datetime
    end_time: datetime.datetime

    @property
    def duration(self) -> datetime.timedelta:
        return self.end_time - self.start_time


class Job(_Record):
    id: str = Field(min_length=1)
    title: str
    description: str = ""
    status: Literal["scheduled", "unscheduled"] = "unscheduled"
    start_time: datetime.datetime
    end_time: datetime.datetime

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("description", mode="before")
    @classmethod
    def _blank_description(cls, value: Any) -> Any:
        return "" if value is None else value


class JobWithAssignments(Job):
    assignments: Tuple[Assignment, ...] = ()

    def find_assignment(self, assignment_id: str) -> Optional[Assignment]:
        for assignment in self.assignments:
            if assignment.id == assignment_id:
                return assignment
        return None


def _coerce(model, raw: Any, label: str):
    if isinstance(raw, model):
        return raw
    try:
        if isinstance(raw, Mapping):
            return model.model_validate(dict(raw))
        return model.model_validate(raw, from_attributes=True)
    except ValidationError as exc:
        raise PayloadError(f"Invalid {label} record: {exc.errors()[0].get('msg', exc)}") from exc


def coerce_staff(raw: Iterable[Any]) -> List[Staff]:
    return [_coerce(Staff, item, "staff") for item in raw or []]


def coerce_assignment(raw: Any) -> Assignment:
    return _coerce(Assignment, raw, "assignment")


def coerce_jobs(raw: Iterable[Any]) -> List[JobWithAssignments]:
    """Validate a list of job records (each carrying an ``assignments`` list)."""
    jobs: List[JobWithAssignments] = []
    for item in raw or []:
        if isinstance(item, JobWithAssignments):
            jobs.append(item)
            continue
        if isinstance(item, Mapping):
            payload = dict(item)
            assignments = payload.get("assignments") or []
        else:
            payload = {
                key: getattr(item, key, None)
                for key in ("id", "title", "description", "status", "start_time", "end_time")
            }
            assignments = getattr(item, "assignments", None) or []
        payload["assignments"] = tuple(coerce_assignment(entry) for entry in assignments)
        jobs.append(_coerce(JobWithAssignments, payload, "job"))
    return jobs


def all_assignments(jobs: Iterable[JobWithAssignments]) -> List[Assignment]:
    return [assignment for job in jobs for assignment in job.assignments]
