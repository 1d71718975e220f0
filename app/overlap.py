from __future__ import annotations

import datetime
from typing import Iterable, List, Optional, Tuple

from schemas import Assignment


def intervals_overlap(
    start: datetime.datetime,
    end: datetime.datetime,
    other_start: datetime.datetime,
    other_end: datetime.datetime,
) -> bool:
    """Half-open ``[start, end)`` intersection test.

    Touching intervals do not overlap, and an empty interval (end <= start)
    shares no instant with anything.
    """
    if end <= start or other_end <= other_start:
        return False
    return (
        (other_start <= start < other_end)
        or (other_start < end <= other_end)
        or (start <= other_start and end >= other_end)
    )


def conflicting_assignments(
    start: datetime.datetime,
    end: datetime.datetime,
    staff_id: str,
    existing: Iterable[Assignment],
    *,
    exclude_id: Optional[str] = None,
) -> List[Assignment]:
    conflicts: List[Assignment] = []
    for assignment in existing:
        if assignment.staff_id != staff_id:
            continue
        if exclude_id is not None and assignment.id == exclude_id:
            continue
        if intervals_overlap(start, end, assignment.start_time, assignment.end_time):
            conflicts.append(assignment)
    return conflicts


def overlaps(
    start: datetime.datetime,
    end: datetime.datetime,
    staff_id: str,
    existing: Iterable[Assignment],
    *,
    exclude_id: Optional[str] = None,
) -> bool:
    """Return True when ``[start, end)`` double-books ``staff_id`` against ``existing``."""
    return bool(conflicting_assignments(start, end, staff_id, existing, exclude_id=exclude_id))


def find_conflicts(assignments: Iterable[Assignment]) -> List[Tuple[Assignment, Assignment]]:
    """Every pair of assignments that double-book the same staff member."""
    by_staff: dict = {}
    for assignment in assignments:
        by_staff.setdefault(assignment.staff_id, []).append(assignment)
    pairs: List[Tuple[Assignment, Assignment]] = []
    for entries in by_staff.values():
        for index, first in enumerate(entries):
            for second in entries[index + 1:]:
                if intervals_overlap(first.start_time, first.end_time, second.start_time, second.end_time):
                    pairs.append((first, second))
    return pairs
