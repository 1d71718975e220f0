from __future__ import annotations

import datetime
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Union

from drag import DragPreview
from schemas import Assignment, JobWithAssignments, Staff
from timegrid import SLOT_COUNT, ensure_utc, unbounded_slot_index

StaffOrder = Sequence[Union[Staff, str]]


@dataclass(frozen=True)
class Placement:
    job_id: str
    assignment_id: str
    staff_id: str
    row_index: int
    start_slot: int
    slot_span: int
    clamped: bool = False
    preview: bool = False

    @property
    def end_slot(self) -> int:
        return self.start_slot + self.slot_span

    def covers(self, slot: int) -> bool:
        return self.start_slot <= slot < self.end_slot


def _row_lookup(staff_order: StaffOrder) -> Dict[str, int]:
    rows: Dict[str, int] = {}
    for index, member in enumerate(staff_order):
        staff_id = member.id if isinstance(member, Staff) else str(member)
        rows.setdefault(staff_id, index)
    return rows


def place_assignment(job_id: str, assignment: Assignment, row_index: int) -> Placement:
    """Column range of one assignment.

    Blocks are clipped to the 08:00-18:00 window. A block that would end up
    zero or negative slots wide (zero-duration data, end before start, or
    entirely outside the window) is drawn one slot wide. Either adjustment
    sets ``clamped``.
    """
    raw_start = unbounded_slot_index(assignment.start_time)
    raw_end = unbounded_slot_index(assignment.end_time)
    start = max(0, min(raw_start, SLOT_COUNT - 1))
    end = max(0, min(raw_end, SLOT_COUNT))
    span = max(1, end - start)
    return Placement(
        job_id=job_id,
        assignment_id=assignment.id,
        staff_id=assignment.staff_id,
        row_index=row_index,
        start_slot=start,
        slot_span=span,
        clamped=(start, span) != (raw_start, raw_end - raw_start),
    )


def resolve_placements(
    jobs: Iterable[JobWithAssignments],
    staff_order: StaffOrder,
    *,
    only_scheduled: bool = True,
    day: Optional[datetime.date] = None,
) -> List[Placement]:
    """Grid positions for every assignment whose staff member has a row."""
    rows = _row_lookup(staff_order)
    placements: List[Placement] = []
    for job in jobs:
        if only_scheduled and job.status != "scheduled":
            continue
        for assignment in job.assignments:
            row_index = rows.get(assignment.staff_id)
            if row_index is None:
                continue
            if day is not None and ensure_utc(assignment.start_time).date() != day:
                continue
            placements.append(place_assignment(job.id, assignment, row_index))
    return placements


def preview_placement(preview: DragPreview, staff_order: StaffOrder) -> Optional[Placement]:
    """Place a drag preview by running it through the resolver as a one-assignment job."""
    synthetic = preview.job.model_copy(update={"assignments": (preview.assignment,)})
    placements = resolve_placements([synthetic], staff_order, only_scheduled=False)
    if not placements:
        return None
    return replace(placements[0], preview=True)


def occupant_at(placements: Iterable[Placement], row_index: int, slot: int) -> Optional[Placement]:
    for placement in placements:
        if placement.row_index == row_index and placement.covers(slot):
            return placement
    return None
