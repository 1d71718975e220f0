from __future__ import annotations

import datetime
import itertools
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from overlap import conflicting_assignments, find_conflicts, intervals_overlap, overlaps  # noqa: E402
from schemas import Assignment  # noqa: E402

UTC = datetime.timezone.utc


def at(hour: int, minute: int = 0) -> datetime.datetime:
    return datetime.datetime(2024, 3, 20, hour, minute, tzinfo=UTC)


def make_assignment(assignment_id: str, staff_id: str, start: datetime.datetime, end: datetime.datetime) -> Assignment:
    return Assignment(id=assignment_id, job_id="job-1", staff_id=staff_id, start_time=start, end_time=end)


@pytest.fixture()
def alice_morning():
    return [make_assignment("a1", "alice", at(9), at(10))]


@pytest.mark.parametrize(
    "start,end",
    [
        (at(10), at(11)),
        (at(8), at(9)),
        (at(7), at(8, 30)),
    ],
)
def test_touching_or_disjoint_intervals_do_not_overlap(alice_morning, start, end):
    assert not overlaps(start, end, "alice", alice_morning)


@pytest.mark.parametrize(
    "start,end",
    [
        (at(9, 30), at(10, 30)),
        (at(8, 30), at(9, 30)),
        (at(8), at(11)),
        (at(9), at(10)),
        (at(9, 15), at(9, 45)),
    ],
)
def test_intersecting_intervals_overlap(alice_morning, start, end):
    assert overlaps(start, end, "alice", alice_morning)


def test_other_staff_members_are_ignored(alice_morning):
    assert not overlaps(at(9), at(10), "bob", alice_morning)


def test_excluded_assignment_does_not_conflict_with_itself(alice_morning):
    assert not overlaps(at(9, 30), at(10, 30), "alice", alice_morning, exclude_id="a1")
    assert overlaps(at(9, 30), at(10, 30), "alice", alice_morning, exclude_id="other")


def test_empty_candidate_never_overlaps(alice_morning):
    assert not overlaps(at(9, 30), at(9, 30), "alice", alice_morning)
    assert not overlaps(at(9, 45), at(9, 15), "alice", alice_morning)


def test_overlap_relation_is_symmetric():
    instants = [at(8), at(9), at(9, 30), at(10), at(11)]
    intervals = [(s, e) for s, e in itertools.product(instants, repeat=2)]
    for (s1, e1), (s2, e2) in itertools.product(intervals, repeat=2):
        forward = intervals_overlap(s1, e1, s2, e2)
        backward = intervals_overlap(s2, e2, s1, e1)
        assert forward == backward, ((s1, e1), (s2, e2))


def test_conflicting_assignments_lists_offenders():
    existing = [
        make_assignment("a1", "alice", at(9), at(10)),
        make_assignment("a2", "alice", at(10), at(11)),
        make_assignment("a3", "alice", at(13), at(14)),
        make_assignment("b1", "bob", at(9), at(12)),
    ]
    found = conflicting_assignments(at(9, 30), at(10, 30), "alice", existing)
    assert [item.id for item in found] == ["a1", "a2"]


def test_find_conflicts_pairs_double_bookings_per_staff():
    assignments = [
        make_assignment("a1", "alice", at(9), at(11)),
        make_assignment("a2", "alice", at(10), at(12)),
        make_assignment("a3", "alice", at(12), at(13)),
        make_assignment("b1", "bob", at(10), at(12)),
    ]
    pairs = find_conflicts(assignments)
    assert [(first.id, second.id) for first, second in pairs] == [("a1", "a2")]
    assert find_conflicts([]) == []
