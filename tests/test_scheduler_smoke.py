from __future__ import annotations

import datetime
import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
pytest.importorskip("PySide6.QtWidgets")

from PySide6.QtCore import QPointF  # noqa: E402
from PySide6.QtWidgets import QApplication, QHeaderView  # noqa: E402

from database import init_database  # noqa: E402
from drag import DragController, DragPayload, DropCommitted  # noqa: E402
from main import seed_demo_data  # noqa: E402
from notifications import ChangeNotifier  # noqa: E402
from placement import resolve_placements  # noqa: E402
from store import AssignmentStore  # noqa: E402
from ui.scheduler_grid import AssignmentTable, decode_payload, encode_payload  # noqa: E402

UTC = datetime.timezone.utc
DAY = datetime.date(2024, 3, 20)


@pytest.fixture()
def store():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_database(engine)
    try:
        yield AssignmentStore(sessionmaker(bind=engine, expire_on_commit=False, future=True), ChangeNotifier())
    finally:
        engine.dispose()


def test_seeded_day_renders_and_accepts_a_drag(store):
    assert seed_demo_data(store, day=DAY)
    assert not seed_demo_data(store, day=DAY)

    staff = store.list_staff()
    jobs = store.list_jobs_with_assignments()
    assert [member.name for member in staff] == ["John Smith", "Sarah Johnson"]

    placements = resolve_placements(jobs, staff, day=DAY)
    assert [(item.row_index, item.start_slot, item.slot_span) for item in placements] == [(0, 2, 4), (1, 10, 2)]

    refreshes = []
    store.notifier.subscribe(lambda: refreshes.append(True))
    controller = DragController(
        store.update_assignment,
        now=lambda: datetime.datetime(2024, 3, 20, 7, 0, tzinfo=UTC),
        grid_date=DAY,
    )
    faucet = next(job for job in jobs if job.title == "Fix Leaky Faucet")
    payload = DragPayload(faucet.id, faucet.assignments[0].id)
    result = controller.drop(payload, staff[0].id, "15:00", jobs)

    assert isinstance(result, DropCommitted)
    assert refreshes == [True]
    moved = store.get_assignment(payload.assignment_id)
    assert moved.staff_id == staff[0].id
    assert moved.start_time == datetime.datetime(2024, 3, 20, 15, 0, tzinfo=UTC)


def test_mime_payload_round_trip():
    payload = DragPayload("job1", "assign1")
    assert decode_payload(encode_payload(payload)) == payload
    assert decode_payload(None) is None


class _PointerEvent:
    def __init__(self, x: float, y: float) -> None:
        self._point = QPointF(x, y)

    def position(self) -> QPointF:
        return self._point


def test_pointer_over_spanned_block_targets_the_hovered_column():
    app = QApplication.instance() or QApplication([])
    table = AssignmentTable(
        on_drag_over=lambda payload, row, column: True,
        on_drag_leave=lambda: None,
        on_drop=lambda payload, row, column: None,
    )
    table.setRowCount(2)
    table.horizontalHeader().setSectionResizeMode(QHeaderView.Fixed)
    for column in range(table.columnCount()):
        table.setColumnWidth(column, 40)
    table.setSpan(0, 2, 1, 4)

    assert table._cell_at(_PointerEvent(40 * 4 + 10, 10)) == (0, 4)
    assert table._cell_at(_PointerEvent(40 * 2 + 5, 10)) == (0, 2)
    assert table._cell_at(_PointerEvent(40 * 4 + 10, 56 + 10)) == (1, 4)
    table.deleteLater()
    assert app is not None
