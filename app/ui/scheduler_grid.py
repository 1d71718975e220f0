from __future__ import annotations

import datetime
import json
from typing import Callable, Dict, List, Optional, Tuple

from PySide6.QtCore import QByteArray, QDate, QMimeData, Qt
from PySide6.QtGui import QColor, QDrag
from PySide6.QtWidgets import (
    QAbstractItemView,
    QDateEdit,
    QGroupBox,
    QHBoxLayout,
    QHeaderView,
    QLabel,
    QPushButton,
    QTableWidget,
    QTableWidgetItem,
    QVBoxLayout,
    QWidget,
)

from audit import AuditLogger
from drag import DragController, DragPayload, DropCommitted, DropRejected
from placement import Placement, preview_placement, resolve_placements
from schemas import JobWithAssignments, Staff
from store import AssignmentStore, PersistenceError
from timegrid import TIME_SLOTS, UTC, ensure_utc
from ui.job_dialog import JobDialog

MIME_TYPE = "application/x-job-assignment"
BLOCK_COLOR = "#2f5f9e"
PREVIEW_COLOR = "#9ec3f0"
HALF_HOUR_COLOR = "#f4f5f7"
HOUR_COLOR = "#ffffff"


def encode_payload(payload: DragPayload) -> QMimeData:
    mime = QMimeData()
    body = json.dumps({"jobId": payload.job_id, "assignmentId": payload.assignment_id})
    mime.setData(MIME_TYPE, QByteArray(body.encode("utf-8")))
    return mime


def decode_payload(mime: Optional[QMimeData]) -> Optional[DragPayload]:
    if mime is None or not mime.hasFormat(MIME_TYPE):
        return None
    try:
        data = json.loads(bytes(mime.data(MIME_TYPE)).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return DragPayload.from_mapping(data)


class AssignmentTable(QTableWidget):
    """Staff rows by half-hour columns; forwards drag events as (payload, row, column)."""

    def __init__(
        self,
        *,
        on_drag_over: Callable[[Optional[DragPayload], int, int], bool],
        on_drag_leave: Callable[[], None],
        on_drop: Callable[[Optional[DragPayload], int, int], None],
        parent=None,
    ) -> None:
        super().__init__(0, len(TIME_SLOTS), parent)
        self.on_drag_over = on_drag_over
        self.on_drag_leave = on_drag_leave
        self.on_drop = on_drop
        self.setHorizontalHeaderLabels(TIME_SLOTS)
        self.horizontalHeader().setSectionResizeMode(QHeaderView.Stretch)
        self.verticalHeader().setDefaultSectionSize(56)
        self.setEditTriggers(QAbstractItemView.NoEditTriggers)
        self.setSelectionMode(QAbstractItemView.SingleSelection)
        self.setDragEnabled(True)
        self.setAcceptDrops(True)
        self.viewport().setAcceptDrops(True)
        self.setDragDropMode(QAbstractItemView.DragDrop)
        self.setDropIndicatorShown(False)

    def startDrag(self, supported_actions) -> None:
        item = self.currentItem()
        payload = DragPayload.from_mapping(item.data(Qt.UserRole)) if item else None
        if payload is None:
            return
        drag = QDrag(self)
        drag.setMimeData(encode_payload(payload))
        drag.exec(Qt.MoveAction)
        # Drops outside any cell never reach dropEvent.
        self.on_drag_leave()

    def _cell_at(self, event) -> Tuple[int, int]:
        # indexAt reports the first column of a spanned block.
        point = event.position().toPoint()
        return self.rowAt(point.y()), self.columnAt(point.x())

    def dragEnterEvent(self, event) -> None:
        if decode_payload(event.mimeData()) is None:
            event.ignore()
            return
        event.acceptProposedAction()

    def dragMoveEvent(self, event) -> None:
        row, column = self._cell_at(event)
        if self.on_drag_over(decode_payload(event.mimeData()), row, column):
            event.acceptProposedAction()
        else:
            event.ignore()

    def dragLeaveEvent(self, event) -> None:
        self.on_drag_leave()
        event.accept()

    def dropEvent(self, event) -> None:
        row, column = self._cell_at(event)
        self.on_drop(decode_payload(event.mimeData()), row, column)
        event.acceptProposedAction()


class SchedulerGridPage(QWidget):
    def __init__(
        self,
        store: AssignmentStore,
        *,
        audit: Optional[AuditLogger] = None,
        now: Optional[Callable[[], datetime.datetime]] = None,
        on_job_selected: Optional[Callable[[JobWithAssignments], None]] = None,
    ) -> None:
        super().__init__()
        self.store = store
        self.audit = audit
        self.on_job_selected = on_job_selected
        self._now = now or (lambda: datetime.datetime.now(UTC))
        self.grid_date = ensure_utc(self._now()).date()
        self.controller = DragController(
            store.update_assignment,
            now=self._now,
            grid_date=self.grid_date,
            audit=audit,
        )
        self.staff: List[Staff] = []
        self.jobs: List[JobWithAssignments] = []
        self.placements: List[Placement] = []
        self._base_colors: Dict[Tuple[int, int], QColor] = {}
        self._preview_cells: List[Tuple[int, int]] = []

        self._build_ui()
        self._unsubscribe = store.notifier.subscribe(self.refresh_all)
        self.refresh_all()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        layout.setSpacing(10)
        layout.addLayout(self._build_header())

        container = QGroupBox("Day schedule")
        grid_layout = QVBoxLayout(container)
        self.table = AssignmentTable(
            on_drag_over=self._handle_drag_over,
            on_drag_leave=self._handle_drag_leave,
            on_drop=self._handle_drop,
        )
        self.table.itemDoubleClicked.connect(self._open_item_job)
        grid_layout.addWidget(self.table)
        layout.addWidget(container)

        self.status_label = QLabel("Drag a job block to another staff row or time slot.")
        self.status_label.setWordWrap(True)
        layout.addWidget(self.status_label)

    def _build_header(self) -> QHBoxLayout:
        header = QHBoxLayout()
        header.setSpacing(8)

        self.prev_day_button = QPushButton("◀")
        self.prev_day_button.setFixedSize(30, 30)
        self.prev_day_button.clicked.connect(lambda: self._navigate_day(-1))
        header.addWidget(self.prev_day_button)

        self.day_picker = QDateEdit()
        self.day_picker.setCalendarPopup(True)
        self.day_picker.setDisplayFormat("yyyy-MM-dd")
        self.day_picker.setDate(QDate(self.grid_date.year, self.grid_date.month, self.grid_date.day))
        self.day_picker.dateChanged.connect(self._handle_day_picker_change)
        header.addWidget(self.day_picker)

        self.next_day_button = QPushButton("▶")
        self.next_day_button.setFixedSize(30, 30)
        self.next_day_button.clicked.connect(lambda: self._navigate_day(1))
        header.addWidget(self.next_day_button)

        self.day_label = QLabel()
        header.addWidget(self.day_label)
        header.addStretch()
        return header

    def _navigate_day(self, delta: int) -> None:
        target = self.grid_date + datetime.timedelta(days=delta)
        self.day_picker.setDate(QDate(target.year, target.month, target.day))

    def _handle_day_picker_change(self, qdate: QDate) -> None:
        self.grid_date = datetime.date(qdate.year(), qdate.month(), qdate.day())
        self.controller.grid_date = self.grid_date
        self._render_grid()

    def refresh_all(self) -> None:
        try:
            self.staff = self.store.list_staff()
            self.jobs = self.store.list_jobs_with_assignments()
        except PersistenceError as exc:
            self.status_label.setText(f"Could not load the schedule: {exc}")
            return
        self._render_grid()

    def _render_grid(self) -> None:
        self.day_label.setText(f"Day of {self.grid_date.isoformat()}")
        self.placements = resolve_placements(self.jobs, self.staff, day=self.grid_date)
        jobs_by_id = {job.id: job for job in self.jobs}

        self.table.clearSpans()
        self.table.clearContents()
        self.table.setRowCount(len(self.staff))
        self.table.setVerticalHeaderLabels([member.name for member in self.staff])
        self._base_colors = {}
        self._preview_cells = []
        for row in range(len(self.staff)):
            for column, label in enumerate(TIME_SLOTS):
                color = QColor(HALF_HOUR_COLOR if label.endswith(":30") else HOUR_COLOR)
                item = QTableWidgetItem()
                item.setFlags(Qt.ItemIsEnabled)
                item.setBackground(color)
                self.table.setItem(row, column, item)
                self._base_colors[(row, column)] = color

        occupied = set()
        for placement in self.placements:
            cells = {(placement.row_index, col) for col in range(placement.start_slot, placement.end_slot)}
            if cells & occupied:
                # Overlapping stored data; the first block keeps the cells.
                continue
            occupied |= cells
            job = jobs_by_id.get(placement.job_id)
            item = self._block_item(job, placement)
            self.table.setItem(placement.row_index, placement.start_slot, item)
            if placement.slot_span > 1:
                self.table.setSpan(placement.row_index, placement.start_slot, 1, placement.slot_span)
            for cell in cells:
                self._base_colors[cell] = QColor(BLOCK_COLOR)

    def _block_item(self, job: Optional[JobWithAssignments], placement: Placement) -> QTableWidgetItem:
        assignment = job.find_assignment(placement.assignment_id) if job else None
        title = job.title if job else placement.job_id
        item = QTableWidgetItem(title)
        item.setData(Qt.UserRole, {"job_id": placement.job_id, "assignment_id": placement.assignment_id})
        item.setFlags(Qt.ItemIsEnabled | Qt.ItemIsSelectable | Qt.ItemIsDragEnabled)
        item.setBackground(QColor(BLOCK_COLOR))
        item.setForeground(QColor(Qt.white))
        if assignment:
            start = ensure_utc(assignment.start_time).strftime("%H:%M")
            end = ensure_utc(assignment.end_time).strftime("%H:%M")
            staff_name = next((m.name for m in self.staff if m.id == assignment.staff_id), "Unassigned")
            item.setToolTip(f"{title}\n{staff_name}\n{start} → {end}")
        if placement.clamped:
            item.setText(f"{title} *")
        return item

    def _target(self, row: int, column: int) -> Optional[Tuple[str, str]]:
        if row < 0 or column < 0 or row >= len(self.staff) or column >= len(TIME_SLOTS):
            return None
        return self.staff[row].id, TIME_SLOTS[column]

    def _handle_drag_over(self, payload: Optional[DragPayload], row: int, column: int) -> bool:
        target = self._target(row, column)
        if target is None:
            self._handle_drag_leave()
            return False
        preview = self.controller.drag_over(payload, target[0], target[1], self.jobs)
        self._paint_preview(preview_placement(preview, self.staff) if preview else None)
        return preview is not None

    def _handle_drag_leave(self) -> None:
        self.controller.drag_leave()
        self._paint_preview(None)

    def _handle_drop(self, payload: Optional[DragPayload], row: int, column: int) -> None:
        self._paint_preview(None)
        target = self._target(row, column)
        if target is None:
            self.controller.cancel()
            return
        result = self.controller.drop(payload, target[0], target[1], self.jobs)
        if isinstance(result, DropCommitted):
            move = result.move
            self.status_label.setText(
                f"Moved to {target[1]} ({move.start_time:%H:%M}-{move.end_time:%H:%M})."
            )
        elif isinstance(result, DropRejected):
            self.status_label.setText(f"{result.title}: {result.message}")

    def _paint_preview(self, placement: Optional[Placement]) -> None:
        for cell in self._preview_cells:
            item = self.table.item(*cell)
            if item is not None:
                item.setBackground(self._base_colors.get(cell, QColor(HOUR_COLOR)))
        self._preview_cells = []
        if placement is None:
            return
        for column in range(placement.start_slot, placement.end_slot):
            cell = (placement.row_index, column)
            item = self.table.item(*cell)
            if item is None:
                continue
            item.setBackground(QColor(PREVIEW_COLOR))
            self._preview_cells.append(cell)

    def _open_item_job(self, item: QTableWidgetItem) -> None:
        payload = DragPayload.from_mapping(item.data(Qt.UserRole))
        if payload is None:
            return
        job = next((entry for entry in self.jobs if entry.id == payload.job_id), None)
        if job is None:
            return
        if self.on_job_selected:
            self.on_job_selected(job)
            return
        open_job_dialog(self, self.store, job, self.staff)

    def closeEvent(self, event) -> None:
        self._unsubscribe()
        super().closeEvent(event)


def open_job_dialog(parent, store: AssignmentStore, job: JobWithAssignments, staff: List[Staff]) -> None:
    def _save(changes: Dict, assignments: List[Dict]) -> None:
        store.save_job_edits(job.id, changes, assignments)

    dialog = JobDialog(job=job, staff=staff, on_save=_save, parent=parent)
    dialog.exec()
