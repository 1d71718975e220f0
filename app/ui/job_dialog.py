from __future__ import annotations

import datetime
from typing import Callable, Dict, List, Optional

from PySide6.QtCore import Qt, QTime
from PySide6.QtWidgets import (
    QAbstractItemView,
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QFormLayout,
    QHBoxLayout,
    QHeaderView,
    QLabel,
    QLineEdit,
    QMessageBox,
    QPlainTextEdit,
    QPushButton,
    QTableWidget,
    QTimeEdit,
    QVBoxLayout,
)

from overlap import find_conflicts
from schemas import JOB_STATUSES, Assignment, JobWithAssignments, Staff
from store import PersistenceError
from timegrid import UTC, ensure_utc


class JobDialog(QDialog):
    """Edit a job's details and its full assignment list."""

    def __init__(
        self,
        *,
        job: JobWithAssignments,
        staff: List[Staff],
        on_save: Optional[Callable[[Dict, List[Dict]], None]] = None,
        parent=None,
    ) -> None:
        super().__init__(parent)
        self.setModal(True)
        self.job = job
        self.staff = staff
        self.on_save = on_save
        self.job_date = ensure_utc(job.start_time).date()
        self.setWindowTitle("Job details")
        self._build_ui()
        for assignment in job.assignments:
            self._append_row(assignment.staff_id, assignment.start_time, assignment.end_time)
        self._update_summary()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        self.summary_label = QLabel()
        self.summary_label.setStyleSheet("font-weight: bold;")
        layout.addWidget(self.summary_label)

        form = QFormLayout()
        self.title_input = QLineEdit(self.job.title)
        form.addRow("Title", self.title_input)

        self.description_input = QPlainTextEdit(self.job.description)
        form.addRow("Description", self.description_input)

        self.status_combo = QComboBox()
        for status in JOB_STATUSES:
            self.status_combo.addItem(status.capitalize(), status)
        self.status_combo.setCurrentIndex(max(0, self.status_combo.findData(self.job.status)))
        form.addRow("Status", self.status_combo)
        layout.addLayout(form)

        self.assignment_table = QTableWidget(0, 3)
        self.assignment_table.setHorizontalHeaderLabels(["Staff", "Start", "End"])
        self.assignment_table.horizontalHeader().setSectionResizeMode(QHeaderView.Stretch)
        self.assignment_table.setSelectionBehavior(QAbstractItemView.SelectRows)
        layout.addWidget(self.assignment_table)

        actions = QHBoxLayout()
        add_button = QPushButton("Add Assignment")
        add_button.clicked.connect(self._add_assignment)
        actions.addWidget(add_button)

        assign_all_button = QPushButton("Assign All Staff")
        assign_all_button.clicked.connect(self._assign_all_staff)
        actions.addWidget(assign_all_button)

        remove_button = QPushButton("Remove Selected")
        remove_button.clicked.connect(self._remove_selected)
        actions.addWidget(remove_button)

        clear_button = QPushButton("Clear Assignments")
        clear_button.clicked.connect(self._clear_assignments)
        actions.addWidget(clear_button)
        actions.addStretch()
        layout.addLayout(actions)

        self.feedback_label = QLabel()
        self.feedback_label.setStyleSheet("color:#ff7a7a;")
        layout.addWidget(self.feedback_label)

        button_box = QDialogButtonBox(QDialogButtonBox.Save | QDialogButtonBox.Cancel)
        button_box.accepted.connect(self._handle_save)
        button_box.rejected.connect(self.reject)
        layout.addWidget(button_box)

    def _staff_combo(self, staff_id: Optional[str]) -> QComboBox:
        combo = QComboBox()
        combo.addItem("Select staff", None)
        for member in self.staff:
            combo.addItem(member.name, member.id)
        if staff_id:
            index = combo.findData(staff_id, Qt.UserRole)
            if index >= 0:
                combo.setCurrentIndex(index)
        return combo

    def _time_edit(self, value: datetime.datetime) -> QTimeEdit:
        editor = QTimeEdit()
        editor.setDisplayFormat("HH:mm")
        local = ensure_utc(value)
        editor.setTime(QTime(local.hour, local.minute))
        return editor

    def _append_row(self, staff_id: Optional[str], start: datetime.datetime, end: datetime.datetime) -> None:
        row = self.assignment_table.rowCount()
        self.assignment_table.insertRow(row)
        self.assignment_table.setCellWidget(row, 0, self._staff_combo(staff_id))
        self.assignment_table.setCellWidget(row, 1, self._time_edit(start))
        self.assignment_table.setCellWidget(row, 2, self._time_edit(end))

    def _default_window(self) -> tuple:
        start = ensure_utc(self.job.start_time)
        return start, start + datetime.timedelta(hours=1)

    def _add_assignment(self) -> None:
        start, end = self._default_window()
        self._append_row(None, start, end)
        self._update_summary()

    def _assign_all_staff(self) -> None:
        start, end = self._default_window()
        self.assignment_table.setRowCount(0)
        for member in self.staff:
            self._append_row(member.id, start, end)
        self._update_summary()

    def _remove_selected(self) -> None:
        rows = sorted({index.row() for index in self.assignment_table.selectedIndexes()}, reverse=True)
        for row in rows:
            self.assignment_table.removeRow(row)
        self._update_summary()

    def _clear_assignments(self) -> None:
        self.assignment_table.setRowCount(0)
        self._update_summary()

    def _update_summary(self) -> None:
        count = self.assignment_table.rowCount()
        self.summary_label.setText(f"{count} staff member{'s' if count != 1 else ''} assigned")

    def _row_time(self, row: int, column: int) -> datetime.datetime:
        value = self.assignment_table.cellWidget(row, column).time()
        return datetime.datetime.combine(self.job_date, datetime.time(value.hour(), value.minute()), tzinfo=UTC)

    def collect_assignments(self) -> List[Dict]:
        rows: List[Dict] = []
        for row in range(self.assignment_table.rowCount()):
            staff_id = self.assignment_table.cellWidget(row, 0).currentData()
            rows.append(
                {
                    "staff_id": staff_id,
                    "start_time": self._row_time(row, 1),
                    "end_time": self._row_time(row, 2),
                }
            )
        return rows

    def _conflict_warning(self, rows: List[Dict]) -> Optional[str]:
        drafts = [
            Assignment(
                id=f"draft-{index}",
                job_id=self.job.id,
                staff_id=row["staff_id"],
                start_time=row["start_time"],
                end_time=row["end_time"],
            )
            for index, row in enumerate(rows)
        ]
        pairs = find_conflicts(drafts)
        if not pairs:
            return None
        names = {member.id: member.name for member in self.staff}
        first, second = pairs[0]
        return (
            f"{names.get(first.staff_id, 'Staff member')} is booked twice: "
            f"{first.start_time:%H:%M}-{first.end_time:%H:%M} and {second.start_time:%H:%M}-{second.end_time:%H:%M}."
        )

    def _handle_save(self) -> None:
        title = self.title_input.text().strip()
        if not title:
            self.feedback_label.setText("Give the job a title.")
            return
        rows = self.collect_assignments()
        if any(not row["staff_id"] for row in rows):
            self.feedback_label.setText("Select a staff member for every assignment.")
            return
        if any(row["end_time"] <= row["start_time"] for row in rows):
            self.feedback_label.setText("End time must be after start time.")
            return

        warning = self._conflict_warning(rows)
        if warning:
            proceed = QMessageBox.question(
                self,
                "Schedule conflict detected",
                warning + "\n\nContinue anyway?",
                QMessageBox.Yes | QMessageBox.No,
                QMessageBox.No,
            )
            if proceed != QMessageBox.Yes:
                return

        changes = {
            "title": title,
            "description": self.description_input.toPlainText().strip(),
            "status": self.status_combo.currentData(),
        }
        if self.on_save:
            try:
                self.on_save(changes, rows)
            except (PersistenceError, LookupError, ValueError) as exc:
                self.feedback_label.setText(str(exc))
                return
        self.accept()
