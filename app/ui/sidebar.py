from __future__ import annotations

from typing import Callable, List, Optional

from PySide6.QtCore import Qt
from PySide6.QtWidgets import QComboBox, QGroupBox, QListWidget, QListWidgetItem, QVBoxLayout

from schemas import JobWithAssignments
from timegrid import ensure_utc


class JobSidebar(QGroupBox):
    def __init__(
        self,
        *,
        on_job_selected: Optional[Callable[[JobWithAssignments], None]] = None,
        parent=None,
    ) -> None:
        super().__init__("Jobs", parent)
        self.on_job_selected = on_job_selected
        self.jobs: List[JobWithAssignments] = []

        layout = QVBoxLayout(self)
        self.status_filter = QComboBox()
        for label in ["All", "Scheduled", "Unscheduled"]:
            self.status_filter.addItem(label, label.lower())
        self.status_filter.currentIndexChanged.connect(self._render)
        layout.addWidget(self.status_filter)

        self.job_list = QListWidget()
        self.job_list.itemDoubleClicked.connect(self._handle_item)
        layout.addWidget(self.job_list)

    def set_jobs(self, jobs: List[JobWithAssignments]) -> None:
        self.jobs = list(jobs)
        self._render()

    def _render(self) -> None:
        status = self.status_filter.currentData()
        self.job_list.clear()
        for job in self.jobs:
            if status != "all" and job.status != status:
                continue
            start = ensure_utc(job.start_time)
            count = len(job.assignments)
            item = QListWidgetItem(
                f"{job.title}\n{start:%b %d %H:%M} · {job.status} · {count} assigned"
            )
            item.setData(Qt.UserRole, job.id)
            item.setToolTip(job.description or job.title)
            self.job_list.addItem(item)

    def _handle_item(self, item: QListWidgetItem) -> None:
        job_id = item.data(Qt.UserRole)
        job = next((entry for entry in self.jobs if entry.id == job_id), None)
        if job and self.on_job_selected:
            self.on_job_selected(job)
