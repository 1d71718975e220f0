from __future__ import annotations

import datetime
import logging
import sys
from pathlib import Path
from typing import Optional

APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from PySide6.QtCore import Qt
from PySide6.QtWidgets import QApplication, QMainWindow, QSplitter

from audit import AUDIT_FILE, AuditLogger
from database import SessionLocal, init_database
from notifications import ChangeNotifier
from schemas import JobWithAssignments
from store import AssignmentStore, PersistenceError
from timegrid import UTC
from ui.scheduler_grid import SchedulerGridPage, open_job_dialog
from ui.sidebar import JobSidebar

THEME_STYLESHEET = """
QWidget { font-size: 13px; }
QGroupBox { font-weight: bold; }
QTableWidget { gridline-color: #d5d9e0; }
"""


def seed_demo_data(store: AssignmentStore, *, day: Optional[datetime.date] = None) -> bool:
    """Populate an empty database with two staff members and two jobs for ``day``."""
    if store.list_staff():
        return False
    day = day or datetime.datetime.now(UTC).date()

    def at(hour: int) -> datetime.datetime:
        return datetime.datetime.combine(day, datetime.time(hour), tzinfo=UTC)

    john = store.add_staff("John Smith")
    sarah = store.add_staff("Sarah Johnson")
    install = store.create_job(
        title="Install New AC",
        description="Install new air conditioning unit in living room",
        status="scheduled",
        start_time=at(9),
        end_time=at(11),
    )
    faucet = store.create_job(
        title="Fix Leaky Faucet",
        description="Repair kitchen sink faucet",
        status="scheduled",
        start_time=at(13),
        end_time=at(14),
    )
    store.create_assignment({"job_id": install.id, "staff_id": john.id, "start_time": at(9), "end_time": at(11)})
    store.create_assignment({"job_id": faucet.id, "staff_id": sarah.id, "start_time": at(13), "end_time": at(14)})
    return True


class MainWindow(QMainWindow):
    def __init__(self, store: AssignmentStore, audit: AuditLogger) -> None:
        super().__init__()
        self.store = store
        self.setWindowTitle("Job Grid Scheduler")
        self.resize(1400, 720)

        self.sidebar = JobSidebar(on_job_selected=self._open_job)
        self.grid_page = SchedulerGridPage(store, audit=audit, on_job_selected=self._open_job)

        splitter = QSplitter(Qt.Horizontal)
        splitter.addWidget(self.sidebar)
        splitter.addWidget(self.grid_page)
        splitter.setStretchFactor(1, 4)
        self.setCentralWidget(splitter)

        self._unsubscribe = store.notifier.subscribe(self._refresh_sidebar)
        self._refresh_sidebar()

    def _refresh_sidebar(self) -> None:
        try:
            self.sidebar.set_jobs(self.store.list_jobs_with_assignments())
        except PersistenceError as exc:
            self.statusBar().showMessage(str(exc), 5000)

    def _open_job(self, job: JobWithAssignments) -> None:
        open_job_dialog(self, self.store, job, self.grid_page.staff)

    def closeEvent(self, event) -> None:
        self._unsubscribe()
        super().closeEvent(event)


def launch_app() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = QApplication(sys.argv)
    app.setStyleSheet(THEME_STYLESHEET)

    init_database()
    store = AssignmentStore(SessionLocal, ChangeNotifier())
    seed_demo_data(store)
    audit = AuditLogger(AUDIT_FILE, actor="desktop")

    window = MainWindow(store, audit)
    window.show()
    return app.exec()


if __name__ == "__main__":
    sys.exit(launch_app())
