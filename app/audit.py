from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any, Dict, Optional

DATA_DIR = Path(__file__).resolve().parent / "data"
AUDIT_FILE = DATA_DIR / "audit.log"


class AuditLogger:
    """Append-only JSON line logger for assignment moves and edits."""

    def __init__(self, file_path: Path = AUDIT_FILE, *, actor: Optional[str] = None) -> None:
        self.file_path = file_path
        self.actor = actor
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.file_path.exists():
            self.file_path.touch()

    def log(
        self,
        event: str,
        username: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "event": event,
            "username": username or self.actor,
        }
        if details:
            entry["details"] = details

        with self.file_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, default=str))
            handle.write("\n")

    def __call__(self, event: str, details: Dict[str, Any]) -> None:
        self.log(event, details=details)
