from __future__ import annotations

import logging
from typing import Callable, List

logger = logging.getLogger(__name__)


class ChangeNotifier:
    """Explicit "assignments may have changed" channel.

    Carries no payload; subscribers re-fetch jobs and re-run placement.
    """

    def __init__(self) -> None:
        self._subscribers: List[Callable[[], None]] = []

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception:
                logger.exception("Change subscriber %r failed", callback)

    def __len__(self) -> int:
        return len(self._subscribers)
