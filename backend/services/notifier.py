"""
Service de notifications utilisateur (toasts)
"""

import logging
from collections import deque
from typing import List, Optional
from pydantic import BaseModel, Field

from config import now_iso

logger = logging.getLogger("notifier")

DEFAULT_DURATION_MS = 3000
LONG_DURATION_MS = 5000


class Notification(BaseModel):
    level: str  # success | error | info
    title: str
    description: str = ""
    duration_ms: int = DEFAULT_DURATION_MS
    created_at: str = Field(default_factory=now_iso)


class Notifier:
    """
    Collecte les notifications affichées à l'utilisateur.
    Historique borné (les plus récentes en dernier).
    """

    def __init__(self, max_history: int = 100):
        self._history = deque(maxlen=max_history)

    def _emit(self, level: str, title: str, description: str, duration_ms: int) -> Notification:
        notification = Notification(
            level=level, title=title, description=description, duration_ms=duration_ms
        )
        self._history.append(notification)
        log = logger.warning if level == "error" else logger.info
        log(f"[TOAST:{level}] {title} | {description}")
        return notification

    def success(self, title: str, description: str = "", duration_ms: int = DEFAULT_DURATION_MS) -> Notification:
        return self._emit("success", title, description, duration_ms)

    def error(self, title: str, description: str = "", duration_ms: int = LONG_DURATION_MS) -> Notification:
        return self._emit("error", title, description, duration_ms)

    def info(self, title: str, description: str = "", duration_ms: int = DEFAULT_DURATION_MS) -> Notification:
        return self._emit("info", title, description, duration_ms)

    def recent(self, limit: Optional[int] = None) -> List[Notification]:
        items = list(self._history)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def clear(self):
        self._history.clear()
