"""
Transient user-facing notices (the "toast" surface).

Every user-triggered action reports success or failure here; UI layers
register a listener and render however they like.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, List, Literal

logger = logging.getLogger(__name__)

NoticeLevel = Literal["success", "info", "error"]


@dataclass(frozen=True)
class Notice:
    level: NoticeLevel
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


NoticeListener = Callable[[Notice], None]


class NotificationCenter:
    def __init__(self, max_history: int = 50) -> None:
        self._history: Deque[Notice] = deque(maxlen=max_history)
        self._listeners: List[NoticeListener] = []

    def add_listener(self, listener: NoticeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: NoticeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def history(self) -> List[Notice]:
        return list(self._history)

    def clear(self) -> None:
        self._history.clear()

    def notify(self, level: NoticeLevel, message: str) -> Notice:
        notice = Notice(level=level, message=message)
        self._history.append(notice)
        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception:
                logger.warning("notice_listener_failed message=%s", message, exc_info=True)
        return notice

    def success(self, message: str) -> Notice:
        return self.notify("success", message)

    def info(self, message: str) -> Notice:
        return self.notify("info", message)

    def error(self, message: str) -> Notice:
        return self.notify("error", message)
