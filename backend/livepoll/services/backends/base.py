"""
Persistence & realtime backend contract.

Rows are plain dicts shaped like the wire tables:

    sessions(id, title, host_id, session_code, quiz_interval, active, settings, created_at)
    transcriptions(id, session_id, text, created_at)
    polls(id, session_id, question, options, correct_option, generated_from, published, created_at)
    participants(id, session_id, username, created_at)
    poll_answers(id, poll_id, session_id, participant_id, answer, created_at)

Change feeds are scoped per session: `sessions` by its own id, every other
table by `session_id`. Delivery is at-least-once.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Literal, Optional, Union

from livepoll.core.errors import BackendError
from livepoll.services.realtime_bus import SessionBus, channel_name

logger = logging.getLogger(__name__)

TABLES = ("sessions", "transcriptions", "polls", "participants", "poll_answers")
BOOLEAN_COLUMNS = {"active", "published"}

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: ChangeType
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)
    seq: int = 0

    def to_payload(self) -> Dict[str, Any]:
        return {"event": "change", "table": self.table, "type": self.type, "new": self.new, "old": self.old}

    @classmethod
    def from_envelope(cls, envelope: Dict[str, Any]) -> "ChangeEvent":
        return cls(
            table=str(envelope.get("table") or ""),
            type=str(envelope.get("type") or "INSERT").upper(),  # type: ignore[arg-type]
            new=dict(envelope.get("new") or {}),
            old=dict(envelope.get("old") or {}),
            seq=int(envelope.get("seq") or 0),
        )


ChangeCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class Subscription:
    """Handle over one change-feed forwarding task.

    `close()` is synchronous: once it returns, the callback is never invoked
    again for this subscription.

    A feed that ends on the remote side is reported once through `on_lost`;
    the holder has to subscribe again.
    """

    def __init__(
        self,
        table: str,
        session_id: str,
        task: asyncio.Task,
        on_close: Optional[Callable[[], None]] = None,
    ) -> None:
        self.table = table
        self.session_id = session_id
        self._task = task
        self._on_close = on_close
        self._closed = False
        self._lost = False
        self.on_lost: Optional[Callable[["Subscription"], None]] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def lost(self) -> bool:
        return self._lost

    def mark_lost(self) -> None:
        if self._closed or self._lost:
            return
        self._lost = True
        logger.warning("subscription_lost table=%s session_id=%s", self.table, self.session_id)
        if self.on_lost is not None:
            try:
                self.on_lost(self)
            except Exception:
                logger.warning("subscription_on_lost_failed table=%s session_id=%s", self.table, self.session_id, exc_info=True)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._task.done():
            self._task.cancel()
        if self._on_close is not None:
            try:
                self._on_close()
            except Exception:
                logger.warning("subscription_on_close_failed table=%s session_id=%s", self.table, self.session_id, exc_info=True)


async def deliver(subscription_closed: Callable[[], bool], callback: ChangeCallback, event: ChangeEvent) -> None:
    if subscription_closed():
        return
    try:
        result = callback(event)
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.warning("change_callback_failed table=%s type=%s", event.table, event.type, exc_info=True)


def ensure_table(table: str) -> str:
    if table not in TABLES:
        raise BackendError(f"Unknown table: {table}")
    return table


def scope_key(table: str, row: Dict[str, Any]) -> Optional[str]:
    if table == "sessions":
        return row.get("id")
    return row.get("session_id")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def coerce_filter_value(column: str, value: Any) -> Any:
    if column in BOOLEAN_COLUMNS and isinstance(value, str):
        return value.strip().lower() in {"1", "true", "t", "yes"}
    return value


def row_matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    for column, expected in (filters or {}).items():
        if row.get(column) != coerce_filter_value(column, expected):
            return False
    return True


def sort_rows(
    rows: Iterable[Dict[str, Any]],
    order_by: Optional[str] = "created_at",
    descending: bool = False,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    ordered = list(rows)
    if order_by:
        ordered.sort(key=lambda r: (r.get(order_by) is None, str(r.get(order_by) or "")), reverse=descending)
    if limit is not None:
        ordered = ordered[: max(0, int(limit))]
    return ordered


class RealtimeBackend(ABC):
    @abstractmethod
    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update(self, table: str, row_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def delete(self, table: str, row_id: str) -> None:
        ...

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        order_by: Optional[str] = "created_at",
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def subscribe(self, table: str, session_id: str, callback: ChangeCallback) -> Subscription:
        ...

    async def aclose(self) -> None:
        return None


class BusBackedBackend(RealtimeBackend):
    """Shared fan-out half for backends living in the same process as the bus."""

    def __init__(self, bus: Optional[SessionBus] = None, *, duplicate_delivery: bool = False) -> None:
        self.bus = bus or SessionBus()
        # re-send every change once more; exercises at-least-once handling
        self.duplicate_delivery = duplicate_delivery

    async def _publish(
        self,
        table: str,
        change_type: ChangeType,
        new: Dict[str, Any],
        old: Optional[Dict[str, Any]] = None,
    ) -> None:
        key = scope_key(table, new or old or {})
        if not key:
            return
        event = ChangeEvent(table=table, type=change_type, new=dict(new or {}), old=dict(old or {}))
        channel = channel_name(table, key)
        await self.bus.publish(channel, event.to_payload())
        if self.duplicate_delivery:
            await self.bus.publish(channel, event.to_payload())

    async def subscribe(self, table: str, session_id: str, callback: ChangeCallback) -> Subscription:
        ensure_table(table)
        channel = channel_name(table, session_id)
        queue = self.bus.subscribe(channel)
        state = {"closed": False}

        async def _forward() -> None:
            while True:
                envelope = await queue.get()
                await deliver(lambda: state["closed"], callback, ChangeEvent.from_envelope(envelope))

        def _on_close() -> None:
            state["closed"] = True
            self.bus.unsubscribe(channel, queue)

        task = asyncio.create_task(_forward(), name=f"subscription-{channel}")
        return Subscription(table, session_id, task, on_close=_on_close)
