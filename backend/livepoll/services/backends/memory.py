from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from livepoll.core.errors import BackendError, ConflictError, NotFoundError
from livepoll.services.backends.base import (
    BusBackedBackend,
    ensure_table,
    now_iso,
    row_matches,
    sort_rows,
)
from livepoll.services.realtime_bus import SessionBus

logger = logging.getLogger(__name__)


class InMemoryBackend(BusBackedBackend):
    """Dict-backed tables with in-process fan-out. Used by tests and single-process demos."""

    def __init__(self, bus: Optional[SessionBus] = None, *, duplicate_delivery: bool = False) -> None:
        super().__init__(bus, duplicate_delivery=duplicate_delivery)
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.unavailable = False
        self.calls: List[str] = []

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        ensure_table(table)
        if self.unavailable:
            raise BackendError("backend unavailable")
        return self._tables.setdefault(table, {})

    def rows(self, table: str) -> List[Dict[str, Any]]:
        """Synchronous peek used by tests and the debug endpoint."""
        return [copy.deepcopy(r) for r in self._tables.get(table, {}).values()]

    def _check_active_code(self, row: Dict[str, Any], exclude_id: Optional[str] = None) -> None:
        if not row.get("active"):
            return
        code = row.get("session_code")
        for other in self._tables.get("sessions", {}).values():
            if other.get("id") == exclude_id:
                continue
            if other.get("active") and other.get("session_code") == code:
                raise ConflictError(f"session_code {code} already belongs to an active session")

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._table(table)
        self.calls.append(f"insert:{table}")
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid4()))
        stored.setdefault("created_at", now_iso())
        if stored["id"] in rows:
            raise ConflictError(f"{table} row {stored['id']} already exists")
        if table == "sessions":
            stored.setdefault("active", True)
            self._check_active_code(stored)
        if table == "polls":
            stored.setdefault("published", False)
        rows[stored["id"]] = stored
        await self._publish(table, "INSERT", copy.deepcopy(stored))
        return copy.deepcopy(stored)

    async def update(self, table: str, row_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._table(table)
        self.calls.append(f"update:{table}")
        current = rows.get(row_id)
        if current is None:
            raise NotFoundError(f"{table} row {row_id} not found")
        updated = {**current, **copy.deepcopy(fields), "id": row_id}
        if table == "sessions":
            self._check_active_code(updated, exclude_id=row_id)
        old = copy.deepcopy(current)
        rows[row_id] = updated
        await self._publish(table, "UPDATE", copy.deepcopy(updated), old)
        return copy.deepcopy(updated)

    async def delete(self, table: str, row_id: str) -> None:
        rows = self._table(table)
        self.calls.append(f"delete:{table}")
        old = rows.pop(row_id, None)
        if old is None:
            return
        await self._publish(table, "DELETE", {}, old)

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        order_by: Optional[str] = "created_at",
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        rows = self._table(table)
        self.calls.append(f"select:{table}")
        matched = [copy.deepcopy(r) for r in rows.values() if row_matches(r, filters)]
        return sort_rows(matched, order_by, descending, limit)
