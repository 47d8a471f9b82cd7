"""
Client for a remote livepoll service.

Table operations go over REST (`/api/v1/tables/{table}`), change feeds over the
realtime websocket (`/api/v1/realtime/{table}/{session_id}`). The websocket
sends a `connected` hello before any change event; `subscribe` waits for it so
nothing written after it returns can be missed.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx
import websockets

from livepoll.core.config import get_settings
from livepoll.core.errors import BackendError, ConflictError, NotFoundError
from livepoll.services.backends.base import (
    ChangeCallback,
    ChangeEvent,
    RealtimeBackend,
    Subscription,
    deliver,
    ensure_table,
)

logger = logging.getLogger(__name__)


def _ws_base(base_url: str) -> str:
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://"):]
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://"):]
    return base_url


class HttpBackend(RealtimeBackend):
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.backend_base_url).rstrip("/")
        self.prefix = settings.api_v1_prefix
        self.timeout = timeout if timeout is not None else settings.backend_timeout_seconds
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        self._owns_client = client is None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(method, f"{self.prefix}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise BackendError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code == 409:
            raise ConflictError(resp.text[:300])
        if resp.status_code == 404:
            raise NotFoundError(resp.text[:300])
        if resp.status_code >= 400:
            raise BackendError(f"{method} {path} status={resp.status_code} body={resp.text[:300]}")
        return resp

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._request("POST", f"/tables/{ensure_table(table)}", json=row)
        return resp.json()

    async def update(self, table: str, row_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._request("PATCH", f"/tables/{ensure_table(table)}/{row_id}", json=fields)
        return resp.json()

    async def delete(self, table: str, row_id: str) -> None:
        try:
            await self._request("DELETE", f"/tables/{ensure_table(table)}/{row_id}")
        except NotFoundError:
            return

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        order_by: Optional[str] = "created_at",
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        for column, value in (filters or {}).items():
            params[column] = str(value).lower() if isinstance(value, bool) else value
        if order_by:
            params["order_by"] = order_by
        if descending:
            params["desc"] = "true"
        if limit is not None:
            params["limit"] = int(limit)
        resp = await self._request("GET", f"/tables/{ensure_table(table)}", params=params)
        data = resp.json()
        if not isinstance(data, list):
            raise BackendError(f"select {table} returned {type(data).__name__}, expected list")
        return data

    async def subscribe(self, table: str, session_id: str, callback: ChangeCallback) -> Subscription:
        ensure_table(table)
        url = f"{_ws_base(self.base_url)}{self.prefix}/realtime/{table}/{session_id}"
        try:
            ws = await websockets.connect(url)
            hello = json.loads(await asyncio.wait_for(ws.recv(), timeout=self.timeout))
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException, ValueError) as exc:
            raise BackendError(f"realtime connect failed table={table}: {exc}") from exc
        if hello.get("event") != "connected":
            await ws.close()
            raise BackendError(f"unexpected realtime hello: {hello}")

        state = {"closed": False}
        holder: Dict[str, Subscription] = {}

        async def _forward() -> None:
            try:
                async for raw in ws:
                    try:
                        envelope = json.loads(raw)
                    except ValueError:
                        logger.warning("realtime_message_invalid table=%s session_id=%s", table, session_id)
                        continue
                    if envelope.get("event") != "change":
                        continue
                    await deliver(lambda: state["closed"], callback, ChangeEvent.from_envelope(envelope))
            except websockets.ConnectionClosed:
                logger.info("realtime_connection_closed table=%s session_id=%s", table, session_id)
            finally:
                await ws.close()
            # reached only when the server ended the feed; close() cancels this task
            holder["subscription"].mark_lost()

        def _on_close() -> None:
            state["closed"] = True

        task = asyncio.create_task(_forward(), name=f"realtime-{table}-{session_id}")
        subscription = Subscription(table, session_id, task, on_close=_on_close)
        holder["subscription"] = subscription
        return subscription

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
