from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, WebSocket

from livepoll.api.deps import get_bus_backend
from livepoll.services.backends.base import TABLES
from livepoll.services.realtime_bus import channel_name

router = APIRouter()
logger = logging.getLogger(__name__)


async def _safe_send_json(websocket: WebSocket, lock: asyncio.Lock, payload: Dict[str, Any]) -> None:
    async with lock:
        await websocket.send_json(payload)


@router.websocket("/realtime/{table}/{session_id}")
async def realtime_changes(websocket: WebSocket, table: str, session_id: str) -> None:
    await websocket.accept()
    if table not in TABLES:
        await websocket.send_json({"event": "error", "payload": {"code": "unknown_table", "message": table}})
        await websocket.close(code=1008)
        return

    backend = get_bus_backend(websocket.app.state.backend)
    channel = channel_name(table, session_id)
    # subscribe before the hello so nothing written after it is missed
    queue = backend.bus.subscribe(channel)
    send_lock = asyncio.Lock()

    await websocket.send_json({"event": "connected", "table": table, "session_id": session_id})

    async def _forward_bus_events() -> None:
        try:
            while True:
                event = await queue.get()
                await _safe_send_json(websocket, send_lock, event)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("realtime_forward_failed channel=%s", channel)

    forward_task = asyncio.create_task(_forward_bus_events())

    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break
            text_payload = message.get("text")
            if text_payload is None:
                continue
            try:
                obj = json.loads(text_payload)
            except ValueError:
                await _safe_send_json(
                    websocket,
                    send_lock,
                    {"event": "error", "payload": {"code": "invalid_json", "message": "message must be JSON"}},
                )
                continue
            if isinstance(obj, dict) and obj.get("event") == "ping":
                await _safe_send_json(websocket, send_lock, {"event": "pong"})
    finally:
        forward_task.cancel()
        backend.bus.unsubscribe(channel, queue)
        logger.info("realtime_client_disconnected channel=%s", channel)
