from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class SessionBus:
    """In-process fan-out: one list of subscriber queues per channel.

    Every published event is wrapped in an envelope carrying a per-channel
    monotonic `seq` and a server timestamp.
    """

    def __init__(self, max_queue_size: int = 1000) -> None:
        self._subscribers: Dict[str, List[asyncio.Queue]] = defaultdict(list)
        self._seq: Dict[str, int] = defaultdict(int)
        self._max_queue_size = max_queue_size

    def subscribe(self, channel: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers[channel].append(queue)
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(channel)
        if not queues:
            return
        try:
            queues.remove(queue)
        except ValueError:
            pass
        if not queues:
            self._subscribers.pop(channel, None)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel) or [])

    async def publish(self, channel: str, event: Dict[str, Any]) -> Dict[str, Any]:
        self._seq[channel] += 1
        envelope = dict(event)
        envelope["seq"] = self._seq[channel]
        envelope["server_ts_ms"] = int(time.time() * 1000)
        for queue in list(self._subscribers.get(channel) or []):
            try:
                queue.put_nowait(envelope)
            except asyncio.QueueFull:
                logger.warning("session_bus_queue_full channel=%s seq=%s", channel, envelope["seq"])
        return envelope


def channel_name(table: str, session_id: str) -> str:
    return f"{table}:{session_id}"
