from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    """One-shot delayed coroutine with an explicit cancellation handle.

    The callback runs inside the same task as the delay, so `cancel()` reaches
    both a pending timer and a callback that is already running.
    """

    def __init__(
        self,
        delay_seconds: float,
        callback: Callable[[], Awaitable[None]],
        *,
        name: Optional[str] = None,
    ) -> None:
        loop = asyncio.get_running_loop()
        self.delay_seconds = max(0.0, float(delay_seconds))
        self.due_at = loop.time() + self.delay_seconds
        self.name = name or "scheduled-task"
        self._callback = callback
        self._fired = False
        self._task: asyncio.Task = loop.create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        await asyncio.sleep(self.delay_seconds)
        self._fired = True
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("scheduled_task_failed name=%s", self.name)

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def pending(self) -> bool:
        return not self._fired and not self._task.done()

    def done(self) -> bool:
        return self._task.done()

    def cancelled(self) -> bool:
        return self._task.cancelled()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    def remaining(self) -> float:
        if self._fired or self._task.done():
            return 0.0
        return max(0.0, self.due_at - asyncio.get_running_loop().time())

    async def wait(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            pass
