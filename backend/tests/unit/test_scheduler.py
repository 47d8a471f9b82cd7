import asyncio

import pytest

from livepoll.services.scheduler import ScheduledTask


@pytest.mark.asyncio
async def test_fires_after_delay() -> None:
    fired = []

    async def _callback() -> None:
        fired.append(True)

    task = ScheduledTask(0.01, _callback, name="t")
    assert task.pending
    await task.wait()

    assert fired == [True]
    assert task.fired
    assert task.done()
    assert task.remaining() == 0.0


@pytest.mark.asyncio
async def test_cancel_before_fire() -> None:
    fired = []

    async def _callback() -> None:
        fired.append(True)

    task = ScheduledTask(10, _callback)
    assert task.remaining() > 9
    task.cancel()
    await task.wait()

    assert fired == []
    assert task.cancelled()
    assert not task.pending


@pytest.mark.asyncio
async def test_cancel_reaches_running_callback() -> None:
    started = asyncio.Event()
    finished = []

    async def _callback() -> None:
        started.set()
        await asyncio.sleep(10)
        finished.append(True)

    task = ScheduledTask(0, _callback)
    await started.wait()
    task.cancel()
    await task.wait()

    assert task.fired
    assert finished == []


@pytest.mark.asyncio
async def test_callback_error_is_logged_not_raised() -> None:
    async def _callback() -> None:
        raise RuntimeError("boom")

    task = ScheduledTask(0, _callback)
    await task.wait()

    assert task.done()
    assert not task.cancelled()
