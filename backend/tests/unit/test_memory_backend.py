import pytest

from livepoll.core.errors import BackendError, ConflictError, NotFoundError
from livepoll.services.backends.memory import InMemoryBackend


def _session_row(session_id: str, code: str, active: bool = True) -> dict:
    return {"id": session_id, "title": "Demo", "host_id": "h", "session_code": code, "active": active}


@pytest.mark.asyncio
async def test_insert_fills_defaults_and_select_filters(backend: InMemoryBackend) -> None:
    stored = await backend.insert("polls", {"session_id": "s1", "question": "Q", "options": ["a", "b"]})

    assert stored["id"]
    assert stored["created_at"]
    assert stored["published"] is False
    assert await backend.select("polls", {"session_id": "s1"}) == [stored]
    assert await backend.select("polls", {"session_id": "other"}) == []


@pytest.mark.asyncio
async def test_select_orders_and_limits(backend: InMemoryBackend) -> None:
    for i, ts in enumerate(["2026-01-01T00:00:03+00:00", "2026-01-01T00:00:01+00:00", "2026-01-01T00:00:02+00:00"]):
        await backend.insert("transcriptions", {"id": f"t{i}", "session_id": "s1", "text": str(i), "created_at": ts})

    ascending = await backend.select("transcriptions", {"session_id": "s1"})
    newest = await backend.select("transcriptions", {"session_id": "s1"}, descending=True, limit=2)

    assert [r["id"] for r in ascending] == ["t1", "t2", "t0"]
    assert [r["id"] for r in newest] == ["t0", "t2"]


@pytest.mark.asyncio
async def test_active_access_code_is_unique(backend: InMemoryBackend) -> None:
    await backend.insert("sessions", _session_row("s1", "123456"))

    with pytest.raises(ConflictError):
        await backend.insert("sessions", _session_row("s2", "123456"))

    # an inactive session does not hold its code
    await backend.update("sessions", "s1", {"active": False})
    await backend.insert("sessions", _session_row("s3", "123456"))


@pytest.mark.asyncio
async def test_boolean_filter_from_query_string(backend: InMemoryBackend) -> None:
    await backend.insert("sessions", _session_row("s1", "111111", active=False))
    await backend.insert("sessions", _session_row("s2", "222222"))

    rows = await backend.select("sessions", {"active": "true"})

    assert [r["id"] for r in rows] == ["s2"]


@pytest.mark.asyncio
async def test_update_missing_row_and_unknown_table(backend: InMemoryBackend) -> None:
    with pytest.raises(NotFoundError):
        await backend.update("polls", "nope", {"published": True})
    with pytest.raises(BackendError):
        await backend.select("users")


@pytest.mark.asyncio
async def test_unavailable_backend_raises(backend: InMemoryBackend) -> None:
    backend.unavailable = True

    with pytest.raises(BackendError):
        await backend.insert("transcriptions", {"session_id": "s1", "text": "x"})


@pytest.mark.asyncio
async def test_subscription_receives_scoped_changes(backend: InMemoryBackend, drain) -> None:
    events = []
    sub = await backend.subscribe("transcriptions", "s1", events.append)

    await backend.insert("transcriptions", {"id": "t1", "session_id": "s1", "text": "hello"})
    await backend.insert("transcriptions", {"id": "t2", "session_id": "s2", "text": "elsewhere"})
    await drain()

    assert [(e.type, e.new["id"]) for e in events] == [("INSERT", "t1")]
    assert events[0].seq == 1
    sub.close()


@pytest.mark.asyncio
async def test_closed_subscription_gets_nothing(backend: InMemoryBackend, drain) -> None:
    events = []
    sub = await backend.subscribe("polls", "s1", events.append)
    await backend.insert("polls", {"id": "p1", "session_id": "s1", "question": "Q", "options": ["a", "b"]})
    # closed before the forwarding task ran
    sub.close()
    await drain()

    assert events == []
    assert sub.closed
    assert backend.bus.subscriber_count("polls:s1") == 0


@pytest.mark.asyncio
async def test_delete_event_carries_old_row(drain) -> None:
    backend = InMemoryBackend()
    events = []
    await backend.insert("participants", {"id": "u1", "session_id": "s1", "username": "Ann"})
    sub = await backend.subscribe("participants", "s1", events.append)

    await backend.delete("participants", "u1")
    await backend.delete("participants", "u1")
    await drain()

    assert [(e.type, e.old.get("id")) for e in events] == [("DELETE", "u1")]
    sub.close()


@pytest.mark.asyncio
async def test_duplicate_delivery_knob(drain) -> None:
    backend = InMemoryBackend(duplicate_delivery=True)
    events = []
    sub = await backend.subscribe("transcriptions", "s1", events.append)

    await backend.insert("transcriptions", {"id": "t1", "session_id": "s1", "text": "hello"})
    await drain()

    assert [e.new["id"] for e in events] == ["t1", "t1"]
    sub.close()
