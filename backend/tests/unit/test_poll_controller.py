import asyncio

import pytest

from livepoll.core.errors import ValidationError
from livepoll.schemas.live_session import SessionSettings
from livepoll.services.poll_controller import PollController, PollCycleState

LONG_TEXT = "Newton's first law says an object keeps its velocity unless a net force acts on it."


async def _host(make_store, **settings):
    store = make_store()
    await store.create("Physics 101", SessionSettings(**settings))
    return store


@pytest.mark.asyncio
async def test_short_excerpt_skips_without_calling_generator(make_store, settings, make_generator) -> None:
    store = await _host(make_store)
    store.append_transcript("too short")
    generator = make_generator()
    controller = PollController(store, generator, settings=settings)

    outcome = await controller.generate_now()

    assert outcome.state == PollCycleState.SKIPPED
    assert outcome.reason == "too_short"
    assert generator.calls == []
    assert store.polls == []
    assert store.notices.history[-1].message == "Not enough new transcript to generate a poll"


@pytest.mark.asyncio
async def test_generate_now_publishes_poll(make_store, settings, make_generator, backend) -> None:
    store = await _host(make_store)
    store.append_transcript(LONG_TEXT)
    generator = make_generator()
    controller = PollController(store, generator, settings=settings)

    outcome = await controller.generate_now()
    await store.flush()

    assert outcome.state == PollCycleState.PUBLISHED
    assert generator.calls == [LONG_TEXT]
    assert [p.question for p in store.polls] == ["What keeps an object moving?"]
    assert store.polls[0].generated_from == LONG_TEXT
    assert backend.rows("polls")[0]["options"] == ["Inertia", "Friction", "Gravity", "Magnetism"]


@pytest.mark.asyncio
async def test_generator_failure_becomes_failed_state(make_store, settings, make_generator, generator_error) -> None:
    store = await _host(make_store)
    store.append_transcript(LONG_TEXT)
    controller = PollController(store, make_generator(error=generator_error), settings=settings)

    outcome = await controller.generate_now()

    assert outcome.state == PollCycleState.FAILED
    assert "model unavailable" in outcome.reason
    assert controller.state == PollCycleState.FAILED
    assert store.polls == []
    assert store.notices.history[-1].level == "error"


@pytest.mark.asyncio
async def test_generator_timeout_is_failure(make_store, settings, make_generator) -> None:
    store = await _host(make_store)
    store.append_transcript(LONG_TEXT)
    settings.poll_generator_timeout_seconds = 0.01
    controller = PollController(store, make_generator(gate=asyncio.Event()), settings=settings)

    outcome = await controller.generate_now()

    assert outcome.state == PollCycleState.FAILED
    assert outcome.reason == "timeout"


@pytest.mark.asyncio
async def test_timer_cycles_and_rearms(make_store, settings, make_generator) -> None:
    store = await _host(make_store)
    store.append_transcript(LONG_TEXT)
    generator = make_generator()
    controller = PollController(store, generator, settings=settings, interval_seconds=0.02)

    controller.start()
    assert controller.state == PollCycleState.SCHEDULED
    await asyncio.sleep(0.15)
    controller.stop()

    assert len(generator.calls) >= 2
    assert all(o.state == PollCycleState.PUBLISHED for o in controller.history)
    assert controller.state == PollCycleState.IDLE


@pytest.mark.asyncio
async def test_skipped_cycle_still_rearms(make_store, settings, make_generator) -> None:
    store = await _host(make_store)
    generator = make_generator()
    controller = PollController(store, generator, settings=settings, interval_seconds=0.02)

    controller.start()
    await asyncio.sleep(0.1)
    controller.stop()

    assert generator.calls == []
    assert len(controller.history) >= 2
    assert {o.reason for o in controller.history} == {"too_short"}


@pytest.mark.asyncio
async def test_stop_cancels_armed_timer(make_store, settings, make_generator) -> None:
    store = await _host(make_store)
    store.append_transcript(LONG_TEXT)
    generator = make_generator()
    controller = PollController(store, generator, settings=settings, interval_seconds=0.05)

    controller.start()
    controller.stop()
    await asyncio.sleep(0.1)

    assert generator.calls == []
    assert controller.seconds_until_next() is None
    assert not controller.running


@pytest.mark.asyncio
async def test_stop_during_generation_discards_poll(make_store, settings, make_generator) -> None:
    store = await _host(make_store)
    store.append_transcript(LONG_TEXT)
    generator = make_generator(gate=asyncio.Event())
    controller = PollController(store, generator, settings=settings)

    manual = asyncio.create_task(controller.generate_now())
    await generator.started.wait()
    controller.stop()
    outcome = await manual

    assert outcome.reason == "stopped"
    assert store.polls == []


@pytest.mark.asyncio
async def test_stop_cancels_timer_cycle_in_flight(make_store, settings, make_generator, generator_error) -> None:
    store = await _host(make_store)
    store.append_transcript(LONG_TEXT)
    gate = asyncio.Event()
    generator = make_generator(error=generator_error, gate=gate)
    controller = PollController(store, generator, settings=settings, interval_seconds=0.01)

    controller.start()
    await asyncio.wait_for(generator.started.wait(), timeout=1)
    controller.stop()
    gate.set()
    await asyncio.sleep(0.05)

    assert controller.state == PollCycleState.IDLE
    assert controller.history == []
    assert "Failed to generate poll" not in [n.message for n in store.notices.history]
    assert len(generator.calls) == 1
    assert store.polls == []


@pytest.mark.asyncio
async def test_manual_trigger_rejected_while_generating(make_store, settings, make_generator) -> None:
    store = await _host(make_store)
    store.append_transcript(LONG_TEXT)
    gate = asyncio.Event()
    generator = make_generator(gate=gate)
    controller = PollController(store, generator, settings=settings)

    first = asyncio.create_task(controller.generate_now())
    await generator.started.wait()
    second = await controller.generate_now()
    gate.set()
    first_outcome = await first

    assert second.state == PollCycleState.SKIPPED
    assert second.reason == "busy"
    assert first_outcome.state == PollCycleState.PUBLISHED
    assert len(generator.calls) == 1


@pytest.mark.asyncio
async def test_independent_manual_trigger_keeps_schedule(make_store, settings, make_generator) -> None:
    store = await _host(make_store)
    store.append_transcript(LONG_TEXT)
    controller = PollController(
        store, make_generator(), settings=settings, manual_trigger_policy="independent", interval_seconds=5
    )
    controller.start()
    await asyncio.sleep(0.05)
    before = controller.seconds_until_next()

    await controller.generate_now()

    assert controller.seconds_until_next() <= before
    assert controller.state == PollCycleState.SCHEDULED
    controller.stop()


@pytest.mark.asyncio
async def test_reset_schedule_manual_trigger_rearms(make_store, settings, make_generator) -> None:
    store = await _host(make_store)
    store.append_transcript(LONG_TEXT)
    controller = PollController(
        store, make_generator(), settings=settings, manual_trigger_policy="reset_schedule", interval_seconds=5
    )
    controller.start()
    await asyncio.sleep(0.05)
    before = controller.seconds_until_next()

    await controller.generate_now()

    assert controller.seconds_until_next() > before
    assert controller.state == PollCycleState.SCHEDULED
    controller.stop()


@pytest.mark.asyncio
async def test_auto_publish_results_publishes_previous_poll(make_store, settings, make_generator) -> None:
    store = await _host(make_store, auto_publish_results=True)
    store.append_transcript(LONG_TEXT)
    controller = PollController(store, make_generator(), settings=settings)

    first = (await controller.generate_now()).poll
    assert not store.is_published(first.id)
    second = (await controller.generate_now()).poll
    await store.flush()

    assert store.is_published(first.id)
    assert not store.is_published(second.id)


@pytest.mark.asyncio
async def test_ending_session_stops_schedule(make_store, settings, make_generator) -> None:
    store = await _host(make_store)
    controller = PollController(store, make_generator(), settings=settings, interval_seconds=5)
    controller.start()

    await store.end()

    assert not controller.running
    assert controller.state == PollCycleState.IDLE
    with pytest.raises(ValidationError):
        controller.start()


@pytest.mark.asyncio
async def test_only_host_can_start(make_store, settings, make_generator, drain) -> None:
    host = await _host(make_store)
    participant = make_store()
    await participant.join(host.session.access_code, "Ann")
    controller = PollController(participant, make_generator(), settings=settings)

    with pytest.raises(ValidationError):
        controller.start()
    with pytest.raises(ValidationError):
        await controller.generate_now()


@pytest.mark.asyncio
async def test_excerpt_uses_poll_frequency_window(make_store, settings, make_generator) -> None:
    store = await _host(make_store, poll_frequency=2)
    store.append_transcript("first part of the lecture")
    store.append_transcript("second part")
    controller = PollController(store, make_generator(), settings=settings)

    assert controller.build_excerpt() == "first part of the lecture second part"
    assert controller.interval_seconds == 120.0
