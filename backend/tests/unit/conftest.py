import asyncio
from typing import List, Optional

import pytest

from livepoll.core.config import Settings
from livepoll.core.errors import GeneratorError
from livepoll.llm.poll_generator import PollGenerator
from livepoll.schemas.live_session import GeneratedPoll
from livepoll.services.backends.memory import InMemoryBackend
from livepoll.services.notifications import NotificationCenter
from livepoll.services.session_store import SessionStore


class FakeGenerator(PollGenerator):
    def __init__(
        self,
        poll: Optional[GeneratedPoll] = None,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.poll = poll or GeneratedPoll(
            question="What keeps an object moving?",
            options=["Inertia", "Friction", "Gravity", "Magnetism"],
        )
        self.error = error
        self.gate = gate
        self.calls: List[str] = []
        self.started = asyncio.Event()

    async def generate(self, excerpt: str) -> GeneratedPoll:
        self.calls.append(excerpt)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.poll


@pytest.fixture
def settings() -> Settings:
    return Settings(
        access_code_max_attempts=3,
        poll_min_excerpt_chars=50,
        poll_generator_timeout_seconds=2.0,
        manual_trigger_policy="independent",
        duplicate_answer_policy="count_all",
        capture_restart_delay_seconds=0.0,
    )


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def make_store(backend, settings):
    def _make(**kwargs) -> SessionStore:
        kwargs.setdefault("notifications", NotificationCenter())
        kwargs.setdefault("settings", settings)
        return SessionStore(backend, **kwargs)

    return _make


@pytest.fixture
def drain():
    async def _drain(rounds: int = 20) -> None:
        # realtime delivery hops through the bus queue and a forwarding task
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _drain


@pytest.fixture
def generator_error() -> GeneratorError:
    return GeneratorError("model unavailable")


@pytest.fixture
def make_generator():
    return FakeGenerator
