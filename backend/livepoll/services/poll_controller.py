"""
Poll Lifecycle Controller.

Drives automatic poll generation for a host:

    IDLE -> SCHEDULED -> GENERATING -> (PUBLISHED | FAILED | SKIPPED) -> SCHEDULED

The timer is self-rescheduling: the next interval is armed only after the
current cycle has finished, so slow generations never overlap. `stop()`
cancels the armed timer and any running cycle, and bumps an epoch so a
cycle that still finishes afterwards is discarded without a trace.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional
from uuid import uuid4

from livepoll.core.config import Settings, get_settings
from livepoll.core.errors import GeneratorError, ValidationError
from livepoll.llm.poll_generator import PollGenerator
from livepoll.schemas.live_session import PollQuestion, utcnow
from livepoll.services.scheduler import ScheduledTask
from livepoll.services.session_store import LifecycleEvent, SessionStore

logger = logging.getLogger(__name__)

ManualTriggerPolicy = Literal["independent", "reset_schedule"]


class PollCycleState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    GENERATING = "generating"
    PUBLISHED = "published"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class CycleOutcome:
    state: PollCycleState
    poll: Optional[PollQuestion] = None
    reason: Optional[str] = None
    manual: bool = False
    finished_at: datetime = field(default_factory=utcnow)


class PollController:
    def __init__(
        self,
        store: SessionStore,
        generator: PollGenerator,
        *,
        settings: Optional[Settings] = None,
        manual_trigger_policy: Optional[ManualTriggerPolicy] = None,
        interval_seconds: Optional[float] = None,
    ) -> None:
        self.store = store
        self.generator = generator
        self._settings = settings or get_settings()
        self.manual_trigger_policy: ManualTriggerPolicy = (
            manual_trigger_policy or self._settings.manual_trigger_policy
        )
        self.min_excerpt_chars = self._settings.poll_min_excerpt_chars
        self.generator_timeout = self._settings.poll_generator_timeout_seconds
        # overrides poll_frequency; tests use sub-second intervals
        self._interval_override = interval_seconds

        self.state = PollCycleState.IDLE
        self.history: List[CycleOutcome] = []
        self._running = False
        self._epoch = 0
        self._timer: Optional[ScheduledTask] = None
        self._cycle_timer: Optional[ScheduledTask] = None
        self._manual_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_outcome(self) -> Optional[CycleOutcome]:
        return self.history[-1] if self.history else None

    @property
    def poll_frequency_minutes(self) -> int:
        session = self.store.session
        if session is None:
            return self._settings.default_poll_frequency_minutes
        return session.settings.poll_frequency

    @property
    def interval_seconds(self) -> float:
        if self._interval_override is not None:
            return self._interval_override
        return self.poll_frequency_minutes * 60.0

    def seconds_until_next(self) -> Optional[float]:
        if self._timer is None or not self._timer.pending:
            return None
        return self._timer.remaining()

    # ------------------------------------------------------------------

    def start(self) -> None:
        session = self.store.session
        if session is None or not self.store.is_host:
            raise ValidationError("Only the host of an active session can schedule polls")
        if session.status == "completed":
            raise ValidationError("Session has ended")
        if self._running:
            return
        self._running = True
        self._epoch += 1
        self.store.add_lifecycle_listener(self._on_lifecycle)
        self._arm()
        logger.info(
            "poll_schedule_started session_id=%s interval_s=%s",
            session.id,
            self.interval_seconds,
        )

    def stop(self) -> None:
        was_running = self._running
        self._running = False
        self._epoch += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._cycle_timer is not None:
            self._cycle_timer.cancel()
            self._cycle_timer = None
        if self._manual_task is not None and not self._manual_task.done():
            self._manual_task.cancel()
        self._manual_task = None
        self.state = PollCycleState.IDLE
        self.store.remove_lifecycle_listener(self._on_lifecycle)
        if was_running:
            logger.info("poll_schedule_stopped")

    async def generate_now(self) -> CycleOutcome:
        """Run one cycle immediately; refused while another is generating."""
        session = self.store.session
        if session is None or not self.store.is_host:
            raise ValidationError("Only the host of an active session can generate polls")
        if self.state == PollCycleState.GENERATING:
            self.store.notices.info("A poll is already being generated")
            return CycleOutcome(state=PollCycleState.SKIPPED, reason="busy", manual=True)

        epoch = self._epoch
        task = asyncio.create_task(self._run_cycle(epoch, manual=True), name=f"poll-manual-{session.id}")
        self._manual_task = task
        await asyncio.wait({task})
        if self._manual_task is task:
            self._manual_task = None
        if task.cancelled():
            return CycleOutcome(state=PollCycleState.IDLE, reason="stopped", manual=True)
        outcome = task.result()

        if self._running and epoch == self._epoch:
            if self.manual_trigger_policy == "reset_schedule":
                self._arm()
            elif self._timer is not None and self._timer.pending:
                self.state = PollCycleState.SCHEDULED
        return outcome

    def build_excerpt(self, now: Optional[datetime] = None) -> str:
        entries = self.store.recent_transcript(self.poll_frequency_minutes, now=now)
        return " ".join(e.text.strip() for e in entries if e.text.strip())

    # ------------------------------------------------------------------

    def _arm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        session_id = self.store.session.id if self.store.session else "-"
        self._timer = ScheduledTask(self.interval_seconds, self._on_timer, name=f"poll-timer-{session_id}")
        self.state = PollCycleState.SCHEDULED

    async def _on_timer(self) -> None:
        epoch = self._epoch
        # the fired timer now runs this cycle: _arm must not cancel it, stop() must
        fired, self._timer = self._timer, None
        self._cycle_timer = fired
        try:
            if self._manual_task is not None and not self._manual_task.done():
                self._record(CycleOutcome(state=PollCycleState.SKIPPED, reason="busy"))
            else:
                await self._run_cycle(epoch, manual=False)
        finally:
            if self._cycle_timer is fired:
                self._cycle_timer = None
            if self._running and epoch == self._epoch:
                self._arm()

    def _on_lifecycle(self, event: LifecycleEvent) -> None:
        logger.info("poll_schedule_lifecycle event=%s", event)
        self.stop()

    def _record(self, outcome: CycleOutcome) -> CycleOutcome:
        self.state = outcome.state
        self.history.append(outcome)
        return outcome

    def _stale(self, epoch: int, session_id: str) -> bool:
        current = self.store.session
        return epoch != self._epoch or current is None or current.id != session_id

    def _fail(self, epoch: int, session_id: str, notice: str, reason: str, manual: bool) -> CycleOutcome:
        # a stopped controller stays IDLE and silent
        if self._stale(epoch, session_id):
            return CycleOutcome(state=PollCycleState.IDLE, reason="stopped", manual=manual)
        self.store.notices.error(notice)
        return self._record(CycleOutcome(state=PollCycleState.FAILED, reason=reason, manual=manual))

    async def _run_cycle(self, epoch: int, *, manual: bool) -> CycleOutcome:
        session = self.store.session
        if session is None or session.status == "completed":
            return self._record(CycleOutcome(state=PollCycleState.SKIPPED, reason="no_session", manual=manual))

        self.state = PollCycleState.GENERATING
        excerpt = self.build_excerpt()
        if len(excerpt) < self.min_excerpt_chars:
            logger.info("poll_cycle_skipped session_id=%s excerpt_chars=%s", session.id, len(excerpt))
            self.store.notices.info("Not enough new transcript to generate a poll")
            return self._record(CycleOutcome(state=PollCycleState.SKIPPED, reason="too_short", manual=manual))

        try:
            generated = await asyncio.wait_for(self.generator.generate(excerpt), timeout=self.generator_timeout)
        except asyncio.TimeoutError:
            logger.warning("poll_cycle_failed session_id=%s err=timeout", session.id)
            return self._fail(epoch, session.id, "Poll generation timed out", "timeout", manual)
        except GeneratorError as exc:
            logger.warning("poll_cycle_failed session_id=%s err=%s", session.id, exc)
            return self._fail(epoch, session.id, "Failed to generate poll", str(exc), manual)
        except Exception as exc:
            logger.error("poll_cycle_failed session_id=%s", session.id, exc_info=True)
            return self._fail(epoch, session.id, "Failed to generate poll", str(exc), manual)

        if self._stale(epoch, session.id):
            logger.info("poll_cycle_discarded session_id=%s", session.id)
            return CycleOutcome(state=PollCycleState.IDLE, reason="stopped", manual=manual)
        current = self.store.session

        if current.settings.auto_publish_results:
            previous = self.store.latest_poll
            if previous is not None and not self.store.is_published(previous.id):
                self.store.compute_result(previous.id)

        poll = PollQuestion(
            id=str(uuid4()),
            question=generated.question,
            options=list(generated.options),
            generated_from=excerpt,
        )
        self.store.publish_poll(poll)
        self.store.notices.success("New poll published")
        return self._record(CycleOutcome(state=PollCycleState.PUBLISHED, poll=poll, manual=manual))
