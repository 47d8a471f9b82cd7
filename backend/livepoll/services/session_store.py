"""
Session State Store.

One instance per connected client (a host or a participant). It keeps the
client's view of a live session (transcript, polls, answers, roster and the
results published so far) consistent while three sources mutate it:

- optimistic local writes (`append_transcript`, `publish_poll`,
  `record_response`), applied immediately and persisted in the background;
- the bulk fetch run on `join` and `reconnect`;
- realtime change events from the backend, delivered at least once and in
  no particular order.

Every collection is keyed by identity (transcript and polls by id, roster by
participant id, answers by (question_id, participant_id, timestamp)), so a
row seen twice is dropped and the three sources can overlap freely. Read
views are always re-sorted by the entity timestamp, ties broken by arrival.

Subscriptions are opened before the bulk fetch so that nothing written in
between is missed. Each batch of subscriptions carries a generation number;
callbacks from an older generation are ignored, which is what keeps a store
that has left a session from being mutated by late events.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Literal, Optional, Set, Tuple, Union
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from livepoll.core.config import Settings, get_settings
from livepoll.core.errors import BackendError, ConflictError, NotFoundError, ValidationError
from livepoll.schemas.live_session import (
    CreateSessionRequest,
    JoinSessionRequest,
    LiveSession,
    Participant,
    PollQuestion,
    PollResponse,
    PollResult,
    SessionSettings,
    TranscriptEntry,
    User,
    utcnow,
)
from livepoll.services import row_mapping
from livepoll.services.backends.base import ChangeEvent, RealtimeBackend, Subscription
from livepoll.services.notifications import NotificationCenter
from livepoll.services.poll_results import DuplicateAnswerPolicy, compute_poll_result, roster_view

logger = logging.getLogger(__name__)

LifecycleEvent = Literal["ended", "left"]
LifecycleListener = Callable[[LifecycleEvent], None]

SUBSCRIBED_TABLES = ("sessions", "transcriptions", "polls", "participants", "poll_answers")


def generate_access_code() -> str:
    return str(secrets.randbelow(900000) + 100000)


def _first_error(exc: PydanticValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    msg = str(errors[0].get("msg") or "")
    return msg[len("Value error, "):] if msg.startswith("Value error, ") else msg


class SessionStore:
    def __init__(
        self,
        backend: RealtimeBackend,
        *,
        notifications: Optional[NotificationCenter] = None,
        settings: Optional[Settings] = None,
        duplicate_answer_policy: Optional[DuplicateAnswerPolicy] = None,
    ) -> None:
        self.backend = backend
        self.notices = notifications or NotificationCenter()
        self._settings = settings or get_settings()
        self.duplicate_answer_policy: DuplicateAnswerPolicy = (
            duplicate_answer_policy or self._settings.duplicate_answer_policy
        )

        self.session: Optional[LiveSession] = None
        self.user: Optional[User] = None

        self._transcript: Dict[str, TranscriptEntry] = {}
        self._polls: Dict[str, PollQuestion] = {}
        self._published: Set[str] = set()
        self._responses: Dict[Tuple[str, str, datetime], PollResponse] = {}
        self._roster: Dict[str, Participant] = {}
        self._published_results: Dict[str, PollResult] = {}
        # answers carrying an option label for a poll not seen yet
        self._orphan_answers: Dict[str, List[Dict[str, Any]]] = {}
        self._arrival: Dict[Tuple[str, Hashable], int] = {}
        self._arrival_counter = itertools.count()

        self._subscriptions: List[Subscription] = []
        self._generation = 0
        self._pending: Set[asyncio.Task] = set()
        self._reconnect_task: Optional[asyncio.Task] = None
        self._lifecycle_listeners: List[LifecycleListener] = []

        self._handlers: Dict[str, Callable[[ChangeEvent], None]] = {
            "sessions": self._on_session_event,
            "transcriptions": self._on_transcript_event,
            "polls": self._on_poll_event,
            "participants": self._on_participant_event,
            "poll_answers": self._on_answer_event,
        }

    # ------------------------------------------------------------------
    # read views

    @property
    def is_host(self) -> bool:
        return self.user is not None and self.user.role == "host"

    @property
    def transcript(self) -> List[TranscriptEntry]:
        return sorted(self._transcript.values(), key=lambda e: (e.timestamp, self._arrival[("t", e.id)]))

    @property
    def polls(self) -> List[PollQuestion]:
        return sorted(self._polls.values(), key=lambda p: (p.created_at, self._arrival[("p", p.id)]))

    @property
    def latest_poll(self) -> Optional[PollQuestion]:
        polls = self.polls
        return polls[-1] if polls else None

    @property
    def responses(self) -> List[PollResponse]:
        return sorted(self._responses.values(), key=lambda r: (r.timestamp, self._arrival[("r", r.dedup_key)]))

    @property
    def roster(self) -> List[Participant]:
        ordered = sorted(self._roster.values(), key=lambda p: self._arrival[("u", p.id)])
        return roster_view(ordered)

    @property
    def published_results(self) -> Dict[str, PollResult]:
        return dict(self._published_results)

    def is_published(self, poll_id: str) -> bool:
        return poll_id in self._published

    def responses_for(self, poll_id: str) -> List[PollResponse]:
        return [r for r in self.responses if r.question_id == poll_id]

    def recent_transcript(
        self,
        window: Union[timedelta, float],
        *,
        now: Optional[datetime] = None,
    ) -> List[TranscriptEntry]:
        """Entries no older than `window` (a timedelta, or minutes)."""
        if not isinstance(window, timedelta):
            window = timedelta(minutes=float(window))
        cutoff = (now or utcnow()) - window
        return [e for e in self.transcript if e.timestamp >= cutoff]

    # ------------------------------------------------------------------
    # lifecycle listeners

    def add_lifecycle_listener(self, listener: LifecycleListener) -> None:
        self._lifecycle_listeners.append(listener)

    def remove_lifecycle_listener(self, listener: LifecycleListener) -> None:
        if listener in self._lifecycle_listeners:
            self._lifecycle_listeners.remove(listener)

    def _emit(self, event: LifecycleEvent) -> None:
        for listener in list(self._lifecycle_listeners):
            try:
                listener(event)
            except Exception:
                logger.warning("lifecycle_listener_failed event=%s", event, exc_info=True)

    # ------------------------------------------------------------------
    # session operations

    async def join(self, access_code: str, display_name: str) -> LiveSession:
        try:
            request = JoinSessionRequest(access_code=access_code, display_name=display_name)
        except PydanticValidationError as exc:
            message = "Access code must be 6 digits"
            self.notices.error(message)
            raise ValidationError(message) from exc

        try:
            rows = await self.backend.select(
                "sessions",
                {"session_code": request.access_code, "active": True},
                limit=1,
            )
        except BackendError:
            logger.warning("session_lookup_failed access_code=%s", request.access_code, exc_info=True)
            self.notices.error("Could not reach the session service")
            raise
        if not rows:
            message = "Session not found or no longer active"
            self.notices.error(message)
            raise NotFoundError(message)
        session = row_mapping.session_from_row(rows[0])

        name = request.display_name
        if not name:
            if session.settings.participant_names:
                message = "Please enter your name"
                self.notices.error(message)
                raise ValidationError(message)
            name = f"Participant-{secrets.token_hex(2).upper()}"

        user = User(id=str(uuid4()), name=name, role="participant")
        me = Participant(id=user.id, name=user.name)
        try:
            await self.backend.insert("participants", row_mapping.participant_to_row(me, session.id))
        except BackendError:
            logger.warning("participant_register_failed session_id=%s", session.id, exc_info=True)
            self.notices.error("Failed to join session")
            raise

        if self.session is not None:
            await self.leave()
        self._reset()
        self.session = session
        self.user = user
        self._merge_participant(me)
        await self._open_subscriptions()
        try:
            await self._bulk_fetch()
        except BackendError:
            # realtime is live already; reconnect() re-runs the fetch
            logger.warning("join_bulk_fetch_failed session_id=%s", session.id, exc_info=True)
            self.notices.error("Joined, but failed to load session history")
        logger.info("session_joined session_id=%s participant_id=%s", session.id, user.id)
        self.notices.success(f"Joined {session.title}")
        return session

    async def create(
        self,
        title: str,
        settings: Union[SessionSettings, Dict[str, Any], None] = None,
        *,
        host_name: str = "Host",
        host_id: Optional[str] = None,
    ) -> LiveSession:
        try:
            request = CreateSessionRequest(title=title, settings=settings or SessionSettings())
        except PydanticValidationError as exc:
            message = _first_error(exc)
            self.notices.error(message)
            raise ValidationError(message) from exc

        host = User(id=host_id or str(uuid4()), name=host_name, role="host")
        attempts = max(1, self._settings.access_code_max_attempts)
        session: Optional[LiveSession] = None
        for attempt in range(1, attempts + 1):
            candidate = LiveSession(
                id=str(uuid4()),
                title=request.title,
                host_id=host.id,
                access_code=generate_access_code(),
                status="active",
                settings=request.settings,
            )
            try:
                await self.backend.insert("sessions", row_mapping.session_to_row(candidate))
            except ConflictError:
                logger.info("access_code_collision attempt=%s code=%s", attempt, candidate.access_code)
                continue
            except BackendError:
                logger.warning("session_create_failed title=%s", request.title, exc_info=True)
                self.notices.error("Failed to create session")
                raise
            session = candidate
            break

        if session is None:
            message = "Could not allocate a free access code"
            self.notices.error(message)
            raise ConflictError(message)

        if self.session is not None:
            await self.leave()
        self._reset()
        self.session = session
        self.user = host
        await self._open_subscriptions()
        logger.info("session_created session_id=%s access_code=%s", session.id, session.access_code)
        self.notices.success(f"Session created. Access code: {session.access_code}")
        return session

    async def leave(self) -> None:
        if self.session is None:
            return
        self._close_subscriptions()
        session, user = self.session, self.user
        self._reset()
        self.session = None
        self.user = None
        if user is not None and user.role == "participant":
            try:
                await self.backend.delete("participants", user.id)
            except BackendError:
                logger.warning("participant_unregister_failed session_id=%s", session.id, exc_info=True)
        logger.info("session_left session_id=%s", session.id)
        self._emit("left")

    async def end(self) -> LiveSession:
        session = self._require_host()
        if session.status == "completed":
            return session
        self.session = session.model_copy(update={"status": "completed"})
        try:
            await self.backend.update("sessions", session.id, {"active": False})
        except (BackendError, NotFoundError):
            logger.warning("session_end_persist_failed session_id=%s", session.id, exc_info=True)
            self.notices.error("Failed to end session on the server")
        self.notices.info("Session ended")
        self._emit("ended")
        return self.session

    async def reconnect(self) -> None:
        session = self._require_session()
        await self._open_subscriptions()
        try:
            await self._bulk_fetch()
        except BackendError:
            logger.warning("reconnect_bulk_fetch_failed session_id=%s", session.id, exc_info=True)
            self.notices.error("Failed to reload session data")
            raise

    async def flush(self) -> None:
        """Wait for every in-flight background write."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # optimistic writes

    def append_transcript(self, text: str) -> TranscriptEntry:
        session = self._require_host()
        text = (text or "").strip()
        if not text:
            raise ValidationError("Transcript text is empty")
        entry = TranscriptEntry(id=str(uuid4()), text=text)
        self._merge_transcript(entry)
        self._spawn(self._persist("transcriptions", row_mapping.transcript_to_row(entry, session.id), "transcript"))
        return entry

    def publish_poll(self, poll: PollQuestion) -> PollQuestion:
        session = self._require_host()
        self._merge_poll(poll)
        self._spawn(self._persist("polls", row_mapping.poll_to_row(poll, session.id), "poll"))
        logger.info("poll_published session_id=%s poll_id=%s", session.id, poll.id)
        return poll

    def record_response(self, response: PollResponse) -> PollResponse:
        session = self._require_session()
        poll = self._polls.get(response.question_id)
        if poll is None:
            raise NotFoundError(f"Poll {response.question_id} not found")
        if response.selected_option >= len(poll.options):
            message = "Please select an option"
            self.notices.error(message)
            raise ValidationError(message)
        self._merge_response(response)
        row = row_mapping.response_to_row(response, session.id, str(uuid4()))
        self._spawn(self._persist("poll_answers", row, "response"))
        self.notices.success("Response submitted")
        return response

    def answer(self, poll_id: str, selected_option: int) -> PollResponse:
        """Record an answer from this client's own user."""
        if self.user is None:
            raise ValidationError("Not logged in")
        return self.record_response(
            PollResponse(question_id=poll_id, participant_id=self.user.id, selected_option=selected_option)
        )

    def compute_result(self, question_id: str) -> PollResult:
        poll = self._polls.get(question_id)
        if poll is None:
            raise NotFoundError(f"Poll {question_id} not found")
        result = compute_poll_result(poll, self._responses.values(), self.duplicate_answer_policy)
        if self.is_host and self.session is not None:
            first_time = question_id not in self._published
            self._published.add(question_id)
            self._published_results[question_id] = result
            if first_time:
                self._spawn(self._persist_update("polls", question_id, {"published": True}, "poll results"))
        return result

    # ------------------------------------------------------------------
    # internals

    def _require_session(self) -> LiveSession:
        if self.session is None:
            raise ValidationError("No active session")
        return self.session

    def _require_host(self) -> LiveSession:
        session = self._require_session()
        if not self.is_host:
            raise ValidationError("Only the host can do that")
        return session

    def _reset(self) -> None:
        self._close_subscriptions()
        self._transcript.clear()
        self._polls.clear()
        self._published.clear()
        self._responses.clear()
        self._roster.clear()
        self._published_results.clear()
        self._orphan_answers.clear()
        self._arrival.clear()

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _persist(self, table: str, row: Dict[str, Any], what: str) -> None:
        try:
            await self.backend.insert(table, row)
        except BackendError:
            # the optimistic row stays; the next bulk fetch is authoritative
            logger.warning("store_persist_failed table=%s row_id=%s", table, row.get("id"), exc_info=True)
            self.notices.error(f"Failed to save {what}")

    async def _persist_update(self, table: str, row_id: str, fields: Dict[str, Any], what: str) -> None:
        try:
            await self.backend.update(table, row_id, fields)
        except (BackendError, NotFoundError):
            logger.warning("store_update_failed table=%s row_id=%s", table, row_id, exc_info=True)
            self.notices.error(f"Failed to save {what}")

    def _close_subscriptions(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        self._generation += 1
        for subscription in subscriptions:
            subscription.close()

    async def _open_subscriptions(self) -> None:
        self._close_subscriptions()
        generation = self._generation
        session_id = self._require_session().id
        for table in SUBSCRIBED_TABLES:
            try:
                subscription = await self.backend.subscribe(table, session_id, self._guarded(generation, table))
            except BackendError:
                logger.warning("subscribe_failed table=%s session_id=%s", table, session_id, exc_info=True)
                self._close_subscriptions()
                self.notices.error("Lost realtime connection")
                raise
            if generation != self._generation:
                # left or re-subscribed while we were waiting
                subscription.close()
                return
            subscription.on_lost = self._feed_lost_handler(generation)
            self._subscriptions.append(subscription)

    def _feed_lost_handler(self, generation: int) -> Callable[[Subscription], None]:
        def _callback(subscription: Subscription) -> None:
            if generation != self._generation or self.session is None:
                return
            if self._reconnect_task is not None and not self._reconnect_task.done():
                return
            logger.warning(
                "realtime_feed_lost table=%s session_id=%s", subscription.table, subscription.session_id
            )
            self.notices.error("Lost realtime connection")
            self._reconnect_task = self._spawn(self._reconnect_after_loss())

        return _callback

    async def _reconnect_after_loss(self) -> None:
        try:
            await self.reconnect()
        except (BackendError, ValidationError):
            # reconnect() has already told the user; the next manual reconnect retries
            logger.warning("realtime_reconnect_failed", exc_info=True)

    def _guarded(self, generation: int, table: str) -> Callable[[ChangeEvent], None]:
        handler = self._handlers[table]

        def _callback(event: ChangeEvent) -> None:
            if generation != self._generation or self.session is None:
                return
            handler(event)

        return _callback

    async def _bulk_fetch(self) -> None:
        generation = self._generation
        session_id = self._require_session().id

        session_rows = await self.backend.select("sessions", {"id": session_id}, limit=1)
        if generation != self._generation:
            return
        for row in session_rows:
            self._apply_session_row(row)

        # polls before answers so label answers resolve without parking
        for table, merge in (
            ("transcriptions", self._merge_transcript_row),
            ("polls", self._merge_poll_row),
            ("participants", self._merge_participant_row),
            ("poll_answers", self._merge_answer_row),
        ):
            rows = await self.backend.select(table, {"session_id": session_id})
            if generation != self._generation:
                return
            for row in rows:
                merge(row)
        logger.info(
            "bulk_fetch_done session_id=%s transcript=%s polls=%s roster=%s responses=%s",
            session_id,
            len(self._transcript),
            len(self._polls),
            len(self._roster),
            len(self._responses),
        )

    def _touch(self, kind: str, key: Hashable) -> None:
        self._arrival[(kind, key)] = next(self._arrival_counter)

    # merges: each returns True when the collection changed

    def _merge_transcript(self, entry: TranscriptEntry) -> bool:
        if entry.id in self._transcript:
            return False
        self._transcript[entry.id] = entry
        self._touch("t", entry.id)
        return True

    def _merge_poll(self, poll: PollQuestion, published: bool = False) -> bool:
        added = poll.id not in self._polls
        if added:
            self._polls[poll.id] = poll
            self._touch("p", poll.id)
            for row in self._orphan_answers.pop(poll.id, []):
                self._merge_answer_row(row)
        if published:
            self._mark_published(poll.id)
        return added

    def _mark_published(self, poll_id: str) -> None:
        poll = self._polls.get(poll_id)
        if poll is None:
            return
        self._published.add(poll_id)
        self._published_results[poll_id] = compute_poll_result(
            poll, self._responses.values(), self.duplicate_answer_policy
        )

    def _merge_participant(self, participant: Participant) -> bool:
        if participant.id in self._roster:
            return False
        self._roster[participant.id] = participant
        self._touch("u", participant.id)
        return True

    def _merge_response(self, response: PollResponse) -> bool:
        key = response.dedup_key
        if key in self._responses:
            return False
        self._responses[key] = response
        self._touch("r", key)
        if response.question_id in self._published_results:
            self._mark_published(response.question_id)
        return True

    def _merge_transcript_row(self, row: Dict[str, Any]) -> None:
        self._merge_transcript(row_mapping.transcript_from_row(row))

    def _merge_poll_row(self, row: Dict[str, Any]) -> None:
        poll, published = row_mapping.poll_from_row(row)
        self._merge_poll(poll, published)

    def _merge_participant_row(self, row: Dict[str, Any]) -> None:
        self._merge_participant(row_mapping.participant_from_row(row))

    def _merge_answer_row(self, row: Dict[str, Any]) -> None:
        poll_id = str(row.get("poll_id") or "")
        poll = self._polls.get(poll_id)
        response = row_mapping.response_from_row(row, poll.options if poll else None)
        if response is None:
            if poll is None:
                self._orphan_answers.setdefault(poll_id, []).append(row)
            else:
                logger.warning("poll_answer_unresolved poll_id=%s answer=%s", poll_id, row.get("answer"))
            return
        self._merge_response(response)

    def _apply_session_row(self, row: Dict[str, Any]) -> None:
        if self.session is None or row.get("id") != self.session.id:
            return
        if row.get("active", True) or self.session.status == "completed":
            return
        self.session = self.session.model_copy(update={"status": "completed"})
        if not self.is_host:
            self.notices.info("The host ended this session")
        self._emit("ended")

    # realtime handlers

    def _on_session_event(self, event: ChangeEvent) -> None:
        if event.type == "UPDATE":
            self._apply_session_row(event.new)

    def _on_transcript_event(self, event: ChangeEvent) -> None:
        if event.type in ("INSERT", "UPDATE") and event.new:
            self._merge_transcript_row(event.new)

    def _on_poll_event(self, event: ChangeEvent) -> None:
        if event.type in ("INSERT", "UPDATE") and event.new:
            self._merge_poll_row(event.new)

    def _on_participant_event(self, event: ChangeEvent) -> None:
        if event.type == "DELETE":
            participant_id = event.old.get("id")
            if participant_id in self._roster:
                del self._roster[participant_id]
            return
        if event.new:
            self._merge_participant_row(event.new)

    def _on_answer_event(self, event: ChangeEvent) -> None:
        if event.type == "INSERT" and event.new:
            self._merge_answer_row(event.new)
