"""
Host-side composition: store + poll controller + speech capture.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple, Union

from livepoll.core.errors import LivePollError
from livepoll.schemas.live_session import LiveSession, SessionSettings
from livepoll.services import export_service
from livepoll.services.poll_controller import PollController
from livepoll.services.session_store import LifecycleEvent, SessionStore
from livepoll.services.speech_capture import SpeechCaptureAdapter

logger = logging.getLogger(__name__)


class HostRuntime:
    def __init__(
        self,
        store: SessionStore,
        controller: PollController,
        capture: Optional[SpeechCaptureAdapter] = None,
    ) -> None:
        self.store = store
        self.controller = controller
        self.capture = capture
        store.add_lifecycle_listener(self._on_lifecycle)

    async def open(
        self,
        title: str,
        settings: Union[SessionSettings, Dict[str, Any], None] = None,
        *,
        host_name: str = "Host",
    ) -> LiveSession:
        session = await self.store.create(title, settings, host_name=host_name)
        self.controller.start()
        return session

    def start_recording(self) -> bool:
        if self.capture is None:
            self.store.notices.error("Speech recognition is not available")
            return False
        self.capture.on_final_fragment = self._on_final_fragment
        started = self.capture.start()
        if not started:
            self.store.notices.error("Speech recognition is not supported here")
        return started

    def stop_recording(self) -> None:
        if self.capture is not None:
            self.capture.stop()

    @property
    def recording(self) -> bool:
        return self.capture is not None and self.capture.is_active()

    async def close(self) -> None:
        self.stop_recording()
        self.controller.stop()
        if self.store.session is not None and self.store.session.status != "completed":
            await self.store.end()
        await self.store.flush()

    def transcript_download(self) -> Tuple[str, str]:
        session = self.store.session
        title = session.title if session else "session"
        body = export_service.format_transcript(self.store.transcript)
        self.store.notices.success("Transcript downloaded")
        return export_service.transcript_filename(title), body

    def results_download(self) -> str:
        # only results the host already published
        published = self.store.published_results
        questions = {p.id: p.question for p in self.store.polls}
        results = [published[p.id] for p in self.store.polls if p.id in published]
        self.store.notices.success("All results downloaded")
        return export_service.format_all_results(results, questions)

    def _on_final_fragment(self, text: str) -> None:
        try:
            self.store.append_transcript(text)
        except LivePollError as exc:
            logger.warning("transcript_append_rejected err=%s", exc)

    def _on_lifecycle(self, event: LifecycleEvent) -> None:
        self.stop_recording()
