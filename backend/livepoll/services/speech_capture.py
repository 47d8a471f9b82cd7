"""
Speech capture adapters.

An adapter turns some audio input into text fragments. Final fragments are
what the host appends to the transcript; interim fragments are previews.

Recognition passes that fail with a transient error are restarted after
`capture_restart_delay_seconds`. A `CaptureError` (input not permitted, no
device) ends the recording for good; the user has to start it again.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Union

import httpx

from livepoll.core.config import get_settings
from livepoll.core.errors import CaptureError
from livepoll.services.asr_service import extract_asr_segments, extract_asr_text, transcribe_audio_file

logger = logging.getLogger(__name__)

FragmentCallback = Callable[[str], None]


class SpeechCaptureAdapter(ABC):
    def __init__(self, *, restart_delay: Optional[float] = None) -> None:
        self.on_final_fragment: Optional[FragmentCallback] = None
        self.on_interim_fragment: Optional[FragmentCallback] = None
        self.restart_delay = (
            get_settings().capture_restart_delay_seconds if restart_delay is None else restart_delay
        )
        self.restarts = 0
        self.last_error: Optional[BaseException] = None
        self._active = False
        self._task: Optional[asyncio.Task] = None

    @abstractmethod
    def is_supported(self) -> bool:
        ...

    @abstractmethod
    async def _capture(self) -> None:
        """One recognition pass. Returning normally means the input is exhausted."""

    def is_active(self) -> bool:
        return self._active

    def start(self) -> bool:
        if not self.is_supported():
            logger.error("speech_capture_unsupported adapter=%s", type(self).__name__)
            return False
        if self._active:
            return True
        self._active = True
        self.last_error = None
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"capture-{type(self).__name__}")
        return True

    def stop(self) -> None:
        self._active = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait(self) -> None:
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while self._active:
            try:
                await self._capture()
                self._active = False
                break
            except CaptureError as exc:
                logger.error("speech_capture_denied adapter=%s err=%s", type(self).__name__, exc)
                self.last_error = exc
                self._active = False
                break
            except Exception as exc:
                logger.warning("speech_capture_error adapter=%s err=%s", type(self).__name__, exc, exc_info=True)
                self.last_error = exc
            if not self._active:
                break
            self.restarts += 1
            await asyncio.sleep(self.restart_delay)

    def _emit(self, callback: Optional[FragmentCallback], text: str) -> None:
        text = (text or "").strip()
        if not text or callback is None:
            return
        try:
            callback(text)
        except Exception:
            logger.warning("speech_fragment_callback_failed", exc_info=True)

    def emit_final(self, text: str) -> None:
        self._emit(self.on_final_fragment, text)

    def emit_interim(self, text: str) -> None:
        self._emit(self.on_interim_fragment, text)


class AsrServiceCapture(SpeechCaptureAdapter):
    """Feeds recorded audio chunks (file paths) to the whisper ASR microservice.

    The recorder side puts paths on `chunks`; `None` marks the end of input.
    """

    def __init__(
        self,
        chunks: "asyncio.Queue[Union[str, Path, None]]",
        *,
        asr_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        restart_delay: Optional[float] = None,
    ) -> None:
        super().__init__(restart_delay=restart_delay)
        self.chunks = chunks
        self.asr_url = asr_url if asr_url is not None else get_settings().asr_url
        self._client = client

    def is_supported(self) -> bool:
        return bool((self.asr_url or "").strip())

    async def _capture(self) -> None:
        while True:
            path = await self.chunks.get()
            if path is None:
                return
            payload = await transcribe_audio_file(path, asr_url=self.asr_url, client=self._client)
            segments = extract_asr_segments(payload)
            for segment in segments[:-1]:
                self.emit_interim(segment)
            self.emit_final(extract_asr_text(payload))
