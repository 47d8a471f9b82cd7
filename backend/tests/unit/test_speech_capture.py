import asyncio
from typing import List

import httpx
import pytest

from livepoll.core.errors import CaptureError
from livepoll.services.asr_service import AsrServiceError, extract_asr_segments, extract_asr_text
from livepoll.services.speech_capture import AsrServiceCapture, SpeechCaptureAdapter


class ScriptedCapture(SpeechCaptureAdapter):
    """Each pass pops one step: a string is emitted as final, an exception is raised."""

    def __init__(self, steps, supported: bool = True) -> None:
        super().__init__(restart_delay=0)
        self.steps = list(steps)
        self.supported = supported
        self.passes = 0

    def is_supported(self) -> bool:
        return self.supported

    async def _capture(self) -> None:
        self.passes += 1
        while self.steps:
            step = self.steps.pop(0)
            if isinstance(step, BaseException):
                raise step
            self.emit_final(step)


def _collect(adapter: SpeechCaptureAdapter) -> List[str]:
    finals: List[str] = []
    adapter.on_final_fragment = finals.append
    return finals


@pytest.mark.asyncio
async def test_transient_error_restarts_capture() -> None:
    adapter = ScriptedCapture(["hello", AsrServiceError("blip"), "world"])
    finals = _collect(adapter)

    assert adapter.start()
    await adapter.wait()

    assert finals == ["hello", "world"]
    assert adapter.restarts == 1
    assert adapter.passes == 2
    assert not adapter.is_active()


@pytest.mark.asyncio
async def test_capture_error_is_terminal() -> None:
    adapter = ScriptedCapture([CaptureError("microphone denied"), "never"])
    finals = _collect(adapter)

    adapter.start()
    await adapter.wait()

    assert finals == []
    assert adapter.restarts == 0
    assert isinstance(adapter.last_error, CaptureError)
    assert not adapter.is_active()


@pytest.mark.asyncio
async def test_unsupported_adapter_does_not_start() -> None:
    adapter = ScriptedCapture(["x"], supported=False)

    assert adapter.start() is False
    assert not adapter.is_active()


@pytest.mark.asyncio
async def test_blank_fragments_are_not_emitted() -> None:
    adapter = ScriptedCapture(["   ", "ok"])
    finals = _collect(adapter)

    adapter.start()
    await adapter.wait()

    assert finals == ["ok"]


@pytest.mark.asyncio
async def test_stop_cancels_running_capture() -> None:
    queue: asyncio.Queue = asyncio.Queue()
    adapter = AsrServiceCapture(queue, asr_url="http://asr.test", restart_delay=0)

    adapter.start()
    await asyncio.sleep(0)
    adapter.stop()
    await adapter.wait()

    assert not adapter.is_active()


@pytest.mark.asyncio
async def test_asr_capture_posts_chunks_and_emits_text(tmp_path) -> None:
    chunk = tmp_path / "chunk-1.wav"
    chunk.write_bytes(b"RIFF0000WAVE")
    requests: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        return httpx.Response(
            200,
            json={"segments": [{"text": " Today we cover "}, {"text": "inertia. "}], "text": "Today we cover inertia."},
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    queue: asyncio.Queue = asyncio.Queue()
    adapter = AsrServiceCapture(queue, asr_url="http://asr.test/", client=client, restart_delay=0)
    finals = _collect(adapter)
    interims: List[str] = []
    adapter.on_interim_fragment = interims.append

    adapter.start()
    await queue.put(chunk)
    await queue.put(None)
    await adapter.wait()
    await client.aclose()

    assert requests == ["http://asr.test/transcribe"]
    assert interims == ["Today we cover"]
    assert finals == ["Today we cover inertia."]


@pytest.mark.asyncio
async def test_asr_http_error_restarts_with_next_chunk(tmp_path) -> None:
    chunk = tmp_path / "chunk.wav"
    chunk.write_bytes(b"RIFF")
    responses = [httpx.Response(503, text="busy"), httpx.Response(200, json={"text": "second try"})]

    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: responses.pop(0)))
    queue: asyncio.Queue = asyncio.Queue()
    adapter = AsrServiceCapture(queue, asr_url="http://asr.test", client=client, restart_delay=0)
    finals = _collect(adapter)

    adapter.start()
    for item in (chunk, chunk, None):
        await queue.put(item)
    await adapter.wait()
    await client.aclose()

    assert finals == ["second try"]
    assert adapter.restarts == 1
    assert isinstance(adapter.last_error, AsrServiceError)


def test_extract_text_variants() -> None:
    assert extract_asr_text({"text": "  a   b "}) == "a b"
    assert extract_asr_text({"result": {"transcript": "nested"}}) == "nested"
    assert extract_asr_text({"transcription": [{"text": "one"}, {"text": "two"}]}) == "one two"
    assert extract_asr_segments({"segments": "not a list"}) == []
