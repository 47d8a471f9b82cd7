"""
ASR Service Client (whisper.cpp microservice)
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from livepoll.core.config import get_settings
from livepoll.core.errors import CaptureError, LivePollError

logger = logging.getLogger(__name__)


class AsrServiceError(LivePollError):
    """Transient ASR failure; the capture loop retries after these."""


def _cleanup_text(value: Any) -> str:
    return re.sub(r"\s+", " ", str(value or "")).strip()


async def transcribe_audio_file(
    audio_path: str | Path,
    *,
    asr_url: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """
    Send audio file to ASR microservice and return whisper.cpp JSON.
    """
    base = (asr_url or get_settings().asr_url or "").strip().rstrip("/")
    if not base:
        raise AsrServiceError("ASR_URL not configured")

    path = Path(audio_path)
    if not path.exists():
        raise AsrServiceError(f"Audio file not found: {path}")

    url = f"{base}/transcribe"
    timeout = httpx.Timeout(connect=10.0, read=120.0, write=120.0, pool=10.0)

    try:
        with path.open("rb") as f:
            files = {"file": (path.name, f, "audio/wav")}
            if client is not None:
                resp = await client.post(url, files=files)
            else:
                async with httpx.AsyncClient(timeout=timeout) as owned:
                    resp = await owned.post(url, files=files)
    except PermissionError as exc:
        raise CaptureError(f"Audio input not permitted: {path}") from exc
    except httpx.HTTPError as exc:
        raise AsrServiceError(f"ASR request failed: {exc}") from exc

    if resp.status_code >= 400:
        detail: Any = resp.text
        if resp.headers.get("content-type", "").startswith("application/json"):
            try:
                detail = resp.json()
            except ValueError:
                pass
        raise AsrServiceError(f"ASR error {resp.status_code}: {detail}")

    try:
        return resp.json()
    except ValueError as exc:
        raise AsrServiceError(f"Invalid ASR JSON response: {exc}") from exc


def extract_asr_segments(payload: Dict[str, Any]) -> List[str]:
    # whisper.cpp JSON variants:
    # - segments: [{start, end, text}]
    # - transcription: [{offsets: {from, to}, text}] (whisper-cli -oj)
    for key in ("segments", "transcription"):
        value = payload.get(key)
        if isinstance(value, list):
            texts = [_cleanup_text(item.get("text")) for item in value if isinstance(item, dict)]
            texts = [t for t in texts if t]
            if texts:
                return texts
    return []


def extract_asr_text(payload: Dict[str, Any]) -> str:
    for key in ("text", "transcript"):
        value = payload.get(key)
        if isinstance(value, str) and _cleanup_text(value):
            return _cleanup_text(value)

    result = payload.get("result")
    if isinstance(result, str) and _cleanup_text(result):
        return _cleanup_text(result)
    if isinstance(result, dict):
        for key in ("text", "transcript"):
            value = result.get(key)
            if isinstance(value, str) and _cleanup_text(value):
                return _cleanup_text(value)

    return " ".join(extract_asr_segments(payload))
