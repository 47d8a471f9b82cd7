from __future__ import annotations

import logging
from typing import Any, Dict
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request

from livepoll.api.deps import get_backend
from livepoll.core.config import get_settings
from livepoll.core.errors import BackendError, GeneratorError
from livepoll.schemas.live_session import GeneratePollRequest
from livepoll.services.backends.base import RealtimeBackend, now_iso

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/polls/generate")
async def generate_poll(
    body: GeneratePollRequest,
    request: Request,
    backend: RealtimeBackend = Depends(get_backend),
) -> Dict[str, Any]:
    settings = get_settings()
    try:
        rows = await backend.select(
            "transcriptions",
            {"session_id": body.session_id},
            order_by="created_at",
            descending=True,
            limit=settings.server_generate_transcript_limit,
        )
    except BackendError as exc:
        logger.error("generate_poll_fetch_failed session_id=%s", body.session_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch transcripts") from exc

    # newest-first from the query; the prompt reads better in spoken order
    text = " ".join(str(r.get("text") or "") for r in reversed(rows)).strip()
    if len(text) < settings.server_generate_min_chars:
        raise HTTPException(status_code=400, detail="Not enough transcript content to generate a poll")

    generator = request.app.state.poll_generator_factory(body.api_key)
    try:
        generated = await generator.generate(text)
    except GeneratorError as exc:
        logger.warning("generate_poll_failed session_id=%s err=%s", body.session_id, exc)
        raise HTTPException(status_code=500, detail="Failed to generate poll") from exc
    finally:
        await generator.aclose()

    try:
        poll = await backend.insert(
            "polls",
            {
                "id": str(uuid4()),
                "session_id": body.session_id,
                "question": generated.question,
                "options": list(generated.options),
                "generated_from": text,
                "published": False,
                "created_at": now_iso(),
            },
        )
    except BackendError as exc:
        logger.error("generate_poll_save_failed session_id=%s", body.session_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to save poll") from exc

    return {"success": True, "poll": poll}
