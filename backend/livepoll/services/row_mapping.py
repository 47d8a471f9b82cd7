"""
Translation between wire rows (plain dicts) and domain models.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from livepoll.schemas.live_session import (
    LiveSession,
    Participant,
    PollQuestion,
    PollResponse,
    SessionSettings,
    TranscriptEntry,
    utcnow,
)
from livepoll.services.poll_options import decode_options

logger = logging.getLogger(__name__)


def parse_ts(value: Any) -> datetime:
    """Aware UTC datetime from an ISO string or datetime; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("row_timestamp_invalid value=%s", value)
            return utcnow()
    else:
        return utcnow()
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


# sessions

def session_to_row(session: LiveSession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "title": session.title,
        "host_id": session.host_id,
        "session_code": session.access_code,
        "quiz_interval": session.settings.poll_frequency,
        "active": session.status != "completed",
        "settings": session.settings.model_dump(),
        "created_at": format_ts(session.created_at),
    }


def session_from_row(row: Dict[str, Any]) -> LiveSession:
    raw_settings = row.get("settings") or {}
    if not isinstance(raw_settings, dict):
        raw_settings = {}
    settings = SessionSettings.model_validate(raw_settings) if raw_settings else SessionSettings()
    if not raw_settings and row.get("quiz_interval"):
        settings = settings.model_copy(update={"poll_frequency": int(row["quiz_interval"])})
    return LiveSession(
        id=str(row["id"]),
        title=str(row.get("title") or ""),
        host_id=str(row.get("host_id") or ""),
        access_code=str(row.get("session_code") or ""),
        status="active" if row.get("active", True) else "completed",
        settings=settings,
        created_at=parse_ts(row.get("created_at")),
    )


# transcriptions

def transcript_to_row(entry: TranscriptEntry, session_id: str) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "session_id": session_id,
        "text": entry.text,
        "created_at": format_ts(entry.timestamp),
    }


def transcript_from_row(row: Dict[str, Any]) -> TranscriptEntry:
    return TranscriptEntry(id=str(row["id"]), text=str(row.get("text") or ""), timestamp=parse_ts(row.get("created_at")))


# polls

def poll_to_row(poll: PollQuestion, session_id: str, *, published: bool = False) -> Dict[str, Any]:
    return {
        "id": poll.id,
        "session_id": session_id,
        "question": poll.question,
        "options": list(poll.options),
        "correct_option": poll.correct_option,
        "generated_from": poll.generated_from,
        "published": published,
        "created_at": format_ts(poll.created_at),
    }


def poll_from_row(row: Dict[str, Any]) -> Tuple[PollQuestion, bool]:
    """Returns the poll and its `published` flag."""
    poll_id = str(row["id"])
    decoded = decode_options(row.get("options"), poll_id=poll_id)
    correct = row.get("correct_option")
    if correct is not None and not (isinstance(correct, int) and 0 <= correct < len(decoded.options)):
        correct = None
    poll = PollQuestion(
        id=poll_id,
        question=str(row.get("question") or ""),
        options=decoded.options,
        correct_option=correct,
        generated_from=str(row.get("generated_from") or ""),
        created_at=parse_ts(row.get("created_at")),
    )
    return poll, bool(row.get("published"))


# participants

def participant_to_row(participant: Participant, session_id: str) -> Dict[str, Any]:
    return {
        "id": participant.id,
        "session_id": session_id,
        "username": participant.name,
        "created_at": format_ts(participant.joined_at),
    }


def participant_from_row(row: Dict[str, Any]) -> Participant:
    return Participant(id=str(row["id"]), name=str(row.get("username") or ""), joined_at=parse_ts(row.get("created_at")))


# poll_answers

def response_to_row(response: PollResponse, session_id: str, row_id: str) -> Dict[str, Any]:
    return {
        "id": row_id,
        "poll_id": response.question_id,
        "session_id": session_id,
        "participant_id": response.participant_id,
        "answer": str(response.selected_option),
        "created_at": format_ts(response.timestamp),
    }


def parse_answer(answer: Any, options: Optional[List[str]] = None) -> Optional[int]:
    """Option index carried by an answer; labels are resolved against `options`."""
    if isinstance(answer, bool):
        return None
    if isinstance(answer, int):
        return answer if answer >= 0 else None
    text = str(answer or "").strip()
    if text.isdigit():
        return int(text)
    if options:
        for index, label in enumerate(options):
            if label == text:
                return index
    return None


def response_from_row(row: Dict[str, Any], options: Optional[List[str]] = None) -> Optional[PollResponse]:
    index = parse_answer(row.get("answer"), options)
    if index is None:
        return None
    return PollResponse(
        question_id=str(row.get("poll_id") or ""),
        participant_id=str(row.get("participant_id") or ""),
        selected_option=index,
        timestamp=parse_ts(row.get("created_at")),
    )
