from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


SessionStatus = Literal["pending", "active", "completed"]
UserRole = Literal["host", "participant"]

ACCESS_CODE_PATTERN = r"^\d{6}$"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionSettings(BaseModel):
    poll_frequency: int = Field(default=5, ge=1, le=30, description="Minutes between automatic polls")
    save_transcript: bool = True
    participant_names: bool = True
    auto_publish_results: bool = False


class LiveSession(BaseModel):
    id: str
    title: str
    host_id: str
    access_code: str = Field(pattern=ACCESS_CODE_PATTERN)
    status: SessionStatus = "pending"
    settings: SessionSettings = Field(default_factory=SessionSettings)
    created_at: datetime = Field(default_factory=utcnow)


class User(BaseModel):
    id: str
    name: str
    role: UserRole


class Participant(BaseModel):
    id: str
    name: str
    joined_at: datetime = Field(default_factory=utcnow)


class TranscriptEntry(BaseModel):
    id: str
    text: str
    timestamp: datetime = Field(default_factory=utcnow)


class PollQuestion(BaseModel):
    id: str
    question: str
    options: List[str] = Field(min_length=2)
    correct_option: Optional[int] = None
    generated_from: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("correct_option")
    @classmethod
    def _correct_option_in_range(cls, value: Optional[int], info) -> Optional[int]:
        options = info.data.get("options") or []
        if value is not None and not 0 <= value < len(options):
            raise ValueError("correct_option must index into options")
        return value


class PollResponse(BaseModel):
    question_id: str
    participant_id: str
    selected_option: int = Field(ge=0)
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def dedup_key(self) -> Tuple[str, str, datetime]:
        return (self.question_id, self.participant_id, self.timestamp)


class OptionCount(BaseModel):
    option: int
    count: int


class PollResult(BaseModel):
    question_id: str
    options: List[str]
    responses: List[OptionCount] = Field(default_factory=list)
    total_responses: int = 0


class GeneratedPoll(BaseModel):
    question: str = Field(min_length=1)
    options: List[str] = Field(min_length=2)


class CreateSessionRequest(BaseModel):
    title: str = Field(min_length=3, description="Session title must be at least 3 characters")
    settings: SessionSettings = Field(default_factory=SessionSettings)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 3:
            raise ValueError("Session title must be at least 3 characters")
        return value


class JoinSessionRequest(BaseModel):
    access_code: str = Field(pattern=ACCESS_CODE_PATTERN)
    display_name: str = ""

    @field_validator("access_code", mode="before")
    @classmethod
    def _strip_code(cls, value):
        return str(value or "").strip()

    @field_validator("display_name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        return str(value or "").strip()


class GeneratePollRequest(BaseModel):
    session_id: str = Field(min_length=1)
    api_key: str = Field(min_length=1)
    # accepted for compatibility; the excerpt is the latest rows, not a time window
    minutes: Optional[int] = None
