from .base import Base
from .live_session import (
    LiveSessionRow,
    TranscriptionRow,
    PollRow,
    ParticipantRow,
    PollAnswerRow,
)

TABLE_MODELS = {
    'sessions': LiveSessionRow,
    'transcriptions': TranscriptionRow,
    'polls': PollRow,
    'participants': ParticipantRow,
    'poll_answers': PollAnswerRow,
}

__all__ = [
    'Base',
    'LiveSessionRow',
    'TranscriptionRow',
    'PollRow',
    'ParticipantRow',
    'PollAnswerRow',
    'TABLE_MODELS',
]
