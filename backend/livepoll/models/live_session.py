from sqlalchemy import JSON, Boolean, Column, Index, Integer, String, Text, true

from livepoll.models.base import Base, CreatedAtMixin


class LiveSessionRow(Base, CreatedAtMixin):
    __tablename__ = "sessions"

    id = Column(String, primary_key=True)
    title = Column(String)
    host_id = Column(String, nullable=False)
    session_code = Column(String(6), nullable=False)
    quiz_interval = Column(Integer)
    active = Column(Boolean, nullable=False, default=True)
    settings = Column(JSON)


# an access code may be reused once its session is no longer active
Index(
    "uq_sessions_active_code",
    LiveSessionRow.session_code,
    unique=True,
    sqlite_where=LiveSessionRow.active == true(),
    postgresql_where=LiveSessionRow.active == true(),
)


class TranscriptionRow(Base, CreatedAtMixin):
    __tablename__ = "transcriptions"

    id = Column(String, primary_key=True)
    session_id = Column(String, nullable=False, index=True)
    text = Column(Text, nullable=False)


class PollRow(Base, CreatedAtMixin):
    __tablename__ = "polls"

    id = Column(String, primary_key=True)
    session_id = Column(String, nullable=False, index=True)
    question = Column(Text, nullable=False)
    options = Column(JSON, nullable=False)
    correct_option = Column(Integer)
    generated_from = Column(Text, default="")
    published = Column(Boolean, nullable=False, default=False)


class ParticipantRow(Base, CreatedAtMixin):
    __tablename__ = "participants"

    id = Column(String, primary_key=True)
    session_id = Column(String, nullable=False, index=True)
    username = Column(String, nullable=False)


class PollAnswerRow(Base, CreatedAtMixin):
    __tablename__ = "poll_answers"

    id = Column(String, primary_key=True)
    poll_id = Column(String, nullable=False, index=True)
    session_id = Column(String, nullable=False, index=True)
    participant_id = Column(String)
    answer = Column(Text, nullable=False)
