"""Create live session tables

Revision ID: 3b7e1f2a9c40
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e1f2a9c40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("title", sa.String()),
        sa.Column("host_id", sa.String(), nullable=False),
        sa.Column("session_code", sa.String(6), nullable=False),
        sa.Column("quiz_interval", sa.Integer()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("settings", sa.JSON()),
        _created_at(),
    )
    # an access code identifies at most one active session
    op.create_index(
        "uq_sessions_active_code",
        "sessions",
        ["session_code"],
        unique=True,
        sqlite_where=sa.text("active = 1"),
        postgresql_where=sa.text("active = true"),
    )

    op.create_table(
        "transcriptions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        _created_at(),
    )
    op.create_table(
        "polls",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("options", sa.JSON(), nullable=False),
        sa.Column("correct_option", sa.Integer()),
        sa.Column("generated_from", sa.Text(), server_default=""),
        sa.Column("published", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_table(
        "participants",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        _created_at(),
    )
    op.create_table(
        "poll_answers",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("poll_id", sa.String(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("participant_id", sa.String()),
        sa.Column("answer", sa.Text(), nullable=False),
        _created_at(),
    )

    for table in ("transcriptions", "polls", "participants", "poll_answers"):
        op.create_index(f"ix_{table}_session_id", table, ["session_id"])
        op.create_index(f"ix_{table}_created_at", table, ["created_at"])
    op.create_index("ix_poll_answers_poll_id", "poll_answers", ["poll_id"])
    op.create_index("ix_sessions_created_at", "sessions", ["created_at"])


def downgrade() -> None:
    for table in ("poll_answers", "participants", "polls", "transcriptions"):
        op.drop_table(table)
    op.drop_index("uq_sessions_active_code", table_name="sessions")
    op.drop_table("sessions")
