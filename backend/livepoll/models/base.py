from datetime import datetime, timezone

from sqlalchemy import Column, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreatedAtMixin:
    # client-assigned; the default only covers writers that omit it
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
