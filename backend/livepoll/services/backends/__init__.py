from typing import Optional

from livepoll.core.config import Settings, get_settings
from livepoll.services.backends.base import ChangeEvent, RealtimeBackend, Subscription
from livepoll.services.backends.memory import InMemoryBackend
from livepoll.services.realtime_bus import SessionBus


def build_backend(settings: Optional[Settings] = None, bus: Optional[SessionBus] = None) -> RealtimeBackend:
    settings = settings or get_settings()
    if settings.backend_kind == "sql":
        from livepoll.db.session import build_engine, build_session_factory
        from livepoll.services.backends.sql import SqlBackend

        factory = build_session_factory(build_engine(settings.database_url))
        return SqlBackend(factory, bus, create_schema=settings.database_url.startswith("sqlite"))
    if settings.backend_kind == "http":
        from livepoll.services.backends.http import HttpBackend

        return HttpBackend(settings.backend_base_url)
    return InMemoryBackend(bus)


__all__ = ["ChangeEvent", "RealtimeBackend", "Subscription", "InMemoryBackend", "build_backend"]
