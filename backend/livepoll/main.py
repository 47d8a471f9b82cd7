from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from livepoll import __version__
from livepoll.api.v1 import api_router
from livepoll.core.config import get_settings
from livepoll.core.logging_config import configure_logging
from livepoll.llm.poll_generator import PollGenerator, build_poll_generator
from livepoll.services.backends import build_backend
from livepoll.services.backends.base import RealtimeBackend

logger = logging.getLogger(__name__)


def create_app(
    backend: Optional[RealtimeBackend] = None,
    poll_generator_factory: Optional[Callable[[str], PollGenerator]] = None,
) -> FastAPI:
    settings = get_settings()
    if settings.backend_kind == "http" and backend is None:
        raise RuntimeError("the service cannot use backend_kind=http; pick memory or sql")
    backend = backend or build_backend(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("livepoll_started env=%s backend=%s", settings.env, type(backend).__name__)
        yield
        await backend.aclose()

    app = FastAPI(title=settings.project_name, version=__version__, lifespan=lifespan)
    app.state.backend = backend
    app.state.poll_generator_factory = poll_generator_factory or (lambda key: build_poll_generator(key, settings))

    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> dict:
        return {"ok": True}

    app.include_router(api_router, prefix=settings.api_v1_prefix)
    return app


def run() -> None:
    import uvicorn

    configure_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
