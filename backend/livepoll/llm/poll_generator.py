"""
Poll generators: excerpt in, `{question, options}` out.

Two providers are supported, picked by `POLL_GENERATOR_PROVIDER`:
- openrouter (default): any OpenAI-compatible chat completions endpoint, over httpx
- groq: the Groq SDK, run in a worker thread
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from groq import Groq, GroqError

from livepoll.core.config import Settings, get_settings
from livepoll.core.errors import GeneratorError
from livepoll.llm.chains.poll_chain import parse_poll_completion
from livepoll.llm.prompts.poll_prompts import build_poll_messages
from livepoll.schemas.live_session import GeneratedPoll

logger = logging.getLogger(__name__)


class PollGenerator(ABC):
    @abstractmethod
    async def generate(self, excerpt: str) -> GeneratedPoll:
        """Raises GeneratorError on any failure."""

    async def aclose(self) -> None:
        return None


class ChatCompletionPollGenerator(PollGenerator):
    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.api_key = (api_key or "").strip()
        self.base_url = (base_url or settings.openrouter_base_url).rstrip("/")
        self.model = model or settings.openrouter_model
        self.temperature = settings.ai_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.ai_max_tokens
        self.title = settings.project_name
        timeout = timeout or settings.poll_generator_timeout_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    def _payload(self, excerpt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": build_poll_messages(excerpt),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    async def generate(self, excerpt: str) -> GeneratedPoll:
        if not self.api_key:
            raise GeneratorError("Poll generator API key not configured")

        url = f"{self.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}", "X-Title": self.title}
        try:
            resp = await self._client.post(url, json=self._payload(excerpt), headers=headers)
        except httpx.HTTPError as exc:
            raise GeneratorError(f"Poll generator request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise GeneratorError(f"Poll generator error {resp.status_code}: {resp.text[:300]}")

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise GeneratorError(f"Invalid poll generator response: {exc}") from exc

        poll = parse_poll_completion(content or "")
        logger.info("poll_generated provider=chat model=%s options=%s", self.model, len(poll.options))
        return poll

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class GroqPollGenerator(PollGenerator):
    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        client: Optional[Groq] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.api_key = (api_key or "").strip()
        self.model = model or settings.groq_model
        self.temperature = settings.ai_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.ai_max_tokens
        self._client = client

    def _get_client(self) -> Groq:
        if self._client is None:
            self._client = Groq(api_key=self.api_key)
        return self._client

    def _complete(self, excerpt: str) -> str:
        resp = self._get_client().chat.completions.create(
            model=self.model,
            messages=build_poll_messages(excerpt),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return (resp.choices[0].message.content or "").strip()

    async def generate(self, excerpt: str) -> GeneratedPoll:
        if not self.api_key and self._client is None:
            raise GeneratorError("Poll generator API key not configured")
        try:
            content = await asyncio.to_thread(self._complete, excerpt)
        except GroqError as exc:
            raise GeneratorError(f"Groq request failed: {exc}") from exc
        poll = parse_poll_completion(content)
        logger.info("poll_generated provider=groq model=%s options=%s", self.model, len(poll.options))
        return poll


def build_poll_generator(api_key: Optional[str] = None, settings: Optional[Settings] = None) -> PollGenerator:
    settings = settings or get_settings()
    if api_key is None:
        from livepoll.services.credentials import CredentialStore

        api_key = CredentialStore(settings.credential_path).load()
    if settings.poll_generator_provider == "groq":
        return GroqPollGenerator(api_key, settings=settings)
    return ChatCompletionPollGenerator(api_key, settings=settings)
