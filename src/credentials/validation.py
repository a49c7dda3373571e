"""One cheap network probe per provider, reduced to valid/invalid.

Validators never raise: transport failures count as invalid. Success criteria
are provider specific; a 400 from Anthropic still means the key authenticated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import httpx

from src.builder.config import gemini_model, validation_timeout_s
from src.credentials.providers import Provider, parse_provider
from src.sandbox_backends.factory import get_provider

if TYPE_CHECKING:
    from src.sandbox_backends.base import SandboxProvider

logger = logging.getLogger(__name__)

GEMINI_INVALID_KEY_MARKER = "API key not valid"
FIRECRAWL_PROBE_URL = "https://example.com"


class KeyValidator(Protocol):
    async def validate(self, key: str) -> bool: ...


def _client(client: httpx.AsyncClient | None) -> httpx.AsyncClient:
    return client or httpx.AsyncClient(timeout=validation_timeout_s())


@dataclass
class _HttpValidator:
    client: httpx.AsyncClient | None = None

    async def validate(self, key: str) -> bool:
        if not (key or "").strip():
            return False
        http = _client(self.client)
        try:
            return await self._probe(http, key.strip())
        except httpx.HTTPError as exc:
            logger.info("%s key probe failed: %s", type(self).__name__, exc)
            return False
        finally:
            if self.client is None:
                await http.aclose()

    async def _probe(self, http: httpx.AsyncClient, key: str) -> bool:
        raise NotImplementedError


class GeminiValidator(_HttpValidator):
    async def _probe(self, http: httpx.AsyncClient, key: str) -> bool:
        url = (
            "https://generativelanguage.googleapis.com/v1beta/models/"
            f"{gemini_model()}:generateContent"
        )
        res = await http.post(
            url,
            params={"key": key},
            json={"contents": [{"role": "user", "parts": [{"text": "test"}]}]},
        )
        if res.status_code < 400:
            return True
        if GEMINI_INVALID_KEY_MARKER not in res.text:
            logger.info("Gemini key probe failed with status %s", res.status_code)
        return False


@dataclass
class OpenAIStyleValidator(_HttpValidator):
    models_url: str = "https://api.openai.com/v1/models"

    async def _probe(self, http: httpx.AsyncClient, key: str) -> bool:
        res = await http.get(self.models_url, headers={"Authorization": f"Bearer {key}"})
        return res.is_success


class AnthropicValidator(_HttpValidator):
    async def _probe(self, http: httpx.AsyncClient, key: str) -> bool:
        res = await http.post(
            "https://api.anthropic.com/v1/messages",
            headers={
                "x-api-key": key,
                "anthropic-version": "2023-06-01",
                "content-type": "application/json",
            },
            json={
                "model": "claude-3-haiku-20240307",
                "max_tokens": 1,
                "messages": [{"role": "user", "content": "test"}],
            },
        )
        return res.status_code != 401


class FirecrawlValidator(_HttpValidator):
    async def _probe(self, http: httpx.AsyncClient, key: str) -> bool:
        res = await http.post(
            "https://api.firecrawl.dev/v0/scrape",
            headers={"Authorization": f"Bearer {key}"},
            json={"url": FIRECRAWL_PROBE_URL},
        )
        return res.status_code != 401


@dataclass
class SandboxValidator:
    provider: SandboxProvider | None = None

    async def validate(self, key: str) -> bool:
        if not (key or "").strip():
            return False
        sandboxes = self.provider or get_provider()
        try:
            session = await sandboxes.create_session(api_key=key.strip())
            await session.kill()
        except Exception as exc:
            logger.info("Sandbox key probe failed: %s", exc)
            return False
        return True


@dataclass
class ValidatorRegistry:
    validators: dict[Provider, KeyValidator] = field(default_factory=dict)

    @classmethod
    def default(
        cls,
        *,
        client: httpx.AsyncClient | None = None,
        sandbox_provider: SandboxProvider | None = None,
    ) -> ValidatorRegistry:
        return cls(
            validators={
                Provider.GEMINI: GeminiValidator(client),
                Provider.OPENAI: OpenAIStyleValidator(client),
                Provider.ANTHROPIC: AnthropicValidator(client),
                Provider.GROQ: OpenAIStyleValidator(
                    client, models_url="https://api.groq.com/openai/v1/models"
                ),
                Provider.FIRECRAWL: FirecrawlValidator(client),
                Provider.E2B: SandboxValidator(sandbox_provider),
            }
        )

    async def validate(self, provider: str | Provider, key: str) -> bool:
        p = parse_provider(provider)
        validator = self.validators.get(p)
        if validator is None:
            raise ValueError(f"no validator registered for {p.value}")
        try:
            return bool(await validator.validate(key))
        except Exception:
            logger.exception("Validator for %s raised", p.value)
            return False


async def validate_key(provider: str | Provider, key: str) -> bool:
    return await ValidatorRegistry.default().validate(provider, key)
