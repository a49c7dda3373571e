from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx

from src.builder.config import gemini_model, generation_timeout_s
from src.builder.errors import (
    AuthError,
    CredentialMissing,
    GenerationError,
    TransportError,
)
from src.generation.prompts import (
    SYSTEM_PROMPT,
    prompt_for_refinement,
    prompt_from_description,
    prompt_from_url,
)

logger = logging.getLogger(__name__)

INVALID_KEY_MARKER = "API key not valid"
_FENCE_MARKERS = ("```html", "```")


def strip_fences(text: str) -> str:
    out = text
    for marker in _FENCE_MARKERS:
        out = out.replace(marker, "")
    return out


def _chunk_text(payload: dict[str, Any]) -> str:
    # Unlike whole responses, streamed parts must keep their whitespace.
    out: list[str] = []
    for cand in payload.get("candidates") or []:
        if not isinstance(cand, dict):
            continue
        content = cand.get("content")
        if not isinstance(content, dict):
            continue
        for part in content.get("parts") or []:
            if not isinstance(part, dict):
                continue
            txt = part.get("text")
            if isinstance(txt, str) and txt:
                out.append(txt)
    return "".join(out)


def _error_message(payload: Any) -> str:
    if isinstance(payload, list) and payload:
        payload = payload[0]
    if not isinstance(payload, dict):
        return ""
    err = payload.get("error")
    if isinstance(err, dict):
        return str(err.get("message") or "").strip()
    if isinstance(err, str):
        return err.strip()
    return ""


def classify_provider_error(message: str, *, status_code: int | None = None) -> GenerationError:
    if INVALID_KEY_MARKER in (message or ""):
        return AuthError("The provided Gemini API key is invalid.")
    detail = message or "unknown error"
    if status_code is not None:
        detail = f"{status_code}: {detail}"
    return GenerationError(f"Failed to generate content from AI ({detail}).")


def _request_body(prompt: str) -> dict[str, Any]:
    return {
        "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
    }


async def _iter_sse_payloads(
    *, client: httpx.AsyncClient, model: str, api_key: str, prompt: str
) -> AsyncIterator[dict[str, Any]]:
    url = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:streamGenerateContent"
    async with client.stream(
        "POST",
        url,
        params={"alt": "sse", "key": api_key},
        json=_request_body(prompt),
    ) as res:
        if res.status_code >= 400:
            raw = await res.aread()
            try:
                data = json.loads(raw)
            except ValueError:
                data = {}
            raise classify_provider_error(_error_message(data), status_code=res.status_code)

        async for line in res.aiter_lines():
            if not line.startswith("data:"):
                continue
            raw_event = line[len("data:") :].strip()
            if not raw_event:
                continue
            try:
                payload = json.loads(raw_event)
            except ValueError as exc:
                raise GenerationError("Malformed event in model stream.") from exc
            if isinstance(payload, dict):
                yield payload


async def stream_code(
    api_key: str, prompt: str, *, client: httpx.AsyncClient | None = None
) -> AsyncIterator[str]:
    """Yield fence-stripped fragments of the generated document in arrival order.

    The sequence is finite and not restartable. Closing it (or cancelling the
    task consuming it) closes the underlying HTTP stream.
    """
    if not (api_key or "").strip():
        raise CredentialMissing("gemini", "Gemini API key not provided.")

    http = client or httpx.AsyncClient(timeout=generation_timeout_s())
    try:
        async for payload in _iter_sse_payloads(
            client=http, model=gemini_model(), api_key=api_key.strip(), prompt=prompt
        ):
            msg = _error_message(payload)
            if msg:
                raise classify_provider_error(msg)
            text = _chunk_text(payload)
            if not text:
                continue
            cleaned = strip_fences(text)
            if cleaned:
                yield cleaned
    except GenerationError:
        raise
    except httpx.HTTPError as exc:
        logger.warning("Gemini stream failed: %s", exc)
        raise TransportError("Failed to generate content from AI.") from exc
    finally:
        if client is None:
            await http.aclose()


async def generate(
    api_key: str,
    prompt: str,
    on_chunk: Callable[[str], None],
    *,
    client: httpx.AsyncClient | None = None,
) -> str:
    parts: list[str] = []
    stream = stream_code(api_key, prompt, client=client)
    try:
        async for chunk in stream:
            parts.append(chunk)
            on_chunk(chunk)
    finally:
        await stream.aclose()
    return "".join(parts)


async def generate_from_prompt(
    api_key: str, prompt: str, on_chunk: Callable[[str], None], **kwargs: Any
) -> str:
    return await generate(api_key, prompt_from_description(prompt), on_chunk, **kwargs)


async def generate_from_url(
    api_key: str,
    url: str,
    scraped_content: str,
    on_chunk: Callable[[str], None],
    **kwargs: Any,
) -> str:
    return await generate(api_key, prompt_from_url(url, scraped_content), on_chunk, **kwargs)


async def generate_refinement(
    api_key: str,
    instruction: str,
    current_code: str,
    on_chunk: Callable[[str], None],
    **kwargs: Any,
) -> str:
    return await generate(
        api_key, prompt_for_refinement(instruction, current_code), on_chunk, **kwargs
    )
