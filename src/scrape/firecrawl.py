from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

import httpx

from src.builder.config import scrape_max_chars, scrape_timeout_s
from src.builder.errors import CredentialMissing, ScrapeError, TransportError

logger = logging.getLogger(__name__)

FIRECRAWL_SCRAPE_URL = "https://api.firecrawl.dev/v0/scrape"


def is_valid_url(url: str) -> bool:
    raw = str(url or "").strip()
    if not raw:
        return False
    parsed = urlparse(raw)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _page_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    data = payload.get("data")
    if not isinstance(data, dict):
        return ""
    for field in ("markdown", "content"):
        value = data.get(field)
        if isinstance(value, str) and value.strip():
            return value
    return ""


async def scrape_url(
    api_key: str, url: str, *, client: httpx.AsyncClient | None = None
) -> str:
    """Fetch the readable content of `url` through Firecrawl."""
    if not (api_key or "").strip():
        raise CredentialMissing(
            "firecrawl", "Firecrawl API Key not found. Please add it for URL recreation."
        )
    if not is_valid_url(url):
        raise ScrapeError(f"Not a valid http(s) URL: {url!r}")

    http = client or httpx.AsyncClient(timeout=scrape_timeout_s())
    try:
        res = await http.post(
            FIRECRAWL_SCRAPE_URL,
            headers={"Authorization": f"Bearer {api_key.strip()}"},
            json={"url": url.strip()},
        )
    except httpx.HTTPError as exc:
        raise TransportError(f"Scrape request failed: {exc}") from exc
    finally:
        if client is None:
            await http.aclose()

    if res.status_code == 401:
        raise ScrapeError("The provided Firecrawl API key is invalid.", status_code=401)
    try:
        payload = res.json()
    except ValueError:
        payload = {}
    if res.status_code >= 400:
        msg = str(payload.get("error") or "").strip() if isinstance(payload, dict) else ""
        raise ScrapeError(
            f"scrape failed ({res.status_code}): {msg or 'unknown error'}",
            status_code=res.status_code,
        )

    text = _page_text(payload)
    if not text:
        raise ScrapeError("scrape returned no page content")
    limit = scrape_max_chars()
    if len(text) > limit:
        logger.info("Truncating scraped content for %s to %d chars", url, limit)
        text = text[:limit]
    return text
