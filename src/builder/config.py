from __future__ import annotations

import os
from pathlib import Path


def _env_bool(name: str, *, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return default


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


def keys_path() -> Path:
    raw = (os.environ.get("PAGECRAFT_KEYS_PATH") or "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".pagecraft" / "api_keys.json"


def gemini_model() -> str:
    return (
        os.environ.get("PAGECRAFT_GEMINI_MODEL") or "gemini-2.5-flash"
    ).strip() or "gemini-2.5-flash"


def generation_timeout_s() -> int:
    return max(5, _env_int("PAGECRAFT_GENERATION_TIMEOUT_S", 120))


def validation_timeout_s() -> int:
    return max(1, _env_int("PAGECRAFT_VALIDATION_TIMEOUT_S", 15))


def sandbox_debounce_s() -> float:
    return max(0, _env_int("PAGECRAFT_SANDBOX_DEBOUNCE_MS", 500)) / 1000.0


def editor_debounce_s() -> float:
    return max(0, _env_int("PAGECRAFT_EDITOR_DEBOUNCE_MS", 400)) / 1000.0


def sandbox_port() -> int:
    return _env_int("PAGECRAFT_SANDBOX_PORT", 8000)


def sandbox_template() -> str | None:
    # None → provider default template
    return (os.environ.get("PAGECRAFT_SANDBOX_TEMPLATE") or "").strip() or None


def sandbox_heartbeat_s() -> int:
    # 0 disables the liveness poll.
    return max(0, _env_int("PAGECRAFT_SANDBOX_HEARTBEAT_S", 15))


def scrape_max_chars() -> int:
    return max(1000, _env_int("PAGECRAFT_SCRAPE_MAX_CHARS", 25000))


def server_host() -> str:
    return (os.environ.get("PAGECRAFT_HOST") or "127.0.0.1").strip() or "127.0.0.1"


def server_port() -> int:
    return _env_int("PAGECRAFT_PORT", 8080)


def server_reload() -> bool:
    return _env_bool("PAGECRAFT_RELOAD", default=False)


def cors_allow_origins() -> list[str]:
    raw = (os.environ.get("PAGECRAFT_CORS_ALLOW_ORIGINS") or "").strip()
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def scrape_timeout_s() -> int:
    return max(5, _env_int("PAGECRAFT_SCRAPE_TIMEOUT_S", 60))
