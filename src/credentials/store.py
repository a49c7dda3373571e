from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path

from src.builder.config import keys_path
from src.credentials.providers import ApiKeys

_log = logging.getLogger(__name__)


def _read_record(path: Path) -> ApiKeys:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ApiKeys()
    except OSError:
        _log.warning("Failed to read API keys from %s", path, exc_info=True)
        return ApiKeys()

    try:
        data = json.loads(raw)
    except ValueError:
        _log.warning("Stored API keys at %s are not valid JSON; using defaults", path)
        return ApiKeys()
    if not isinstance(data, dict):
        _log.warning("Stored API keys at %s are not a mapping; using defaults", path)
        return ApiKeys()
    return ApiKeys.from_dict(data)


def _write_record(path: Path, keys: ApiKeys) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.parent / f".{path.name}.{uuid.uuid4().hex}.tmp"
    # Owner-only: the record holds plaintext secrets.
    fd = os.open(str(tmp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fp:
            json.dump(keys.to_dict(), fp)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class CredentialStore:
    """Provider API keys persisted as one flat JSON record."""

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else keys_path()
        self._keys = ApiKeys()

    def load(self) -> ApiKeys:
        """Read the persisted record. Never raises; falls back to empty keys."""
        self._keys = _read_record(self.path)
        return self._keys

    def get(self) -> ApiKeys:
        return self._keys

    def save(self, keys: ApiKeys) -> ApiKeys:
        # In-memory value only changes once the file is in place.
        _write_record(self.path, keys)
        self._keys = keys
        return keys
