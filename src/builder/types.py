from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

ChatRole = Literal["user", "model", "system"]


class GenerationMode(Enum):
    PROMPT = "prompt"
    URL = "url"


class Screen(Enum):
    HOME = "home"
    BUILDER = "builder"


class SandboxStatus(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    RUNNING = "running"
    ERROR = "error"


class ValidationStatus(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    VALID = "valid"
    INVALID = "invalid"


@dataclass(frozen=True)
class ChatMessage:
    role: ChatRole
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class LogEntry:
    text: str
    created_at_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def render(self) -> str:
        stamp = datetime.fromtimestamp(self.created_at_ms / 1000).strftime("%H:%M:%S")
        return f"[{stamp}] {self.text}"

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "created_at_ms": int(self.created_at_ms)}
