from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any


class Provider(Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GROQ = "groq"
    FIRECRAWL = "firecrawl"
    E2B = "e2b"


@dataclass(frozen=True)
class ProviderInfo:
    provider: Provider
    label: str
    placeholder: str


# Display order of the settings overlay.
PROVIDER_CATALOGUE: tuple[ProviderInfo, ...] = (
    ProviderInfo(Provider.GEMINI, "Gemini API Key", "Enter your Gemini API key"),
    ProviderInfo(Provider.OPENAI, "OpenAI API Key", "Enter your OpenAI key"),
    ProviderInfo(Provider.ANTHROPIC, "Anthropic API Key", "Enter your Anthropic key"),
    ProviderInfo(Provider.GROQ, "Groq API Key", "Enter your Groq key"),
    ProviderInfo(Provider.FIRECRAWL, "Firecrawl API Key", "For URL recreation"),
    ProviderInfo(Provider.E2B, "E2B API Key", "For sandbox preview (optional)"),
)


def parse_provider(raw: str | Provider) -> Provider:
    if isinstance(raw, Provider):
        return raw
    try:
        return Provider(str(raw or "").strip().lower())
    except ValueError as exc:
        raise ValueError(f"unknown provider: {raw!r}") from exc


@dataclass(frozen=True)
class ApiKeys:
    gemini: str = ""
    openai: str = ""
    anthropic: str = ""
    groq: str = ""
    firecrawl: str = ""
    e2b: str = ""

    def get(self, provider: str | Provider) -> str:
        return str(getattr(self, parse_provider(provider).value))

    def has(self, provider: str | Provider) -> bool:
        return bool(self.get(provider).strip())

    def to_dict(self) -> dict[str, str]:
        return {f.name: str(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ApiKeys:
        """Merge a stored mapping over the all-empty defaults.

        Unknown keys are ignored; a non-string value counts as missing.
        """
        values: dict[str, str] = {}
        for f in fields(cls):
            v = d.get(f.name)
            values[f.name] = v if isinstance(v, str) else ""
        return cls(**values)
