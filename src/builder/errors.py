from __future__ import annotations


class CredentialMissing(RuntimeError):
    """A required provider key is absent; raised before any network call."""

    def __init__(self, provider: str, message: str | None = None) -> None:
        super().__init__(message or f"{provider} API key not configured")
        self.provider = provider


class GenerationError(RuntimeError):
    pass


class TransportError(GenerationError):
    """A network call failed before the provider produced an answer."""


class AuthError(GenerationError):
    """The provider rejected the key. Fix the credential; retrying won't help."""

    def __init__(self, message: str, *, provider: str = "gemini") -> None:
        super().__init__(message)
        self.provider = provider


class ScrapeError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteSessionLost(RuntimeError):
    pass
