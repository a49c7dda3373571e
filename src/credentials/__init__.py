from src.credentials.providers import (
    PROVIDER_CATALOGUE,
    ApiKeys,
    Provider,
    ProviderInfo,
    parse_provider,
)
from src.credentials.store import CredentialStore

__all__ = [
    "PROVIDER_CATALOGUE",
    "ApiKeys",
    "CredentialStore",
    "Provider",
    "ProviderInfo",
    "parse_provider",
]
