"""
Credential parsing, masking and the mutable key store.

Provider keys come from configuration as either a single value or a JSON
array of values to rotate through. Parsing is total: anything that is not a
JSON array is treated as one key.
"""
from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional, Sequence

from dotenv import set_key

from backend.vault.config import Settings, get_settings
from backend.vault.models.generation import CredentialSet, Provider

logger = logging.getLogger(__name__)

ENV_KEY_BY_PROVIDER: Dict[Provider, str] = {
    Provider.PERPLEXITY: "PERPLEXITY_API_KEY",
    Provider.GEMINI: "GEMINI_API_KEY",
    Provider.HUGGINGFACE: "HUGGINGFACE_API_KEY",
    Provider.GROQ: "GROQ_API_KEY",
}
PROVIDER_BY_ENV_KEY: Dict[str, Provider] = {v: k for k, v in ENV_KEY_BY_PROVIDER.items()}

# visible prefix length; HuggingFace tokens show less
MASK_PREFIX_BY_PROVIDER: Dict[Provider, int] = {Provider.HUGGINGFACE: 5}


def parse_credentials(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (ValueError, TypeError, RecursionError):
        return [raw]
    if isinstance(parsed, list):
        return parsed
    return [raw]


def mask_credential(credential: str, prefix: int = 8, suffix: int = 4) -> str:
    """Render a key for logs: first `prefix` and last `suffix` chars only."""
    credential = str(credential)
    if len(credential) < prefix + suffix + 4:
        return "****" + credential[-2:] if len(credential) > 4 else "****"
    return f"{credential[:prefix]}...{credential[-suffix:]}"


def mask_for(provider: Provider, credential: str) -> str:
    return mask_credential(credential, prefix=MASK_PREFIX_BY_PROVIDER.get(provider, 8))


class CredentialStore:
    """
    Keys layered over Settings.

    `upsert` makes a new key visible to every later request. With
    persistence on, the key is also written to the env file so that it
    survives a restart.
    """

    def __init__(self, settings: Settings | None = None, persist: Optional[bool] = None):
        self.settings = settings or get_settings()
        self.persist = self.settings.persist_credentials if persist is None else persist
        self._overrides: Dict[Provider, str] = {}

    def raw_value(self, provider: Provider) -> Optional[str]:
        if provider in self._overrides:
            return self._overrides[provider]
        secret = self.settings.api_key_for(provider)
        return secret.get_secret_value() if secret is not None else None

    def upsert(self, provider: Provider, credential: str) -> None:
        if not credential:
            raise ValueError("credential must not be empty")
        self._overrides[provider] = credential

        env_key = ENV_KEY_BY_PROVIDER[provider]
        if self.persist:
            set_key(self.settings.env_file_path, env_key, credential)
        logger.info(f"Updated {env_key}: {mask_for(provider, credential)}")

    def credential_set(self, provider: Provider, models: Sequence[str] | None = None) -> CredentialSet:
        return CredentialSet(
            provider=provider,
            credentials=[str(c) for c in parse_credentials(self.raw_value(provider))],
            models=models or None,
        )


_store: CredentialStore | None = None


def get_credential_store() -> CredentialStore:
    global _store
    if _store is None:
        _store = CredentialStore()
    return _store
