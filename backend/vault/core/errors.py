from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from backend.vault.models.generation import GenerationFailure, Provider


class GenerationError(Exception):
    """Base class for everything the generation pipeline raises."""


class ConfigurationError(GenerationError):
    """No usable credential for any provider, and no override supplied."""

    hint = "Set PERPLEXITY_API_KEY, GEMINI_API_KEY, HUGGINGFACE_API_KEY or GROQ_API_KEY, or provide your own API key."


class ProviderError(GenerationError):
    """
    A single provider attempt failed.

    These are folded into the attempt log by GenerationClient and never
    escape it; only their kind and message survive.
    """

    kind = "provider_error"

    def __init__(
        self,
        provider: "Provider",
        reason: str,
        status_code: Optional[int] = None,
    ):
        self.provider = provider
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{provider.value}: {reason}")


class TransportError(ProviderError):
    """Network failure or timeout reaching the provider."""

    kind = "transport_error"


class ResponseError(ProviderError):
    """Provider answered, but not with usable text."""

    kind = "response_error"


class ExhaustionError(GenerationError):
    """Every provider/credential/model combination failed."""

    def __init__(self, failure: "GenerationFailure"):
        self.failure = failure
        super().__init__(
            f"All providers failed after {len(failure.attempts)} attempt(s): "
            f"{failure.last_error or 'no attempts made'}"
        )
