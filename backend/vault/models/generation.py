from __future__ import annotations

from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, SecretStr, computed_field


class Provider(str, Enum):
    """Available generation providers."""
    PERPLEXITY = "perplexity"
    GEMINI = "gemini"
    HUGGINGFACE = "huggingface"
    GROQ = "groq"


class AttemptStatus(str, Enum):
    SUCCESS = "success"
    TRANSPORT_ERROR = "transport_error"
    RESPONSE_ERROR = "response_error"


class OverrideCredential(BaseModel):
    """A user-supplied key that bypasses the shared fallback chain."""
    provider: Provider
    credential: SecretStr


class GenerationRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    provider_priority: List[Provider] = Field(default_factory=list)
    override: Optional[OverrideCredential] = None


class CredentialSet(BaseModel):
    """
    Ordered credentials for one provider, read-only for the life of a request.

    `models` is only set for providers that expose several candidate models;
    None means one attempt per credential with the adapter's default model.
    """
    model_config = ConfigDict(frozen=True)

    provider: Provider
    credentials: Tuple[str, ...] = ()
    models: Optional[Tuple[str, ...]] = None

    def __len__(self) -> int:
        return len(self.credentials) * (len(self.models) if self.models else 1)

    def combinations(self) -> Iterator[Tuple[int, str, Optional[str]]]:
        # credential is the outer loop, model the inner one
        models = self.models or (None,)
        for index, credential in enumerate(self.credentials):
            for model in models:
                yield index, credential, model


class AttemptRecord(BaseModel):
    provider: Provider
    credential_index: int
    masked_credential: str
    model: Optional[str] = None
    status: AttemptStatus
    error: Optional[str] = None
    duration_ms: int = 0


class GenerationResult(BaseModel):
    text: str = Field(..., min_length=1)
    provider: Provider
    credential_index: int
    masked_credential: str
    model: Optional[str] = None
    override_used: bool = False
    attempts: List[AttemptRecord] = Field(default_factory=list)


class GenerationFailure(BaseModel):
    attempts: List[AttemptRecord] = Field(default_factory=list)
    last_error: Optional[str] = None
    last_error_kind: Optional[AttemptStatus] = None
    override_used: bool = False
    deadline_exceeded: bool = False

    @computed_field
    @property
    def attempts_by_provider(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for attempt in self.attempts:
            counts[attempt.provider.value] = counts.get(attempt.provider.value, 0) + 1
        return counts

    @computed_field
    @property
    def requires_key(self) -> bool:
        # shared keys ran out; the user can retry with their own
        return not self.override_used
