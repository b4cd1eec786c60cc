"""
Provider adapters: one HTTP call per attempt, provider envelope in, text out.

Each adapter turns (credential, model, prompt) into exactly one request and
maps the provider's response shape to plain text. Failures come back as
values (AdapterResult.error) so the fallback loop can fold them into its
attempt log:

- TransportError: network failure or timeout
- ResponseError: non-2xx, unparseable body, no text, or text too short

Raw credentials never appear in error messages; they are redacted to their
masked form before an error is built.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple, Optional, Type

import httpx

from backend.vault.config import Settings, get_settings
from backend.vault.core.errors import ProviderError, ResponseError, TransportError
from backend.vault.models.generation import Provider
from backend.vault.services.credentials import mask_for

logger = logging.getLogger(__name__)

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"
GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
HUGGINGFACE_BASE_URL = "https://api-inference.huggingface.co/models"

ERROR_DETAIL_MAX_CHARS = 200


@dataclass(frozen=True)
class ProviderPolicy:
    """Per-call-site request constants for one provider."""
    model: str
    temperature: float = 0.7
    max_tokens: int = 2048
    top_k: int = 40
    top_p: float = 0.95
    min_response_chars: int = 100


@dataclass
class AdapterResult:
    text: Optional[str] = None
    error: Optional[ProviderError] = field(default=None)

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.text)


class ProviderCall(NamedTuple):
    url: str
    headers: Dict[str, str]
    json: Dict[str, Any]
    params: Optional[Dict[str, str]] = None


class ProviderAdapter(ABC):
    provider: Provider

    def __init__(self, policy: ProviderPolicy, http_client: httpx.AsyncClient | None = None):
        self.policy = policy
        self.http_client = http_client

    @abstractmethod
    def build_request(self, credential: str, model: str, prompt: str) -> ProviderCall:
        ...

    @abstractmethod
    def extract_text(self, payload: Any, prompt: str) -> Optional[str]:
        """Pull the generated text out of the provider's envelope."""
        ...

    async def generate(
        self,
        credential: str,
        prompt: str,
        *,
        model: Optional[str] = None,
        timeout: float = 30.0,
    ) -> AdapterResult:
        credential = credential.strip()
        model = model or self.policy.model
        try:
            text = await asyncio.wait_for(
                self._complete(credential, model, prompt, timeout),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return AdapterResult(error=TransportError(self.provider, "timeout"))
        except httpx.HTTPError as e:
            reason = self._redact(str(e) or type(e).__name__, credential)
            return AdapterResult(error=TransportError(self.provider, reason))
        except (httpx.InvalidURL, ValueError) as e:
            # request could not be built or encoded (e.g. non-ASCII in a header)
            reason = self._redact(f"request not sent: {type(e).__name__}: {e}", credential)
            return AdapterResult(error=TransportError(self.provider, reason))
        except ProviderError as e:
            return AdapterResult(error=e)
        return AdapterResult(text=text)

    async def _complete(self, credential: str, model: str, prompt: str, timeout: float) -> str:
        call = self.build_request(credential, model, prompt)
        if self.http_client is not None:
            response = await self.http_client.post(
                call.url, headers=call.headers, json=call.json, params=call.params, timeout=timeout
            )
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(
                    call.url, headers=call.headers, json=call.json, params=call.params
                )

        if not response.is_success:
            detail = self._redact(self._error_detail(response), credential)
            raise ResponseError(self.provider, detail, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError:
            raise ResponseError(self.provider, "unparseable response body", status_code=response.status_code)

        try:
            text = self.extract_text(payload, prompt)
        except (KeyError, IndexError, TypeError, AttributeError):
            text = None

        if not isinstance(text, str) or not text:
            raise ResponseError(self.provider, "no text in response", status_code=response.status_code)
        if len(text) <= self.policy.min_response_chars:
            raise ResponseError(
                self.provider,
                f"reply too short ({len(text)} chars, need more than {self.policy.min_response_chars})",
                status_code=response.status_code,
            )
        return text

    def _error_detail(self, response: httpx.Response) -> str:
        detail = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            err = body.get("error")
            if isinstance(err, dict):
                detail = err.get("message")
            elif err:
                detail = str(err)
        if not detail:
            return f"HTTP {response.status_code}"
        return f"HTTP {response.status_code}: {str(detail)[:ERROR_DETAIL_MAX_CHARS]}"

    def _redact(self, message: str, credential: str) -> str:
        if credential and credential in message:
            message = message.replace(credential, mask_for(self.provider, credential))
        return message


class ChatCompletionsAdapter(ProviderAdapter):
    """OpenAI-style /chat/completions envelope (Perplexity, Groq)."""
    url: str

    def build_request(self, credential: str, model: str, prompt: str) -> ProviderCall:
        return ProviderCall(
            url=self.url,
            headers={"Authorization": f"Bearer {credential}"},
            json={
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": self.policy.temperature,
                "max_tokens": self.policy.max_tokens,
            },
        )

    def extract_text(self, payload: Any, prompt: str) -> Optional[str]:
        return payload["choices"][0]["message"]["content"]


class PerplexityAdapter(ChatCompletionsAdapter):
    provider = Provider.PERPLEXITY
    url = PERPLEXITY_URL


class GroqAdapter(ChatCompletionsAdapter):
    provider = Provider.GROQ
    url = GROQ_URL


class GeminiAdapter(ProviderAdapter):
    provider = Provider.GEMINI

    def build_request(self, credential: str, model: str, prompt: str) -> ProviderCall:
        return ProviderCall(
            url=f"{GEMINI_BASE_URL}/{model}:generateContent",
            headers={},
            params={"key": credential},
            json={
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": self.policy.temperature,
                    "topK": self.policy.top_k,
                    "topP": self.policy.top_p,
                    "maxOutputTokens": self.policy.max_tokens,
                },
            },
        )

    def extract_text(self, payload: Any, prompt: str) -> Optional[str]:
        return payload["candidates"][0]["content"]["parts"][0]["text"]


class HuggingFaceAdapter(ProviderAdapter):
    """
    HF Inference API. Text-generation models may echo the prompt in front of
    their output, so it is removed before the length check.
    """
    provider = Provider.HUGGINGFACE

    def build_request(self, credential: str, model: str, prompt: str) -> ProviderCall:
        return ProviderCall(
            url=f"{HUGGINGFACE_BASE_URL}/{model}",
            headers={"Authorization": f"Bearer {credential}"},
            json={
                "inputs": prompt,
                "parameters": {
                    "max_new_tokens": self.policy.max_tokens,
                    "temperature": self.policy.temperature,
                    "top_p": self.policy.top_p,
                    "do_sample": True,
                },
            },
        )

    def extract_text(self, payload: Any, prompt: str) -> Optional[str]:
        if isinstance(payload, list):
            text = payload[0].get("generated_text")
        elif isinstance(payload, dict):
            text = payload.get("generated_text")
        elif isinstance(payload, str):
            text = payload
        else:
            text = None

        if not isinstance(text, str):
            return None
        if text.startswith(prompt):
            text = text[len(prompt):]
        elif prompt in text:
            text = text.replace(prompt, "", 1)
        return text.strip()


ADAPTER_CLASSES: Dict[Provider, Type[ProviderAdapter]] = {
    Provider.PERPLEXITY: PerplexityAdapter,
    Provider.GEMINI: GeminiAdapter,
    Provider.HUGGINGFACE: HuggingFaceAdapter,
    Provider.GROQ: GroqAdapter,
}


def default_model(provider: Provider, settings: Settings) -> str:
    if provider is Provider.HUGGINGFACE:
        return settings.huggingface_models[0] if settings.huggingface_models else ""
    return getattr(settings, f"{provider.value}_model")


def build_adapters(
    *,
    temperature: float,
    max_tokens: int,
    http_client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> Dict[Provider, ProviderAdapter]:
    """One adapter per provider, sharing a call site's temperature/token limits."""
    settings = settings or get_settings()
    return {
        provider: cls(
            ProviderPolicy(
                model=default_model(provider, settings),
                temperature=temperature,
                max_tokens=max_tokens,
                min_response_chars=settings.min_response_chars,
            ),
            http_client=http_client,
        )
        for provider, cls in ADAPTER_CLASSES.items()
    }
