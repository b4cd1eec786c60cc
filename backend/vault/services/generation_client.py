"""
Multi-provider generation with ordered fallback and key rotation.

Flow:
1. Override credential supplied -> try only that provider/key, return as-is
2. Otherwise walk the provider priority list in order
3. Per provider: credentials outer loop, models inner loop
4. First reply that passes the adapter's checks wins; nothing else is tried
5. Every combination failed -> GenerationFailure with the full attempt log

Attempts run strictly one after another. Each (provider, credential, model)
triple is tried at most once per call. The client holds no state between
calls, so one instance can serve concurrent requests.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Mapping, Optional, Union

from backend.vault.core.errors import ConfigurationError, ProviderError
from backend.vault.models.generation import (
    AttemptRecord,
    AttemptStatus,
    CredentialSet,
    GenerationFailure,
    GenerationRequest,
    GenerationResult,
    Provider,
)
from backend.vault.services.credentials import mask_for
from backend.vault.services.providers import ProviderAdapter
from backend.vault.utils import prometheus_metrics as metrics

logger = logging.getLogger(__name__)

GenerationOutcome = Union[GenerationResult, GenerationFailure]


def _redacted(error: ProviderError, credential: str, masked: str) -> ProviderError:
    if not credential or credential not in error.reason:
        return error
    return type(error)(error.provider, error.reason.replace(credential, masked), error.status_code)


class GenerationClient:
    def __init__(
        self,
        adapters: Mapping[Provider, ProviderAdapter],
        credential_sets: Mapping[Provider, CredentialSet],
        attempt_timeout: float = 30.0,
        deadline: Optional[float] = None,
    ):
        """
        Args:
            adapters: provider -> adapter used to make the call
            credential_sets: provider -> keys (and models) to rotate through
            attempt_timeout: hard limit for one attempt, in seconds
            deadline: optional budget for the whole chain, in seconds. Each
                attempt's timeout is clipped to what is left of it, and no
                attempt starts once it is spent.
        """
        self.adapters = dict(adapters)
        self.credential_sets = dict(credential_sets)
        self.attempt_timeout = attempt_timeout
        self.deadline = deadline

    async def generate(self, request: GenerationRequest) -> GenerationOutcome:
        if request.override is not None:
            override = request.override
            if override.provider not in self.adapters:
                raise ConfigurationError(f"No adapter for provider {override.provider.value}")
            configured = self.credential_sets.get(override.provider)
            plan = [
                CredentialSet(
                    provider=override.provider,
                    credentials=[override.credential.get_secret_value()],
                    models=configured.models if configured else None,
                )
            ]
            logger.info(f"Using user-supplied {override.provider.value} key; skipping shared fallback chain")
            return await self._run(request.prompt, plan, override_used=True)

        plan = []
        for p in dict.fromkeys(request.provider_priority):
            if p in self.adapters and p in self.credential_sets and self.credential_sets[p].credentials:
                plan.append(self.credential_sets[p])
        if not plan:
            raise ConfigurationError(
                "No API keys configured for any of: "
                + ", ".join(p.value for p in request.provider_priority)
            )

        logger.info(
            "Fallback chain: "
            + " -> ".join(f"{cs.provider.value}({len(cs.credentials)} key(s))" for cs in plan)
        )
        return await self._run(request.prompt, plan, override_used=False)

    async def _run(self, prompt: str, plan: List[CredentialSet], override_used: bool) -> GenerationOutcome:
        loop = asyncio.get_running_loop()
        expires_at = loop.time() + self.deadline if self.deadline is not None else None

        attempts: List[AttemptRecord] = []
        last_error: Optional[ProviderError] = None
        cut_by_deadline = False

        for credential_set in plan:
            provider = credential_set.provider
            adapter = self.adapters[provider]
            total_keys = len(credential_set.credentials)

            for index, credential, model in credential_set.combinations():
                timeout = self.attempt_timeout
                if expires_at is not None:
                    remaining = expires_at - loop.time()
                    if remaining <= 0:
                        logger.error(f"Generation deadline of {self.deadline}s exceeded after {len(attempts)} attempt(s)")
                        return self._failure(attempts, last_error, override_used, deadline_exceeded=True)
                    clipped = remaining < timeout
                    timeout = min(timeout, remaining)
                else:
                    clipped = False

                masked = mask_for(provider, credential.strip())
                label = f"[{provider.value.upper()} {index + 1}/{total_keys}]"
                logger.info(f"{label} Trying: {masked}" + (f" | Model: {model}" if model else ""))

                start = time.monotonic()
                outcome = await adapter.generate(credential, prompt, model=model, timeout=timeout)
                duration = time.monotonic() - start
                used_model = model or adapter.policy.model

                if outcome.ok:
                    metrics.observe_attempt(provider.value, used_model, AttemptStatus.SUCCESS.value, duration)
                    attempts.append(
                        AttemptRecord(
                            provider=provider,
                            credential_index=index,
                            masked_credential=masked,
                            model=used_model,
                            status=AttemptStatus.SUCCESS,
                            duration_ms=int(duration * 1000),
                        )
                    )
                    logger.info(f"{label} SUCCESS ({int(duration * 1000)}ms)")
                    return GenerationResult(
                        text=outcome.text,
                        provider=provider,
                        credential_index=index,
                        masked_credential=masked,
                        model=used_model,
                        override_used=override_used,
                        attempts=attempts,
                    )

                error = _redacted(outcome.error, credential.strip(), masked)
                status = AttemptStatus(error.kind)
                metrics.observe_attempt(provider.value, used_model, status.value, duration)
                attempts.append(
                    AttemptRecord(
                        provider=provider,
                        credential_index=index,
                        masked_credential=masked,
                        model=used_model,
                        status=status,
                        error=error.reason,
                        duration_ms=int(duration * 1000),
                    )
                )
                last_error = error
                cut_by_deadline = clipped and error.reason == "timeout"
                logger.warning(f"{label} FAILED: {error.reason} ({int(duration * 1000)}ms)")

        logger.error(f"All providers failed after {len(attempts)} attempt(s). Last error: {last_error}")
        # the final attempt may itself have been cut short by the deadline
        deadline_exceeded = cut_by_deadline or (expires_at is not None and loop.time() >= expires_at)
        return self._failure(attempts, last_error, override_used, deadline_exceeded=deadline_exceeded)

    @staticmethod
    def _failure(
        attempts: List[AttemptRecord],
        last_error: Optional[ProviderError],
        override_used: bool,
        deadline_exceeded: bool = False,
    ) -> GenerationFailure:
        metrics.record_exhausted(override_used)
        return GenerationFailure(
            attempts=attempts,
            last_error=str(last_error) if last_error else None,
            last_error_kind=AttemptStatus(last_error.kind) if last_error else None,
            override_used=override_used,
            deadline_exceeded=deadline_exceeded,
        )
