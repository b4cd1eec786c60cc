"""
Generation Service: call-site facade over GenerationClient

Each user action (interview questions, project suggestions) is a profile:
its own provider priority, temperature, token limit and time limits. The
service renders the prompt, builds adapters and credential sets for the
profile, runs the fallback chain and records usage.

Flow:
1. Resolve profile from settings
2. Build credential sets from the CredentialStore (env keys + upserts)
3. Run GenerationClient over one shared httpx.AsyncClient
4. Success -> dict with content, provider, model, usage
5. Exhaustion -> ExhaustionError carrying the GenerationFailure
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
import mlflow
import tiktoken

from backend.vault.config import Settings, get_settings
from backend.vault.core.errors import ExhaustionError
from backend.vault.core.prompts import Prompts
from backend.vault.models.generation import (
    CredentialSet,
    GenerationFailure,
    GenerationRequest,
    OverrideCredential,
    Provider,
)
from backend.vault.services.credentials import CredentialStore, get_credential_store
from backend.vault.services.generation_client import GenerationClient
from backend.vault.services.providers import build_adapters
from backend.vault.utils import prometheus_metrics as metrics

logger = logging.getLogger(__name__)


class GenerationKind(str, Enum):
    INTERVIEW_QUESTIONS = "interview_questions"
    PROJECTS = "projects"


@dataclass(frozen=True)
class GenerationProfile:
    provider_priority: List[Provider]
    temperature: float
    max_tokens: int
    attempt_timeout: float
    deadline: Optional[float] = None

    @classmethod
    def for_kind(cls, kind: GenerationKind, settings: Settings) -> "GenerationProfile":
        prefix = "interview" if kind is GenerationKind.INTERVIEW_QUESTIONS else "projects"
        return cls(
            provider_priority=list(getattr(settings, f"{prefix}_provider_priority")),
            temperature=getattr(settings, f"{prefix}_temperature"),
            max_tokens=getattr(settings, f"{prefix}_max_tokens"),
            attempt_timeout=getattr(settings, f"{prefix}_attempt_timeout_seconds"),
            deadline=getattr(settings, f"{prefix}_deadline_seconds"),
        )


class GenerationService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[CredentialStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or get_credential_store()
        self.transport = transport
        self._encoding = None

        if self.settings.mlflow_enabled:
            mlflow.set_tracking_uri(self.settings.mlflow_tracking_uri)
            mlflow.set_experiment(self.settings.experiment_name)

    def count_tokens(self, text: str) -> int:
        """
        Estimate token count for usage tracking.
        Note: cl100k approximation for every provider.
        """
        try:
            if self._encoding is None:
                self._encoding = tiktoken.get_encoding("cl100k_base")
            return len(self._encoding.encode(text))
        except Exception as e:
            logger.warning(f"Token counting failed: {e}. Using word estimate.")
            return int(len(text.split()) * 1.3)

    def credential_sets(self) -> Dict[Provider, CredentialSet]:
        return {
            provider: self.store.credential_set(
                provider,
                models=self.settings.huggingface_models if provider is Provider.HUGGINGFACE else None,
            )
            for provider in Provider
        }

    async def generate(
        self,
        kind: GenerationKind,
        prompt: str,
        override: Optional[OverrideCredential] = None,
    ) -> Dict[str, Any]:
        """
        Run the fallback chain for one profile.

        Returns:
            Dict with:
            - content: Generated text
            - provider / model / masked_credential: who produced it
            - attempts: ordered attempt log (masked)
            - usage: Estimated token counts
            - execution_time_ms: Wall time for the whole chain

        Raises:
            ConfigurationError: no keys for any provider in the profile
            ExhaustionError: every combination failed
        """
        profile = GenerationProfile.for_kind(kind, self.settings)
        request = GenerationRequest(
            prompt=prompt,
            provider_priority=profile.provider_priority,
            override=override,
        )

        start_time = time.time()
        async with httpx.AsyncClient(transport=self.transport) as http:
            client = GenerationClient(
                adapters=build_adapters(
                    temperature=profile.temperature,
                    max_tokens=profile.max_tokens,
                    http_client=http,
                    settings=self.settings,
                ),
                credential_sets=self.credential_sets(),
                attempt_timeout=profile.attempt_timeout,
                deadline=profile.deadline,
            )
            outcome = await client.generate(request)
        duration = time.time() - start_time

        if isinstance(outcome, GenerationFailure):
            self._log_run(kind, {"provider": "none", "attempts": len(outcome.attempts)}, {"duration_seconds": duration})
            raise ExhaustionError(outcome)

        input_tokens = self.count_tokens(prompt)
        output_tokens = self.count_tokens(outcome.text)
        metrics.record_llm_usage(kind.value, input_tokens, output_tokens)

        self._log_run(
            kind,
            {
                "provider": outcome.provider.value,
                "model": outcome.model,
                "attempts": len(outcome.attempts),
                "override_used": outcome.override_used,
            },
            {
                "duration_seconds": duration,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
            },
        )

        return {
            "content": outcome.text,
            "provider": outcome.provider.value,
            "model": outcome.model,
            "masked_credential": outcome.masked_credential,
            "attempts": [a.model_dump(mode="json") for a in outcome.attempts],
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "total_tokens": input_tokens + output_tokens,
            },
            "execution_time_ms": int(duration * 1000),
        }

    async def generate_interview_questions(
        self,
        resume_text: str,
        job_description: str,
        company_name: Optional[str] = None,
        job_title: Optional[str] = None,
        override: Optional[OverrideCredential] = None,
    ) -> Dict[str, Any]:
        logger.info(f"Generating interview questions for: {company_name} - {job_title}")
        prompt = Prompts.interview_questions(resume_text, job_description, company_name, job_title)
        return await self.generate(GenerationKind.INTERVIEW_QUESTIONS, prompt, override)

    async def generate_project_suggestions(
        self,
        job_description: str,
        company_name: Optional[str] = None,
        job_title: Optional[str] = None,
        override: Optional[OverrideCredential] = None,
    ) -> Dict[str, Any]:
        logger.info(f"Generating project suggestions for: {company_name} - {job_title}")
        prompt = Prompts.project_suggestions(job_description, company_name, job_title)
        return await self.generate(GenerationKind.PROJECTS, prompt, override)

    def _log_run(self, kind: GenerationKind, params: Dict[str, Any], run_metrics: Dict[str, float]) -> None:
        if not self.settings.mlflow_enabled:
            return
        with mlflow.start_run(nested=True, run_name=f"generation_{kind.value}"):
            mlflow.log_params(params)
            mlflow.log_metrics(run_metrics)


_service: Optional[GenerationService] = None


def get_generation_service() -> GenerationService:
    """Shared GenerationService; MLflow is set up once per process."""
    global _service
    if _service is None:
        _service = GenerationService()
    return _service
