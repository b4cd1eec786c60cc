import asyncio
import logging
import time
import uuid
from typing import Any, Dict, Optional

from backend.vault.celery_app import celery_app
from backend.vault.config import settings
from backend.vault.core.errors import ConfigurationError, ExhaustionError
from backend.vault.models.generation import OverrideCredential
from backend.vault.services.cache_service import CacheService
from backend.vault.services.generation_service import (
    GenerationKind,
    GenerationService,
    get_generation_service,
)

logger = logging.getLogger(__name__)

STATUS_KEY_PREFIX = "generation:status:"
RESULT_KEY_PREFIX = "generation:result:"
OVERRIDE_KEY_PREFIX = "generation:override:"


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def get_cache() -> CacheService:
    return CacheService(settings.redis_url)


def _set_status(cache: CacheService, request_id: str, status: str, detail: Optional[str] = None) -> None:
    payload = {
        "request_id": request_id,
        "status": status,
        "detail": detail,
        "updated_at": _now_iso(),
    }
    cache.set_json(
        f"{STATUS_KEY_PREFIX}{request_id}",
        payload,
        ttl_seconds=settings.cache_ttl_seconds,
    )


def _set_result(cache: CacheService, request_id: str, result: Dict[str, Any]) -> None:
    cache.set_json(
        f"{RESULT_KEY_PREFIX}{request_id}",
        result,
        ttl_seconds=settings.cache_ttl_seconds,
    )


def _take_override(cache: CacheService, payload: Dict[str, Any]) -> Optional[OverrideCredential]:
    """The user key is read once and removed; it never travels in the task message."""
    provider = payload.get("override_provider")
    if not provider:
        return None
    credential = cache.pop_json(f"{OVERRIDE_KEY_PREFIX}{payload['request_id']}")
    if not credential:
        raise ConfigurationError("The API key for this job has expired. Please submit it again.")
    return OverrideCredential(provider=provider, credential=credential)


async def _run_generation(
    payload: Dict[str, Any],
    service: GenerationService,
    override: Optional[OverrideCredential] = None,
) -> Dict[str, Any]:
    kind = GenerationKind(payload["kind"])
    if kind is GenerationKind.INTERVIEW_QUESTIONS:
        out = await service.generate_interview_questions(
            payload["resume_text"],
            payload["job_description"],
            payload.get("company_name"),
            payload.get("job_title"),
            override=override,
        )
    else:
        out = await service.generate_project_suggestions(
            payload["job_description"],
            payload.get("company_name"),
            payload.get("job_title"),
            override=override,
        )

    return {
        "kind": kind.value,
        "content": out["content"],
        "provider": out["provider"],
        "model": out["model"],
        "executionTime": out["execution_time_ms"],
    }


async def process_generation_async(
    payload: Dict[str, Any],
    cache: Optional[CacheService] = None,
    service: Optional[GenerationService] = None,
) -> None:
    cache = cache or get_cache()
    service = service or get_generation_service()
    request_id = payload.get("request_id", "unknown")

    _set_status(cache, request_id, "processing")

    try:
        override = _take_override(cache, payload)
        result = await _run_generation(payload, service, override)
    except ConfigurationError as exc:
        logger.warning(f"Generation {request_id} not configured: {exc}")
        _set_result(cache, request_id, {"error": str(exc), "hint": exc.hint, "requiresKey": True})
        _set_status(cache, request_id, "failed", detail=str(exc))
        return
    except ExhaustionError as exc:
        failure = exc.failure
        logger.warning(f"Generation {request_id} exhausted all providers")
        _set_result(cache, request_id, {
            "error": str(exc),
            "requiresKey": failure.requires_key,
            "attemptsByProvider": failure.attempts_by_provider,
            "deadlineExceeded": failure.deadline_exceeded,
        })
        _set_status(cache, request_id, "failed", detail=failure.last_error)
        return
    except Exception as exc:
        logger.exception("Failed to process generation %s", request_id)
        _set_status(cache, request_id, "failed", detail=str(exc))
        raise

    _set_result(cache, request_id, result)
    _set_status(cache, request_id, "completed")


@celery_app.task(name="generation.run")
def run_generation(payload: Dict[str, Any]) -> None:
    asyncio.run(process_generation_async(payload))


def enqueue_generation(payload: Dict[str, Any], cache: Optional[CacheService] = None) -> str:
    """Record the job as queued and hand it to the worker. Returns the request id."""
    cache = cache or get_cache()
    request_id = uuid.uuid4().hex
    payload = {**payload, "request_id": request_id}
    credential = payload.pop("override_credential", None)
    if credential:
        cache.set_json(
            f"{OVERRIDE_KEY_PREFIX}{request_id}",
            credential,
            ttl_seconds=settings.job_time_limit_seconds,
        )

    _set_status(cache, request_id, "queued")
    run_generation.delay(payload)
    return request_id


def load_job(request_id: str, cache: Optional[CacheService] = None) -> Optional[Dict[str, Any]]:
    cache = cache or get_cache()
    status = cache.get_json(f"{STATUS_KEY_PREFIX}{request_id}")
    if status is None:
        return None
    return {
        "requestId": request_id,
        "status": status.get("status"),
        "detail": status.get("detail"),
        "updatedAt": status.get("updated_at"),
        "result": cache.get_json(f"{RESULT_KEY_PREFIX}{request_id}"),
    }
