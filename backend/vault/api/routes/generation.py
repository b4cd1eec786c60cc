import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from backend.vault.core.errors import ConfigurationError, ExhaustionError, GenerationError
from backend.vault.models.generation import OverrideCredential, Provider
from backend.vault.models.schemas import (
    InterviewQuestionsRequest,
    InterviewQuestionsResponse,
    ProjectSuggestionsRequest,
    ProjectSuggestionsResponse,
)
from backend.vault.services.generation_service import get_generation_service
from backend.vault.utils.prometheus_metrics import track_request_metrics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generation"])


def error_response(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, **extra})


def resolve_override(api_key: Optional[str], api_type: Optional[str]) -> Optional[OverrideCredential]:
    """
    A user key with no type is a Perplexity key. Raises ValueError for an
    unknown type.
    """
    if not api_key:
        return None
    if not api_type:
        return OverrideCredential(provider=Provider.PERPLEXITY, credential=api_key)
    try:
        provider = Provider(api_type.strip().lower())
    except ValueError:
        raise ValueError(
            f"Unknown apiType '{api_type}'. Expected one of: {', '.join(p.value for p in Provider)}"
        )
    return OverrideCredential(provider=provider, credential=api_key)


def generation_error_response(exc: GenerationError) -> JSONResponse:
    if isinstance(exc, ConfigurationError):
        return error_response(
            401,
            "Generation is not configured",
            message=str(exc),
            hint=exc.hint,
            requiresKey=True,
        )
    if isinstance(exc, ExhaustionError):
        failure = exc.failure
        if failure.requires_key:
            error = "All API keys exhausted. Please provide your own API key."
        else:
            error = "Generation failed with the provided API key."
        return error_response(
            502,
            error,
            message=failure.last_error,
            requiresKey=failure.requires_key,
            overrideUsed=failure.override_used,
            attemptsByProvider=failure.attempts_by_provider,
            deadlineExceeded=failure.deadline_exceeded,
        )
    return error_response(500, "Internal server error", message=str(exc), requiresKey=False)


@router.post("/generate-interview-questions", response_model=InterviewQuestionsResponse)
@track_request_metrics("generate_interview_questions")
async def generate_interview_questions(req: InterviewQuestionsRequest):
    if not req.resume_text or not req.job_description:
        return error_response(400, "Resume text and job description are required")

    try:
        override = resolve_override(req.api_key, req.api_type)
    except ValueError as e:
        return error_response(400, str(e))

    service = get_generation_service()
    try:
        out = await service.generate_interview_questions(
            req.resume_text,
            req.job_description,
            req.company_name,
            req.job_title,
            override=override,
        )
    except GenerationError as e:
        return generation_error_response(e)
    except Exception as e:
        logger.exception("Unexpected error in generate-interview-questions")
        return error_response(500, "Internal server error", message=str(e), requiresKey=False)

    return InterviewQuestionsResponse(
        questions=out["content"],
        provider=out["provider"],
        model=out["model"],
        executionTime=out["execution_time_ms"],
    )


@router.post("/generate-projects", response_model=ProjectSuggestionsResponse)
@track_request_metrics("generate_projects")
async def generate_projects(req: ProjectSuggestionsRequest):
    if not req.job_description:
        return error_response(400, "Job description is required")

    try:
        override = resolve_override(req.api_key, req.api_type)
    except ValueError as e:
        return error_response(400, str(e))

    service = get_generation_service()
    try:
        out = await service.generate_project_suggestions(
            req.job_description,
            req.company_name,
            req.job_title,
            override=override,
        )
    except GenerationError as e:
        return generation_error_response(e)
    except Exception as e:
        logger.exception("Unexpected error in generate-projects")
        return error_response(500, "Internal server error", message=str(e), requiresKey=False)

    return ProjectSuggestionsResponse(
        suggestions=out["content"],
        provider=out["provider"],
        model=out["model"],
        executionTime=out["execution_time_ms"],
    )
