from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from backend.vault.api.routes.generation import error_response, resolve_override
from backend.vault.models.schemas import GenerationJobRequest, GenerationJobStatus
from backend.vault.tasks.generation_tasks import enqueue_generation, load_job

router = APIRouter(prefix="/api/generation-jobs", tags=["generation-jobs"])


# sync handlers: an eager Celery task runs its own event loop
@router.post("", status_code=202)
def create_generation_job(req: GenerationJobRequest):
    if req.kind == "interview_questions" and (not req.resume_text or not req.job_description):
        return error_response(400, "Resume text and job description are required")
    if req.kind == "projects" and not req.job_description:
        return error_response(400, "Job description is required")

    try:
        override = resolve_override(req.api_key, req.api_type)
    except ValueError as e:
        return error_response(400, str(e))

    payload = {
        "kind": req.kind,
        "resume_text": req.resume_text,
        "job_description": req.job_description,
        "company_name": req.company_name,
        "job_title": req.job_title,
    }
    if override is not None:
        payload["override_provider"] = override.provider.value
        payload["override_credential"] = override.credential.get_secret_value()

    request_id = enqueue_generation(payload)
    return JSONResponse(status_code=202, content={"requestId": request_id, "status": "queued"})


@router.get("/{request_id}", response_model=GenerationJobStatus)
def get_generation_job(request_id: str):
    job = load_job(request_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found (expired or invalid request id)")
    return job
