import logging

from fastapi import APIRouter

from backend.vault.api.routes.generation import error_response
from backend.vault.models.schemas import UpdateEnvRequest
from backend.vault.services.credentials import PROVIDER_BY_ENV_KEY, get_credential_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["credentials"])


@router.post("/update-env")
async def update_env(req: UpdateEnvRequest):
    """Store a provider key so later generations can use it."""
    if not req.key or not req.value:
        return error_response(400, "Key and value are required")

    provider = PROVIDER_BY_ENV_KEY.get(req.key.strip().upper())
    if provider is None:
        return error_response(
            400,
            f"Unsupported key. Expected one of: {', '.join(sorted(PROVIDER_BY_ENV_KEY))}",
        )

    try:
        get_credential_store().upsert(provider, req.value.strip())
    except OSError:
        logger.exception("Failed to persist %s", req.key)
        return error_response(500, "Failed to update environment variable")

    return {"success": True, "message": "Environment variable updated"}
