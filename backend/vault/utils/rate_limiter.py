"""
Fixed-window rate limiting for /api/* routes, per client IP and, when the
caller sends one, per X-User-Id. Counters live in Redis.
"""
from __future__ import annotations

import logging
import os

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from backend.vault.config import Settings, get_settings
from backend.vault.services.cache_service import CacheService

logger = logging.getLogger(__name__)

RATE_LIMITED_PREFIX = "/api/"


def get_rate_limit_cache(settings: Settings) -> CacheService:
    return CacheService(settings.redis_url)


def _limited(error: str, retry_after: int) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": error, "requiresKey": False},
        headers={"Retry-After": str(retry_after)},
    )


def _bypassed(settings: Settings, path: str) -> bool:
    if not settings.rate_limit_enabled or not path.startswith(RATE_LIMITED_PREFIX):
        return True
    return settings.rate_limit_skip_in_tests and bool(os.getenv("PYTEST_CURRENT_TEST"))


async def rate_limit_middleware(request: Request, call_next) -> Response:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    if _bypassed(settings, request.url.path):
        return await call_next(request)

    cache = get_rate_limit_cache(settings)

    ip_address = request.client.host if request.client else "unknown"
    allowed, retry_after = cache.hit(
        f"ratelimit:ip:{ip_address}",
        settings.rate_limit_ip_per_hour,
        settings.rate_limit_window_seconds,
    )
    if not allowed:
        logger.warning(f"Rate limit exceeded for {ip_address}")
        return _limited("Rate limit exceeded", retry_after)

    user_id = request.headers.get("X-User-Id")
    if user_id:
        allowed, retry_after = cache.hit(
            f"ratelimit:user:{user_id}",
            settings.rate_limit_user_per_hour,
            settings.rate_limit_window_seconds,
        )
        if not allowed:
            logger.warning(f"User rate limit exceeded for {user_id}")
            return _limited("User rate limit exceeded", retry_after)

    return await call_next(request)
