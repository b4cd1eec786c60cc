import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.vault.config import Settings, get_settings
from backend.vault.api.routes.health import router as health_router
from backend.vault.api.routes.generation import router as generation_router
from backend.vault.api.routes.credentials import router as credentials_router
from backend.vault.api.routes.jobs import router as jobs_router
from backend.vault.utils.rate_limiter import rate_limit_middleware


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="Interview Vault API", version="0.1.0")
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(rate_limit_middleware)

    app.include_router(health_router)
    app.include_router(generation_router)
    app.include_router(credentials_router)
    app.include_router(jobs_router)
    return app

app = create_app()
