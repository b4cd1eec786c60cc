import os

from celery import Celery

from backend.vault.config import settings

celery_app = Celery(
    "interview_vault",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.imports = ("backend.vault.tasks.generation_tasks",)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    enable_utc=True,
    result_expires=settings.cache_ttl_seconds,
    # a generation holds a worker for the whole fallback chain
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_soft_time_limit=settings.job_time_limit_seconds,
    task_time_limit=settings.job_time_limit_seconds + 30,
    task_always_eager=bool(os.getenv("PYTEST_CURRENT_TEST")),
)
