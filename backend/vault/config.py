"""
Store env variables and other config settings.
"""
from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, SecretStr

from backend.vault.models.generation import Provider


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars to prevent crashes
    )

    # Infrastructure
    redis_url: str = "redis://localhost:6379"
    cache_ttl_seconds: int = int(24 * 3600)
    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]

    # Provider credentials
    # Each value is either a single key or a JSON array of keys to rotate through.
    perplexity_api_key: SecretStr | None = Field(default=None, description="Primary provider")
    gemini_api_key: SecretStr | None = Field(default=None, description="Second-tier fallback")
    huggingface_api_key: SecretStr | None = Field(default=None, description="Free-tier fallback")
    groq_api_key: SecretStr | None = Field(default=None, description="Fallback for interview questions")

    perplexity_model: str = "sonar"
    gemini_model: str = "gemini-2.0-flash-lite"
    huggingface_models: List[str] = [
        "Qwen/Qwen2.5-72B-Instruct",
        "meta-llama/Llama-3.1-70B-Instruct",
    ]
    groq_model: str = "llama-3.3-70b-versatile"

    # Replies of this many characters or fewer are treated as degenerate.
    min_response_chars: int = 100

    # Interview questions
    interview_provider_priority: List[Provider] = [Provider.PERPLEXITY, Provider.GROQ]
    interview_temperature: float = 0.7
    interview_max_tokens: int = 12000
    interview_attempt_timeout_seconds: float = 120.0
    interview_deadline_seconds: Optional[float] = 150.0

    # Project suggestions
    projects_provider_priority: List[Provider] = [
        Provider.PERPLEXITY,
        Provider.GEMINI,
        Provider.HUGGINGFACE,
    ]
    projects_temperature: float = 0.9
    projects_max_tokens: int = 2048
    projects_attempt_timeout_seconds: float = 60.0
    projects_deadline_seconds: Optional[float] = None

    # Background jobs (/api/generation-jobs)
    job_time_limit_seconds: int = 600

    # Credential persistence (POST /api/update-env)
    persist_credentials: bool = False
    env_file_path: str = ".env"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_ip_per_hour: int = 60
    rate_limit_user_per_hour: int = 30
    rate_limit_window_seconds: int = 3600
    rate_limit_skip_in_tests: bool = True

    # MLflow
    mlflow_enabled: bool = False
    mlflow_tracking_uri: str = "file:./mlruns"
    experiment_name: str = "interview_vault_generation"

    def api_key_for(self, provider: Provider) -> SecretStr | None:
        return getattr(self, f"{provider.value}_api_key")


@lru_cache
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
