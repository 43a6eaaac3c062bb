"""Application configuration — loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from context_budget.domain.entities import CompressionTechnique


class Settings(BaseSettings):
    """Central configuration loaded from env vars (or ``.env`` file)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # AI summarisation is disabled when no key is configured
    openai_api_key: SecretStr | None = None
    openai_model: str = "gpt-4o-mini"

    default_provider: str = "openai"
    default_model: str = "gpt-4o"
    provider_budgets_file: str | None = None
    max_utilization_percentage: float = Field(default=90.0, gt=0, le=100)

    chunk_document_threshold: int = Field(default=10, ge=0)
    summarize_share: float = Field(default=0.3, gt=0, le=1)
    fragment_share: float = Field(default=0.1, gt=0, le=1)
    compression_technique: CompressionTechnique = CompressionTechnique.HYBRID
    compression_slack: float = Field(default=1.1, ge=1)
    ai_concurrency: int = Field(default=4, ge=1)
    ai_call_timeout_seconds: float = Field(default=20.0, gt=0)
    run_timeout_seconds: float = Field(default=60.0, gt=0)
    token_estimator: Literal["chars", "tiktoken"] = "chars"

    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton application settings (cached after first call)."""
    return Settings()
