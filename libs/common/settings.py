"""Application settings for the legal knowledge-base retrieval core."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings read from ``LEGALRAG_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LEGALRAG_",
        env_file=None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core application settings
    app_env: Literal["development", "staging", "production", "test"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Knowledge base API
    kb_api_url: str = "http://localhost:4000"
    kb_api_key: str = ""
    kb_enabled: bool = True
    kb_timeout_seconds: float = Field(default=10.0, gt=0)
    kb_service_token_ttl_seconds: int = Field(default=300, ge=30)

    # Retrieval and gating
    kb_confidence_threshold: float = 0.18
    kb_top_k: int = Field(default=12, ge=1)
    kb_fast_path_limit: int = Field(default=8, ge=1)
    kb_similarity_threshold: float = 0.20
    kb_max_results: int = Field(default=5, ge=1)
    kb_min_query_length: int = Field(default=3, ge=1)
    kb_cache_ttl_seconds: int = Field(default=60, ge=0)

    # Retry/backoff against the KB API
    kb_retry_attempts: int = Field(default=3, ge=1)
    kb_retry_delay_ms: int = Field(default=1000, ge=0)

    # Structured query generation (SQG)
    sqg_enabled: bool = True
    sqg_model: str = "gpt-4o-mini"
    sqg_cache_ttl_ms: int = Field(default=600_000, ge=0)
    sqg_timeout_seconds: float = Field(default=8.0, gt=0)
    openai_api_key: Optional[str] = None

    # Optional shared cache
    redis_url: Optional[str] = None

    default_jurisdiction: str = "Philippines"

    @field_validator("kb_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalise the KB base URL so paths can be appended directly."""
        return v.strip().rstrip("/")

    @field_validator("kb_confidence_threshold", "kb_similarity_threshold")
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        """Thresholds are compared against scores in [0, 1]."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("Threshold must be between 0.0 and 1.0")
        return v

    @property
    def resolved_openai_api_key(self) -> Optional[str]:
        """OpenAI key from settings, falling back to the plain ``OPENAI_API_KEY``."""
        return self.openai_api_key or os.environ.get("OPENAI_API_KEY")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
