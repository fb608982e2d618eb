"""Typed settings configuration - single source of truth."""

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Generative backend
    llm_provider: Literal["auto", "gemini", "openai", "stub"] = "auto"
    gemini_api_key: SecretStr | None = None
    gemini_model: str = "gemini-1.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    openai_api_key: SecretStr | None = None
    openai_model: str = "gpt-4o-mini"

    # Timeouts (seconds) per model call
    llm_timeout_seconds: float = 45.0

    # Single-shot conversion retries (exponential backoff, doubling)
    single_shot_max_retries: int = 2
    retry_backoff_base_seconds: float = 1.0

    # Conversion routing
    single_shot_max_chars: int = 6000
    max_weeks: int = 12

    # Action fallback
    fallback_text_chars: int = 200

    # Item lifecycle grace periods (seconds)
    suggested_grace_seconds: float = 3.0
    removal_grace_seconds: float = 1.0

    # Session persistence
    session_backend: Literal["memory", "redis"] = "memory"
    redis_url: str | None = None
    session_ttl_seconds: int = 7 * 24 * 3600


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
