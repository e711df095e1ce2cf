"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (or a .env file in dev).
This is the single source of truth for configuration - the cache store
endpoint, TTL and key ceiling are never hardcoded elsewhere.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = Field(
        default="INFO",
        description="Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=False,
        description="Render logs as JSON instead of the dev console format",
    )

    # ------------------------------------------------------------------ #
    # Cache store
    # ------------------------------------------------------------------ #
    redis_url: str = Field(
        default="",
        description="Redis connection URL for the response cache. Empty = in-memory store.",
    )
    redis_password: SecretStr | None = Field(
        default=None,
        description="Redis password / access token, if not embedded in REDIS_URL",
    )

    # ------------------------------------------------------------------ #
    # Response cache
    # ------------------------------------------------------------------ #
    cache_namespace: str = Field(
        default="llmcache",
        min_length=1,
        description="Key prefix for every cached model response",
    )
    cache_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Expiry applied by the store to every cached response",
    )
    cache_max_key_bytes: int = Field(
        default=32768,
        ge=1,
        description="Requests whose canonical form exceeds this size are not cached",
    )
    cache_replay_initial_delay_ms: int = Field(
        default=0,
        ge=0,
        description="Delay before the first part of a replayed stream",
    )
    cache_replay_chunk_delay_ms: int = Field(
        default=10,
        ge=0,
        description="Delay between parts of a replayed stream",
    )

    # ------------------------------------------------------------------ #
    # LiteLLM Proxy
    # ------------------------------------------------------------------ #
    litellm_base_url: str = Field(
        default="http://localhost:4000",
        description="LiteLLM proxy base URL",
    )
    litellm_api_key: SecretStr = Field(
        default=SecretStr("sk-dev-key"),
        description="API key for LiteLLM proxy",
    )
    litellm_default_model: str = Field(
        default="openai/gpt-4o-mini",
        description="Default LLM model identifier (LiteLLM format)",
    )

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @model_validator(mode="after")
    def _validate_production(self) -> Settings:
        """Refuse to start in production with a dev key or a process-local cache."""
        if self.environment != Environment.PROD:
            return self

        errors: list[str] = []

        if self.litellm_api_key.get_secret_value() in ("", "sk-dev-key"):
            errors.append(
                "LITELLM_API_KEY contains an insecure default value. "
                "Set a real API key for production."
            )

        if not self.redis_url:
            errors.append(
                "REDIS_URL must be set in production. The in-memory cache "
                "is not shared between processes."
            )

        if errors:
            raise ValueError(
                "production configuration rejected:\n"
                + "\n".join(f"  - {e}" for e in errors)
            )

        return self

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton.

    Call directly in non-request contexts (startup, scripts) or pass the
    result explicitly into the cache middleware factory.
    """
    return Settings()
