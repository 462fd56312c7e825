"""Application settings for the Visibility Tracker engine."""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from libs.resilience.circuit_breaker import CircuitBreaker
    from libs.resilience.retry import RetryPolicy


class Settings(BaseSettings):
    """Engine settings, read from ``VISIBILITY_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VISIBILITY_",
        env_file=None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core application settings
    app_env: Literal["development", "test", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # CORS - use string to avoid JSON parsing issues
    cors_origins_str: str = Field(default="http://localhost:3000", alias="cors_origins")

    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from string."""
        if not self.cors_origins_str.strip():
            return ["http://localhost:3000"]
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    # External text generation service
    openai_api_key: str | None = None
    openai_model: str = "gpt-4"
    openai_max_tokens: int = 1000
    openai_temperature: float = 0.7

    # Per-query retry policy
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    retry_max_delay_ms: int = Field(default=10000, ge=0)
    retry_timeout_ms: int = Field(default=30000, gt=0)

    # Circuit breaker guarding the external query dependency
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_reset_timeout_ms: int = Field(default=60000, ge=0)

    # Batch execution
    default_prompt_count: int = Field(default=5, ge=1)
    max_prompt_count: int = Field(default=20, ge=1)
    concurrency_limit: int = Field(default=1, ge=1)
    rate_limit_delay_ms: int = Field(default=300, ge=0)
    execute_phase_end: int = Field(default=80, ge=31, le=90)

    # Remote queue backend (Redis)
    redis_enabled: bool = True
    redis_host: str = "127.0.0.1"
    redis_port: int = Field(default=6379, ge=1, le=65535)
    redis_db: int = 0
    redis_connection_timeout_ms: int = Field(default=5000, gt=0)

    # Queue job policy
    queue_name: str = "visibility-tracking"
    queue_max_attempts: int = Field(default=3, ge=1)
    queue_backoff_delay_ms: int = Field(default=2000, ge=0)
    queue_remove_on_complete: bool = False
    queue_remove_on_fail: bool = False
    queue_job_ttl_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    worker_concurrency: int = Field(default=1, ge=1)
    worker_poll_interval_ms: int = Field(default=250, gt=0)

    # Payload validation
    max_brands_per_tracking: int = 10
    max_competitors_per_tracking: int = 5
    min_category_length: int = 2
    max_category_length: int = 100

    # Historical data
    history_retention_days: int = Field(default=90, ge=1)

    @field_validator("retry_max_delay_ms")
    @classmethod
    def max_delay_not_below_base(cls, v: int, info) -> int:
        """Ensure the backoff ceiling is not lower than the base delay."""
        base = info.data.get("retry_base_delay_ms")
        if base is not None and v < base:
            raise ValueError("retry_max_delay_ms must be >= retry_base_delay_ms")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    def retry_policy(self) -> "RetryPolicy":
        """Build the per-query retry policy from settings."""
        from libs.resilience.retry import RetryPolicy

        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay_ms / 1000,
            max_delay=self.retry_max_delay_ms / 1000,
            per_attempt_timeout=self.retry_timeout_ms / 1000,
        )

    def circuit_breaker(self, name: str = "external-query") -> "CircuitBreaker":
        """Build a circuit breaker for one protected dependency."""
        from libs.resilience.circuit_breaker import CircuitBreaker

        return CircuitBreaker(
            name=name,
            failure_threshold=self.circuit_failure_threshold,
            reset_timeout=self.circuit_reset_timeout_ms / 1000,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
