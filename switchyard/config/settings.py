from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PeriodicSchedule(BaseModel):
    """
    One JOB_PERIODIC_SCHEDULE entry, keyed by schedule name.

    A bare number is shorthand for `{"interval_s": n}`; the job type defaults
    to the schedule name.
    """

    job_type: str | None = None
    interval_s: int = Field(..., ge=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int | None = None
    max_attempts: int | None = Field(default=None, ge=1)
    timeout_ms: int | None = Field(default=None, ge=1)
    tags: list[str] | None = None

    @model_validator(mode="before")
    @classmethod
    def interval_shorthand(cls, value: Any) -> Any:
        if isinstance(value, int):
            return {"interval_s": value}
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Switchyard", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=True, description="Debug mode")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

    # Database (unset selects the in-process job store)
    database_url: str | None = Field(
        default=None,
        description="Database connection URL, e.g. postgresql+asyncpg://...",
    )
    db_pool_size: int = Field(default=10, description="Database connection pool size")
    db_max_overflow: int = Field(default=20, description="Database max overflow connections")
    db_pool_timeout: int = Field(default=30, description="Database pool timeout in seconds")
    db_pool_recycle: int = Field(default=3600, description="Database connection recycle time in seconds")
    db_create_schema: bool = Field(
        default=False, description="Create job tables on startup instead of via alembic"
    )

    # Distributed lock (unset selects the single-process lock backend)
    redis_url: str | None = Field(default=None, description="Redis connection URL")
    lock_key_prefix: str = Field(default="switchyard:lock:", description="Lock key namespace")
    lock_default_ttl_s: int = Field(default=60, ge=1, description="Default lease TTL")

    # Job enqueue defaults
    job_default_max_attempts: int = Field(default=3, ge=1)
    job_default_priority: int = Field(default=0)
    job_default_timeout_ms: int = Field(default=300_000, ge=1)

    # Worker
    job_poll_interval_ms: int = Field(default=1000, ge=1, description="Poll cadence")
    job_concurrency: int = Field(default=5, description="Handlers run concurrently")
    job_batch_size: int = Field(default=10, ge=1, description="Max jobs claimed per tick")
    job_enforce_timeouts: bool = Field(
        default=True, description="Race handlers against their timeout_ms"
    )
    job_timeout_grace_s: float = Field(
        default=5.0, ge=0, description="Time a timed-out handler gets to observe its token"
    )
    job_retry_backoff_base_ms: int = Field(
        default=0, ge=0, description="Retry backoff base; 0 retries on the next tick"
    )
    job_max_backoff_s: int = Field(default=300, ge=0)
    job_cancel_check_interval_ms: int = Field(default=1000, ge=1)
    job_shutdown_timeout_s: float = Field(default=30.0, ge=0)

    # Maintenance
    job_reclaim_interval_s: int = Field(default=60, ge=1)
    job_stuck_after_minutes: int = Field(default=10, ge=1)
    job_startup_reclaim_minutes: int = Field(default=5, ge=1)
    job_cleanup_after_days: int = Field(default=30, ge=0)

    # Periodic jobs by schedule name, e.g.
    # {"fx_rate_update": 3600, "audit_cleanup": {"interval_s": 86400, "payload": {"olderThanDays": 90}}}
    job_periodic_schedule: dict[str, PeriodicSchedule] = Field(default_factory=dict)

    def model_post_init(self, __context) -> None:
        """Validate settings after initialization."""
        if self.job_concurrency < 1:
            raise ValueError("JOB_CONCURRENCY must be at least 1")

        # Jobs must survive restarts in production
        if self.environment == "production" and not self.database_url:
            raise ValueError(
                "DATABASE_URL is required in production environment. "
                "The in-memory job store is for development and tests only."
            )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Return the process-wide settings."""
    return settings
