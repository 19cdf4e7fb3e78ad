"""
Application settings module.

Manages all configuration via environment variables using pydantic-settings.
"""

import os
import socket
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PostgresSettings(BaseSettings):
    """PostgreSQL connection settings."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="PG_", extra="ignore")

    host: str = "localhost"
    port: int = 5432
    user: str = "admin"
    password: str = "1234"
    database: str = "homeswap_dev"
    pool_max: int = 10

    @property
    def dsn(self) -> str:
        """Generate PostgreSQL DSN."""
        return (
            f"postgresql://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="REDIS_", extra="ignore")

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str = ""

    @property
    def url(self) -> str:
        """Generate Redis URL."""
        if self.password:
            return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class MatchingSettings(BaseSettings):
    """Matching engine settings."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="MATCHING_", extra="ignore")

    enabled: bool = True  # MATCHING_ENABLED=false stops every job
    instance_id: str = ""

    # Worker phase
    worker_concurrency: int = 4
    lock_ttl_seconds: int = 660          # Lease on a claimed seeker (11 min)
    max_attempts: int = 5
    retry_delays_seconds: list[int] = Field(default_factory=lambda: [30, 120, 600, 1800, 3600])
    poll_interval_seconds: float = 1.0

    # Enqueue phase
    sweep_limit: int = 200
    enqueue_interval_minutes: int = 5

    # Algorithm
    candidate_limit: int = 200
    sweep_batch_size: int = 100
    triangle_enabled: bool = True
    max_triangles_per_seeker: int = 50
    max_triangle_attempts: int = 200
    date_tolerance_ratio: float = 0.0
    min_tolerance_days: int = 0
    transaction_timeout_seconds: float = 10.0

    # Maintenance
    maintenance_step_timeout_seconds: float = 15.0
    archive_after_days: int = 180
    failed_retention_hours: int = 24

    # Refunds
    refund_cooldown_days: int = 14

    # Debug / tracing
    debug: bool = False
    trace_user_a: int | None = None
    trace_user_b: int | None = None

    @field_validator("instance_id", mode="after")
    @classmethod
    def default_instance_id(cls, v: str) -> str:
        """Fall back to hostname-pid when no instance id is configured."""
        return v or f"{socket.gethostname()}-{os.getpid()}"

    def retry_delay_seconds(self, attempt: int) -> int:
        """
        Get retry delay for a given attempt number (0-indexed).

        Attempts beyond the configured list reuse the last delay.
        """
        delays = self.retry_delays_seconds
        if attempt >= len(delays):
            return delays[-1]
        return delays[attempt]


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
