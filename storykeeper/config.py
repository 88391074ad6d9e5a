# storykeeper/config.py
"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate all environment variables at startup.
Retry bounds, timeouts and pool sizes for the archive pipeline live here rather
than in the services so operators can tune them per deployment.
"""

from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = Field(
        default="sqlite:///./storykeeper.db",
        description="SQLAlchemy URL for the live comment store and story state",
    )

    # Cold storage
    COLD_STORAGE_PROVIDER: str = Field(
        default="database",
        description="Cold tier storage provider: database, s3, local",
    )
    LOCAL_STORAGE_PATH: str = Field(
        default="./storage",
        description="Path for local storage provider",
    )
    S3_BUCKET: str | None = None
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str = "us-east-1"

    # Archive worker
    ARCHIVE_RETRY_MAX_ATTEMPTS: int = Field(
        default=3,
        ge=1,
        description="Attempts per store call before the move is reported as failed",
    )
    ARCHIVE_RETRY_MIN_WAIT: float = Field(
        default=1.0,
        ge=0,
        description="First backoff delay in seconds (doubles per attempt)",
    )
    ARCHIVE_RETRY_MAX_WAIT: float = Field(
        default=30.0,
        ge=0,
        description="Upper bound for a single backoff delay in seconds",
    )
    ARCHIVE_TIMEOUT_SECONDS: float = Field(
        default=600.0,
        gt=0,
        description="Deadline for one bulk move (archive or unarchive) of a story",
    )
    ARCHIVE_BATCH_SIZE: int = Field(
        default=500,
        ge=1,
        description="Comments copied per upsert call",
    )
    ARCHIVE_WORKER_POOL_SIZE: int = Field(
        default=4,
        ge=1,
        description="Threads used for background archive/unarchive moves",
    )
    ARCHIVE_BATCH_PARALLELISM: int = Field(
        default=1,
        ge=1,
        description="Stories processed concurrently by archive_stories/unarchive_stories (1 = sequential)",
    )

    # State machine
    LIFECYCLE_CAS_MAX_ATTEMPTS: int = Field(
        default=5,
        ge=1,
        description="Compare-and-swap attempts before a transition surfaces as a concurrent modification",
    )

    # Comment trees
    TREE_CACHE_TTL_SECONDS: int = Field(
        default=3600,
        ge=1,
        description="TTL for the in-process tree cache",
    )
    TREE_CACHE_MAX_STORIES: int = Field(
        default=500,
        ge=1,
        description="Maximum number of story trees held by the in-process cache",
    )

    # Application
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )
    LOG_JSON: bool = Field(
        default=True,
        description="Emit single-line JSON logs (disable for local development)",
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level",
    )

    @field_validator("COLD_STORAGE_PROVIDER")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("database", "s3", "local"):
            raise ValueError(f"Unknown cold storage provider: {v}. Available: database, s3, local")
        return v

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_database_url(cls, v: str) -> str:
        """Hosted Postgres hands out postgresql:// but SQLAlchemy needs postgresql+psycopg2://"""
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        return v

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> "Settings":
        if self.ARCHIVE_RETRY_MAX_WAIT < self.ARCHIVE_RETRY_MIN_WAIT:
            raise ValueError("ARCHIVE_RETRY_MAX_WAIT must be >= ARCHIVE_RETRY_MIN_WAIT")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings. Call at startup to validate config."""
    return Settings()
