"""
Runtime settings for the evidence core.

Every field can be set from the environment (case-insensitive) or a local
.env file. Connection strings are assembled from their parts unless an
explicit URL is given.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, PostgresDsn, RedisDsn, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["development", "staging", "production"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    """Settings for the API, the workers and the maintenance scripts."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Environment = "development"
    log_level: LogLevel = "INFO"
    log_format: Literal["json", "console"] = "console"

    # ---------------------------------------------------------------- storage
    postgres_user: str = "evidence"
    postgres_password: str = "evidence_dev_password"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "evidence_core"
    database_url: PostgresDsn | None = None

    # Content-addressed raw objects live under this directory
    blob_storage_root: str = "./var/raw_objects"
    storage_max_attempts: int = Field(default=3, ge=1, le=10)
    storage_retry_max_wait: float = Field(default=2.0, ge=0.0)

    # Ceiling for the compare-and-increment loop on the revision counter
    revision_write_max_attempts: int = Field(default=5, ge=1, le=20)
    revision_retry_max_wait: float = Field(default=0.5, ge=0.0)

    # ------------------------------------------------------------ task queue
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_url: RedisDsn | None = None
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_task_always_eager: bool = False

    # ------------------------------------------------------------------- http
    cors_origins_str: str = Field(default="http://localhost:3000,http://localhost:8000", alias="cors_origins")

    # ---------------------------------------------------------- consistency
    contradiction_default_threshold: float = Field(default=0.15, ge=0.0)
    contradiction_detector_agent: str = "AGENT_3_CONSISTENCY"

    # ------------------------------------------------------------ screening
    compliance_provider: Literal["http", "mock"] = "mock"
    compliance_api_url: str | None = None
    compliance_api_key: str | None = None
    compliance_timeout: float = Field(default=30.0, gt=0.0)
    compliance_risk_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    # ------------------------------------------------------------- approval
    # Thresholds used when no ApprovalPolicy row exists for a content type
    default_min_citations: int = Field(default=3, ge=0)
    default_min_evidence_coverage: float = Field(default=0.95, ge=0.0, le=1.0)
    default_max_similarity_score: float = Field(default=0.25, ge=0.0, le=1.0)
    default_max_variance_flag: float = Field(default=0.15, ge=0.0)

    @model_validator(mode="after")
    def _http_screening_needs_url(self) -> "Settings":
        if self.compliance_provider == "http" and not self.compliance_api_url:
            raise ValueError("compliance_api_url is required when compliance_provider is 'http'")
        return self

    @property
    def db_url(self) -> str:
        """Async (asyncpg) database URL."""
        if self.database_url is not None:
            return str(self.database_url)
        credentials = f"{self.postgres_user}:{self.postgres_password}"
        return f"postgresql+asyncpg://{credentials}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @property
    def db_url_sync(self) -> str:
        """Same database with the default sync driver, for Alembic."""
        return self.db_url.replace("+asyncpg", "", 1)

    @property
    def redis_dsn(self) -> str:
        return str(self.redis_url) if self.redis_url else f"redis://{self.redis_host}:{self.redis_port}/0"

    @property
    def celery_broker(self) -> str:
        return self.celery_broker_url or self.redis_dsn

    @property
    def celery_backend(self) -> str:
        return self.celery_result_backend or self.redis_dsn

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Settings are read once per process."""
    return Settings()


settings = get_settings()
