"""
Application Configuration
Loads settings from environment variables.
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "Settlement Pipeline API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database - SQLite for local dev, PostgreSQL for production
    DATABASE_URL: str = "sqlite:///./settlement.db"

    # Redis (RQ queues, optional idempotency backend)
    REDIS_URL: str = "redis://localhost:6379"

    # Webhook shared secrets (empty secret rejects every delivery)
    GENERATION_WEBHOOK_SECRET: str = ""
    PAYMENT_WEBHOOK_SECRET: str = ""

    # Operator override endpoints
    ADMIN_API_TOKEN: str = ""

    # Generation provider client
    GENERATION_API_URL: str = "https://api.magichour.ai/v1"
    GENERATION_API_KEY: str = ""
    GENERATION_API_TIMEOUT: float = 30.0

    # Asset fetch-and-persist
    ASSET_MAX_BYTES: int = 25 * 1024 * 1024
    ASSET_FETCH_TIMEOUT_SECONDS: float = 30.0
    ASSET_NAMESPACE: str = "assets/generated"
    VERIFY_UPLOADS: bool = False
    PERSIST_MAX_ATTEMPTS: int = 5
    PERSIST_BACKOFF_BASE_SECONDS: float = 1.0
    PERSIST_BACKOFF_MULTIPLIER: float = 2.0
    PERSIST_BACKOFF_MAX_SECONDS: float = 30.0

    # Worker settings
    PERSIST_WORKER_COUNT: int = 4
    JOB_TIMEOUT_PERSIST: int = 600
    STALLED_JOB_MINUTES: int = 15

    # Idempotency: "sql" (same transaction as the state change) or "redis"
    IDEMPOTENCY_BACKEND: str = "sql"
    IDEMPOTENCY_RETENTION_DAYS: int = 30

    # Optimistic-lock conflicts retried per delivery
    DISPATCH_CONFLICT_RETRIES: int = 3

    # Storage - S3 settings (optional)
    S3_BUCKET: str = ""
    S3_ENDPOINT: str = ""
    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_REGION: str = "us-east-1"

    # Local storage fallback
    LOCAL_STORAGE_PATH: str = "./uploads"
    USE_LOCAL_STORAGE: bool = True

    # Google Cloud Storage
    USE_GCS: bool = False
    GCS_BUCKET_OUTPUTS: str = "settlement-assets"
    GCP_PROJECT_ID: str = ""

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator(
        'GENERATION_WEBHOOK_SECRET', 'PAYMENT_WEBHOOK_SECRET',
        'ADMIN_API_TOKEN', 'GENERATION_API_KEY',
        mode='before'
    )
    @classmethod
    def strip_secrets(cls, v):
        """Strip whitespace and newlines from secrets loaded from files."""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('IDEMPOTENCY_BACKEND')
    @classmethod
    def check_idempotency_backend(cls, v):
        if v not in ("sql", "redis"):
            raise ValueError("IDEMPOTENCY_BACKEND must be 'sql' or 'redis'")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
