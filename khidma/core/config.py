"""
Core Configuration Module
Uses pydantic-settings for environment variable management.
All secrets loaded from .env file - NEVER hardcode secrets.
"""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    project_name: str = "Khidma"
    environment: str = Field(default="development", description="development | staging | production")
    debug: bool = Field(default=True, description="Debug mode")
    api_v1_str: str = "/api/v1"
    app_version: str = Field(default="1.0.0", description="Application version")
    default_language: str = Field(default="en", description="en | fr | ar")

    # Database - PostgreSQL
    database_url: str = Field(
        default="postgresql+asyncpg://khidma:khidma_secret@db:5432/khidma",
        description="Full database URL (takes precedence)",
    )
    db_host: str = Field(default="db", description="Database host")
    db_port: int = Field(default=5432, description="Database port")
    db_name: str = Field(default="khidma", description="Database name")
    db_user: str = Field(default="khidma", description="Database user")
    db_password: str = Field(default="khidma_secret", description="Database password")
    db_pool_size: int = Field(default=20, description="SQLAlchemy connection pool size")
    db_max_overflow: int = Field(default=10, description="Max overflow connections")
    db_echo: bool = Field(default=False, description="Echo SQL queries")
    run_db_init: bool = False

    # Redis / Celery
    redis_url: str = Field(default="redis://redis:6379/0", description="Redis connection URL")
    celery_broker_url: str = Field(default="redis://redis:6379/0", description="Celery broker URL")
    celery_result_backend: str = Field(default="redis://redis:6379/0", description="Celery result backend")

    # MinIO - S3 Compatible Storage
    minio_endpoint: str = Field(default="minio:9000", description="MinIO endpoint")
    minio_public_endpoint: str = Field(default="localhost:9000", description="Endpoint used in file URLs")
    minio_access_key: str = Field(default="minioadmin", description="MinIO access key")
    minio_secret_key: str = Field(default="minioadmin", description="MinIO secret key")
    minio_bucket_name: str = Field(default="khidma-uploads", description="Default bucket name")
    minio_secure: bool = Field(default=False, description="Use HTTPS for MinIO")

    # Security
    secret_key: str = Field(default="CHANGE_ME_IN_PRODUCTION", description="JWT secret key")
    algorithm: str = Field(default="HS256", description="JWT Algorithm")

    # Auth lifetimes
    otp_expire_minutes: int = Field(default=10, description="OTP validity window")
    session_expire_hours: int = Field(default=24, description="Session lifetime after login")
    renewed_session_expire_minutes: int = Field(default=30, description="Session lifetime after refresh")
    refresh_token_expire_days: int = Field(default=90, description="Refresh token lifetime")
    min_password_length: int = Field(default=6, description="Minimum password length")

    # Marketplace
    categorizer_group_size: int = Field(default=6, description="Fallback categorizer group size")
    max_worker_categories: int = Field(default=5, description="Fallback max categories per worker")
    platform_fee_percentage: int = Field(default=10, description="Service fee added to bids")
    bid_expire_hours: int = Field(default=24, description="Bid validity")
    bid_priority_window_hours: int = Field(default=2, description="Bid priority window")
    onboarding_reminder_minutes: list[int] = Field(
        default=[5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55, 60],
        description="Delays for start-code reminders sent to the worker",
    )

    # CORS
    cors_origins: str = Field(default="http://localhost:8081", description="Allowed CORS origins")
    backend_cors_origins: str = Field(default="", description="CORS origins as comma-separated string")

    # Sentry (Error Tracking)
    sentry_dsn: str = Field(default="", description="Sentry DSN for error tracking")
    sentry_traces_sample_rate: float = Field(default=0.1, description="Sentry traces sample rate")

    # Prometheus
    prometheus_enabled: bool = Field(default=True, description="Enable Prometheus metrics")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from backend_cors_origins or cors_origins."""
        origins = self.backend_cors_origins or self.cors_origins
        if origins:
            return [o.strip() for o in origins.split(",") if o.strip()]
        return []

    @property
    def async_database_url(self) -> str:
        """Build async database URL from components or use direct URL."""
        if self.database_url:
            url = self.database_url
            if url.startswith("postgresql://"):
                url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
            return url
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def sync_database_url(self) -> str:
        """Sync database URL for migrations."""
        return self.async_database_url.replace("+asyncpg", "")


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
