"""Application configuration using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_BYPASS_TOKEN = "change-me-load-test-bypass"

# Requests per window when RATE_LIMIT_MAX_REQUESTS is not set explicitly
RATE_LIMIT_DEFAULTS = {
    "development": 1000,
    "production": 60,
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "FileSwift Upload Service"
    app_version: str = "0.1.0"
    debug: bool = False

    # Environment mode
    environment: str = "development"

    # CORS
    cors_origins: str = ""

    # Public base URL used to absolutize download links (empty = relative)
    public_api_url: str = ""

    # Redis (rate-limit counters, job records, Celery broker)
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str = ""
    redis_socket_timeout: float = 2.0

    @property
    def redis_url(self) -> str:
        """Construct Redis URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # Celery
    celery_broker_url: str = ""
    celery_result_backend: str = ""
    processing_task_name: str = "fileswift.process_file"
    processing_queue: str = "file-processing"

    def get_celery_broker_url(self) -> str:
        """Get Celery broker URL, defaulting to Redis."""
        return self.celery_broker_url or self.redis_url

    def get_celery_result_backend(self) -> str:
        """Get Celery result backend, defaulting to Redis."""
        return self.celery_result_backend or self.redis_url

    # Upload storage
    upload_dir: str = "/tmp/fileswift-uploads"
    max_chunk_size_mb: int = 10
    max_upload_size_mb: int = 50
    max_upload_files: int = 100
    # Upper bound on totalChunks and chunk indices for one upload
    max_total_chunks: int = 10_000

    @property
    def chunk_root(self) -> Path:
        return Path(self.upload_dir) / "chunks"

    @property
    def assembled_root(self) -> Path:
        return Path(self.upload_dir) / "assembled"

    @property
    def output_root(self) -> Path:
        """Worker results, one directory per job id."""
        return Path(self.upload_dir) / "jobs"

    # Upload sessions
    upload_session_ttl_seconds: int = 3600
    session_sweep_interval_seconds: int = 300

    # Job records
    job_record_ttl_seconds: int = 86400

    # Rate limiting (upload entry points)
    rate_limit_window_seconds: int = 60
    rate_limit_max_requests: Optional[int] = None
    rate_limit_bypass_header: str = "X-RateLimit-Bypass"
    rate_limit_bypass_token: str = _DEFAULT_BYPASS_TOKEN

    @property
    def rate_limit_cap(self) -> int:
        """Requests allowed per window for one client key."""
        if self.rate_limit_max_requests is not None:
            return self.rate_limit_max_requests
        return RATE_LIMIT_DEFAULTS.get(self.environment, RATE_LIMIT_DEFAULTS["production"])


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()

    # In production, require a real bypass secret, the default is public
    if settings.environment == "production":
        if settings.rate_limit_bypass_token == _DEFAULT_BYPASS_TOKEN:
            raise ValueError(
                "FATAL: RATE_LIMIT_BYPASS_TOKEN still has its default value. "
                "Set a strong secret via environment variable in production."
            )

    return settings
