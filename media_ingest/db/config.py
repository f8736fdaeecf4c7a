"""Database and runtime configuration."""

from typing import Optional

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # PostgreSQL connection
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "pg"
    postgres_password: str = ""
    postgres_db: str = "media-ingest"

    # Full SQLAlchemy URL; overrides the PostgreSQL fields when set
    sqlalchemy_url: Optional[str] = None

    # Redis connection
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 2
    redis_password: str = ""

    # SQLAlchemy settings
    sql_echo: bool = False  # Set to True to log all SQL queries

    # Progress events over Redis pub/sub
    publish_progress: bool = True

    # Job health
    stuck_threshold_minutes: int = 60
    timeout_minutes: int = 120

    # Reconciliation sweep
    sweep_interval_seconds: float = 5.0
    sweep_batch_size: int = 500
    failure_alert_threshold: float = 0.1
    failure_alert_min_samples: int = 10

    # Derived artifact defaults forwarded to item workers
    thumbnail_width: int = 300
    thumbnail_height: int = 300
    cache_width: int = 1920
    cache_height: int = 1080
    cache_quality: int = 85
    cache_format: str = "jpeg"

    # Where rendered thumbnails and cache images are written
    artifact_dir: str = "./artifacts"

    @property
    def database_url(self) -> str:
        """Construct database URL (PostgreSQL unless overridden)."""
        if self.sqlalchemy_url:
            return self.sqlalchemy_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def redis_url(self) -> str:
        """Construct Redis URL for Celery."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra fields from .env
    )


# Global settings instance
settings = Settings()
