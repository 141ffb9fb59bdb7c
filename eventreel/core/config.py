"""
Application Configuration

Settings class using pydantic-settings for environment variable loading.
Defines encoder watchdog limits, job deadline and storage configuration
shared by the API process and the render worker.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For example, JOB_DEADLINE_SECONDS can be set via JOB_DEADLINE_SECONDS env var.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="EventReel", description="Application name")
    debug: bool = Field(default=False, description="Debug mode")
    version: str = Field(default="0.1.0", description="API version")
    log_level: str = Field(default="INFO", description="Root log level")

    # Database (sync URL, shared by API and worker)
    database_url: str = Field(
        default="sqlite:///./eventreel.db",
        description="Database connection URL",
    )

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )

    # Object storage
    storage_path: str = Field(
        default="/data/storage",
        description="Root path for the local object storage buckets",
    )
    storage_public_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL under which /storage/... reads are served",
    )
    secret_key: str = Field(
        default="change-me-in-production-min-32-chars",
        description="Secret key for signing storage read URLs",
    )
    signed_url_ttl_seconds: int = Field(
        default=3600,
        description="Lifetime of signed storage read URLs",
    )
    clips_bucket: str = Field(default="videos", description="Bucket holding source clips")
    assets_bucket: str = Field(
        default="premium-assets",
        description="Bucket holding custom intro/outro/music assets",
    )
    final_bucket: str = Field(default="videos", description="Bucket receiving final renders")
    public_buckets: str = Field(
        default="videos",
        description="Comma-separated buckets readable without a signed token",
    )

    # Local filesystem
    work_root: str = Field(
        default="/tmp/eventreel",
        description="Parent of the per-job working directories",
    )
    assets_dir: str = Field(
        default="/data/assets",
        description="Directory holding the built-in intro/outro/watermark images",
    )

    # Encoder
    ffmpeg_binary: str = Field(default="ffmpeg", description="ffmpeg executable")
    ffprobe_binary: str = Field(default="ffprobe", description="ffprobe executable")
    text_font_file: Optional[str] = Field(
        default=None,
        description="Font used for text slides (fontconfig default when unset)",
    )
    encoder_timeout_seconds: float = Field(
        default=20 * 60,
        description="Hard wall-clock ceiling per encoder step",
    )
    encoder_inactivity_seconds: float = Field(
        default=90,
        description="Kill an encoder step after this long without output or progress",
    )
    encoder_watchdog_interval_seconds: float = Field(
        default=5,
        description="How often the encoder watchdog checks its limits",
    )

    # Jobs
    job_deadline_seconds: float = Field(
        default=12 * 60,
        description="Maximum time a job may stay in 'processing'",
    )
    clip_batch_size: int = Field(
        default=2,
        description="Clips fetched and normalized concurrently per batch",
    )
    max_clips_free: int = Field(default=5, description="Clip limit for the free tier")
    max_clips_premium: int = Field(default=999, description="Clip limit for the premium tier")
    download_timeout_seconds: float = Field(
        default=60,
        description="Read timeout for clip and asset downloads",
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string to list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def public_buckets_list(self) -> list[str]:
        return [bucket.strip() for bucket in self.public_buckets.split(",") if bucket.strip()]

    def max_clips_for_tier(self, tier: str) -> int:
        """Clip limit for a tier; anything but 'premium' gets the free limit."""
        if tier == "premium":
            return self.max_clips_premium
        return self.max_clips_free


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    Uses lru_cache to ensure settings are only loaded once per process.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
