# path: streetview-route-api/app/config.py

"""Configuration settings for the route imagery service."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings, read from STREETVIEW_* environment variables or .env."""

    model_config = SettingsConfigDict(
        env_prefix="STREETVIEW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Provider
    api_key: Optional[str] = None
    streetview_base_url: str = "https://maps.googleapis.com/maps/api/streetview"
    streetview_metadata_url: str = "https://maps.googleapis.com/maps/api/streetview/metadata"
    http_timeout_s: float = Field(default=10.0, gt=0)

    # Sampling / rendering defaults
    default_interval_distance: float = Field(default=50.0, gt=0)
    default_image_size: str = "640x640"
    default_field_of_view: float = 90.0
    default_pitch: float = 0.0

    # Resolver
    prefetch_delay_s: float = Field(default=0.5, ge=0)  # neighbours load after the cursor
    preload_concurrency: int = Field(default=4, ge=1)

    # Export
    download_delay_s: float = Field(default=0.1, ge=0)
    export_dir: str = "exports"

    # Uploads
    max_upload_bytes: int = 50 * 1024 * 1024

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@lru_cache
def get_settings() -> Settings:
    return Settings()
