"""
Configuration settings for the mechanics cache synchronization service.
Uses Pydantic Settings for type-safe environment variable loading.
"""
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # CACHE STORE
    # ==========================================================================
    mechanics_cache_file: Path = Field(
        default=Path("data") / "mechanics-cache.json",
        description="JSON document holding the mechanics cache",
    )
    cache_staleness_hours: int = Field(
        default=24,
        ge=1,
        le=168,
        description="Age after which the cache is due for a bulk refresh",
    )

    # ==========================================================================
    # BOARDGAMEGEEK API
    # ==========================================================================
    bgg_api_base_url: str = Field(
        default="https://boardgamegeek.com/xmlapi2",
        description="BoardGameGeek XML API2 base URL",
    )
    bgg_api_token: str = Field(default="", description="Optional BGG application token")
    bgg_username: str = Field(default="", description="Owner of the BGG collection")
    bgg_min_request_interval_seconds: float = Field(
        default=0.6,
        ge=0.5,
        le=5.0,
        description="Minimum spacing between BGG requests (BGG allows ~2 rps)",
    )
    bgg_request_timeout_seconds: float = Field(default=15.0, ge=1.0, le=120.0)

    # ==========================================================================
    # ENRICHMENT
    # ==========================================================================
    checkpoint_every: int = Field(
        default=20,
        ge=1,
        le=1000,
        description="Persist the cache after this many successful updates",
    )
    error_backoff_seconds: float = Field(default=2.0, ge=0.0, le=60.0)
    item_timeout_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=300.0,
        description="Upper bound a refresh waits for one game (0 = rely on HTTP timeout); "
        "a timed-out request still finishes inside the rate limiter",
    )

    # ==========================================================================
    # CATALOG
    # ==========================================================================
    catalog_csv_path: Path = Field(default=Path("public") / "collection.csv")
    collection_retry_attempts: int = Field(default=5, ge=1, le=20)
    collection_retry_initial_seconds: float = Field(default=2.0, ge=0.1, le=60.0)

    # ==========================================================================
    # SCHEDULING
    # ==========================================================================
    refresh_schedule_enabled: bool = Field(default=True)
    refresh_schedule_hour: int = Field(default=4, ge=0, le=23, description="Hour (UTC) for the daily refresh")

    # ==========================================================================
    # API SERVER
    # ==========================================================================
    app_name: str = Field(default="Board Game Cafe Mechanics API")
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost"],
    )

    # ==========================================================================
    # LOGGING
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")

    @field_validator("bgg_api_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def staleness_threshold_seconds(self) -> float:
        return self.cache_staleness_hours * 3600.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
