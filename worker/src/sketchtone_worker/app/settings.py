from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the Sketchtone worker process."""

    model_config = SettingsConfigDict(
        env_prefix="SKETCHTONE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    gemini_api_key: str | None = Field(
        default=None,
        description="API key for the Gemini generateContent endpoint.",
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com",
        max_length=256,
    )
    gemini_model: str = Field(default="gemini-2.5-flash", max_length=128)
    beatoven_api_key: str | None = Field(
        default=None,
        description="Bearer token for the Beatoven public API.",
    )
    beatoven_base_url: str = Field(
        default="https://public-api.beatoven.ai",
        max_length=256,
    )
    compose_format: str = Field(
        default="mp3",
        max_length=16,
        description="Audio container requested from the compose service.",
    )
    compose_looping: bool = Field(default=False)
    http_timeout_seconds: float = Field(default=60.0, gt=0.0, le=600.0)
    poll_interval_seconds: float = Field(
        default=2.0,
        ge=0.0,
        le=60.0,
        description="Delay between two task status checks.",
    )
    poll_max_attempts: int = Field(
        default=90,
        ge=1,
        le=10_000,
        description="Status checks before a task is reported as timed out.",
    )
    default_total_duration_seconds: int = Field(default=60, ge=1, le=600)
    max_boards: int = Field(default=4, ge=1, le=16)
    min_stroke_count: int = Field(default=5, ge=0)
    min_image_bytes: int = Field(
        default=75,
        ge=0,
        description="Decoded image payloads at or below this size are treated as blank.",
    )
    adjust_instructions_max_length: int = Field(default=200, ge=1, le=4_000)
    disconnect_check_interval_seconds: float = Field(default=0.5, gt=0.0, le=10.0)

    @model_validator(mode="after")
    def _normalise_urls(self) -> "Settings":
        self.gemini_base_url = self.gemini_base_url.rstrip("/")
        self.beatoven_base_url = self.beatoven_base_url.rstrip("/")
        if self.gemini_api_key is not None and not self.gemini_api_key.strip():
            self.gemini_api_key = None
        if self.beatoven_api_key is not None and not self.beatoven_api_key.strip():
            self.beatoven_api_key = None
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
