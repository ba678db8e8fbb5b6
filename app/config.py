"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="KinoPicks", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    kinopub_api_url: str = Field(
        default="https://api.srvkp.com/v1", alias="KINOPUB_API_URL"
    )
    kinopub_oauth_url: str = Field(
        default="https://api.srvkp.com/oauth2/device", alias="KINOPUB_OAUTH_URL"
    )
    kinopub_client_id: str = Field(default="xbmc", alias="KINOPUB_CLIENT_ID")
    kinopub_client_secret: str | None = Field(
        default=None, alias="KINOPUB_CLIENT_SECRET"
    )
    token_file: str = Field(
        default=".tokens/kinopub-tokens.json", alias="TOKEN_FILE"
    )
    request_timeout_seconds: float = Field(
        default=10.0, alias="REQUEST_TIMEOUT", gt=0
    )

    request_max_attempts: int = Field(
        default=3, alias="REQUEST_MAX_ATTEMPTS", ge=1, le=10
    )
    request_retry_delay_seconds: float = Field(
        default=2.0, alias="REQUEST_RETRY_DELAY", ge=0
    )
    search_delay_seconds: float = Field(default=0.2, alias="SEARCH_DELAY", ge=0)
    mutation_delay_seconds: float = Field(
        default=0.5, alias="MUTATION_DELAY", ge=0
    )
    cleanup_delay_seconds: float = Field(default=0.2, alias="CLEANUP_DELAY", ge=0)

    movie_rating_floor: float = Field(default=6.0, alias="MOVIE_RATING_FLOOR")
    series_rating_floor: float = Field(default=7.0, alias="SERIES_RATING_FLOOR")
    animation_genre_id: int = Field(default=25, alias="ANIMATION_GENRE_ID")
    max_suggestions: int = Field(default=12, alias="MAX_SUGGESTIONS", ge=1, le=50)

    openrouter_api_key: str | None = Field(
        default=None, alias="OPENROUTER_API_KEY"
    )
    openrouter_model: str = Field(
        default="google/gemini-2.5-flash-lite", alias="OPENROUTER_MODEL"
    )
    openrouter_api_url: HttpUrl = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_API_URL"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./kinopicks.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("kinopub_api_url", "kinopub_oauth_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if not cleaned.startswith(("http://", "https://")):
            raise ValueError("kino.pub URLs must be absolute http(s) URLs")
        return cleaned

    @field_validator("movie_rating_floor", "series_rating_floor")
    @classmethod
    def _check_rating_floor(cls, value: float) -> float:
        if not 0 <= value <= 10:
            raise ValueError("Rating floors must be between 0 and 10")
        return value

    def rating_floor(self, kind: str) -> float:
        """Return the minimum IMDb-style rating accepted for a content kind."""

        return self.movie_rating_floor if kind == "movie" else self.series_rating_floor

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
