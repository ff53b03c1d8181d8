"""Application configuration models."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="ReelSync", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    trakt_api_url: HttpUrl = Field(
        default="https://api.trakt.tv", alias="TRAKT_API_URL"
    )
    trakt_client_id: str | None = Field(default=None, alias="TRAKT_CLIENT_ID")
    trakt_username: str | None = Field(default=None, alias="TRAKT_USERNAME")
    trakt_access_token: str | None = Field(default=None, alias="TRAKT_ACCESS_TOKEN")

    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./reelsync.db", alias="DATABASE_URL"
    )

    soon_threshold_days: int = Field(
        default=30, alias="SOON_THRESHOLD_DAYS", ge=1, le=365
    )
    highly_rated_threshold: int = Field(
        default=70, alias="HIGHLY_RATED_THRESHOLD", ge=0, le=100
    )
    remove_from_watchlist_on_watched: bool = Field(
        default=True, alias="REMOVE_FROM_WATCHLIST_ON_WATCHED"
    )
    provider_max_retries: int = Field(
        default=3, alias="PROVIDER_MAX_RETRIES", ge=0, le=10
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator(
        "trakt_client_id",
        "trakt_username",
        "trakt_access_token",
        "tmdb_api_key",
        mode="before",
    )
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @model_validator(mode="after")
    def _check_trakt_credentials(self) -> "Settings":
        """Reject half-configured Trakt sessions."""

        if self.trakt_access_token and not self.trakt_client_id:
            raise ValueError("TRAKT_ACCESS_TOKEN requires TRAKT_CLIENT_ID")
        if self.trakt_username and not self.trakt_access_token:
            raise ValueError("TRAKT_USERNAME requires TRAKT_ACCESS_TOKEN")
        return self

    @property
    def soon_threshold(self) -> timedelta:
        return timedelta(days=self.soon_threshold_days)

    @property
    def has_trakt_session(self) -> bool:
        """Whether the environment supplies a complete Trakt login."""

        return bool(self.trakt_username and self.trakt_access_token)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
