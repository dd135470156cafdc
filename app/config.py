"""Application configuration models."""

from __future__ import annotations

import secrets
from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

INSECURE_AUTH_SECRETS = frozenset({"change-me", "changeme", "secret"})


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="FlixFinder", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_access_token: str | None = Field(default=None, alias="TMDB_ACCESS_TOKEN")
    tmdb_language: str = Field(default="es-ES", alias="TMDB_LANGUAGE")

    catalog_result_limit: int = Field(
        default=70, alias="CATALOG_RESULT_LIMIT", ge=1, le=500
    )
    enrichment_concurrency: int = Field(
        default=8, alias="ENRICHMENT_CONCURRENCY", ge=1, le=64
    )

    api_key: str | None = Field(default=None, alias="API_KEY")
    # Left unset outside production, a random per-process secret is used.
    auth_secret: str | None = Field(default=None, alias="AUTH_SECRET")
    auth_token_ttl_seconds: int = Field(
        default=7 * 24 * 3_600, alias="AUTH_TOKEN_TTL_SECONDS", ge=60
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./flixfinder.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_access_token", "api_key", "auth_secret", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        """Treat blank credentials as missing."""

        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        return value

    @model_validator(mode="after")
    def _ensure_auth_secret(self) -> "Settings":
        """Refuse to sign session tokens with a guessable secret."""

        if self.auth_secret is None:
            if self.environment == "production":
                raise ValueError("AUTH_SECRET must be set in production")
            self.auth_secret = secrets.token_urlsafe(32)
        elif self.auth_secret.lower() in INSECURE_AUTH_SECRETS:
            raise ValueError("AUTH_SECRET must not be a placeholder value")
        return self

    @property
    def service_key_required(self) -> bool:
        """Return whether catalog routes should demand the static service key."""

        return self.api_key is not None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
