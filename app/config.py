"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_ADMIN_ROLES: tuple[str, ...] = ("admin",)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="ReelRate", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./reelrate.db", alias="DATABASE_URL"
    )

    review_max_length: int = Field(
        default=1_000, alias="REVIEW_MAX_LENGTH", ge=1, le=5_000
    )
    review_page_size: int = Field(
        default=10, alias="REVIEW_PAGE_SIZE", ge=1, le=100
    )
    review_page_limit: int = Field(
        default=100, alias="REVIEW_PAGE_LIMIT", ge=1, le=500
    )
    admin_roles: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_ADMIN_ROLES, alias="ADMIN_ROLES"
    )

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    external_cache_ttl_seconds: int = Field(
        default=86_400, alias="EXTERNAL_CACHE_TTL", ge=300
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("admin_roles", mode="before")
    @classmethod
    def _parse_admin_roles(cls, value: object) -> tuple[str, ...]:
        """Normalise role names from comma separated environment values."""

        if value is None:
            return DEFAULT_ADMIN_ROLES
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("ADMIN_ROLES must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            role = entry.lower()
            if role and role not in cleaned:
                cleaned.append(role)
        if not cleaned:
            return DEFAULT_ADMIN_ROLES
        return tuple(cleaned)

    @field_validator("tmdb_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @model_validator(mode="after")
    def _check_page_bounds(self) -> "Settings":
        """Ensure the default page size fits inside the hard limit."""

        if self.review_page_size > self.review_page_limit:
            raise ValueError("REVIEW_PAGE_SIZE must not exceed REVIEW_PAGE_LIMIT")
        return self

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
