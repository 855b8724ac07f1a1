from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from jwtauth.logging import get_logger

logger = get_logger(__name__)

MIN_JWT_SECRET_LENGTH = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process-wide settings, read once at startup."""

    database_url: str = env_field("postgresql://localhost:5432/jwtauth", "DATABASE_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Relaxes secret length checks for deterministic test runs.",
    )
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_issuer: str = env_field("jwtauth", "JWT_ISSUER")
    jwt_audience: str = env_field("jwtauth-clients", "JWT_AUDIENCE")
    jwt_ttl_minutes: int = env_field(
        15, "JWT_TTL_MINUTES", description="Lifetime of issued JSON Web Tokens", gt=0
    )
    refresh_token_ttl_days: int = env_field(
        7, "REFRESH_TOKEN_TTL_DAYS", description="Lifetime of refresh tokens", gt=0
    )
    refresh_cookie_name: str = env_field("refreshToken", "REFRESH_COOKIE_NAME")
    refresh_cookie_secure: bool = env_field(
        True,
        "REFRESH_COOKIE_SECURE",
        description="Only send the refresh cookie over HTTPS",
    )
    default_role: str = env_field("Basic User", "DEFAULT_ROLE")
    admin_role: str = env_field("Admin", "ADMIN_ROLE")
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def _check_secrets_and_ttls(self) -> "Settings":
        if not self.jwt_secret:
            raise ValueError("JWT_SECRET must be set")
        if len(self.jwt_secret) < MIN_JWT_SECRET_LENGTH and not self.test_mode:
            raise ValueError(
                f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters"
            )
        if self.refresh_token_ttl_days * 24 * 60 <= self.jwt_ttl_minutes:
            raise ValueError("refresh token TTL must be longer than the JWT TTL")
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.info(
            "settings_loaded",
            use_memory_store=_settings_cache.use_memory_store,
            jwt_ttl_minutes=_settings_cache.jwt_ttl_minutes,
            refresh_token_ttl_days=_settings_cache.refresh_token_ttl_days,
        )
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
