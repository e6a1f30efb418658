from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from reelscore.logging import get_logger

logger = get_logger(__name__)

# Lowest argon2 time_cost accepted for password hashing.
MIN_PASSWORD_HASH_COST = 2


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the review backend."""

    database_url: str = env_field(
        "postgresql://localhost:5432/reelscore", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors and in-process fallbacks.",
    )
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_issuer: str = env_field("reelscore", "JWT_ISSUER")
    jwt_audience: str = env_field("reelscore-clients", "JWT_AUDIENCE")
    password_hash_cost: int | None = env_field(
        None,
        "PASSWORD_HASH_COST",
        validate_default=True,
        description="argon2 time_cost; values below the minimum are raised to it",
    )
    # Email service settings
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("The Reel Score", "EMAIL_FROM_NAME")
    app_base_url: str = env_field("http://localhost:8000", "APP_BASE_URL")
    cookie_secure: bool = env_field(
        False,
        "COOKIE_SECURE",
        description="Mark the refresh token cookie Secure (enable in production)",
    )
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")
    mail_worker_enabled: bool = env_field(True, "MAIL_WORKER_ENABLED")
    mail_worker_poll_interval: int = env_field(
        5,
        "MAIL_WORKER_POLL_INTERVAL",
        description="Seconds to block on the mail queue before polling again",
    )
    housekeeping_enabled: bool = env_field(True, "HOUSEKEEPING_ENABLED")
    housekeeping_interval_seconds: int = env_field(
        24 * 60 * 60, "HOUSEKEEPING_INTERVAL_SECONDS"
    )

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

    @field_validator("password_hash_cost")
    @classmethod
    def _clamp_hash_cost(cls, value: int | None) -> int:
        if value is None:
            return MIN_PASSWORD_HASH_COST
        if value < MIN_PASSWORD_HASH_COST:
            logger.warning(
                "password_hash_cost_raised",
                requested=value,
                minimum=MIN_PASSWORD_HASH_COST,
            )
            return MIN_PASSWORD_HASH_COST
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
