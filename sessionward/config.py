from __future__ import annotations

import os
import secrets
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sessionward.logging import get_logger

logger = get_logger(__name__)

MIN_SECRET_LENGTH = 32


class Environment(str, Enum):
    """Deployment environments; only production forces secure cookies."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process-wide settings, read once at startup and never mutated."""

    environment: Environment = env_field(Environment.DEVELOPMENT, "ENVIRONMENT")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(False, "TEST_MODE")

    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_issuer: str = env_field("sessionward", "JWT_ISSUER")
    capability_token_ttl_minutes: int = env_field(
        15, "CAPABILITY_TOKEN_TTL_MINUTES", ge=1
    )
    renewal_token_ttl_minutes: int = env_field(
        60 * 24 * 7, "RENEWAL_TOKEN_TTL_MINUTES", ge=1
    )
    token_leeway_seconds: int = env_field(
        0,
        "TOKEN_LEEWAY_SECONDS",
        ge=0,
        description="Allowance for clock skew when checking token expiry",
    )

    store_timeout_seconds: float = env_field(5.0, "STORE_TIMEOUT_SECONDS", gt=0)
    store_scan_batch_size: int = env_field(500, "STORE_SCAN_BATCH_SIZE", ge=1)

    min_password_length: int = env_field(8, "MIN_PASSWORD_LENGTH", ge=1)
    access_cookie_name: str = env_field("accessToken", "ACCESS_COOKIE_NAME")
    refresh_cookie_name: str = env_field("refreshToken", "REFRESH_COOKIE_NAME")

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

    @field_validator("environment", mode="before")
    @classmethod
    def _validate_environment(cls, value: Any) -> Environment:
        if isinstance(value, str):
            value = value.strip().lower()
        return Environment(value)

    @model_validator(mode="after")
    def _ensure_jwt_secret(self) -> "Settings":
        if self.jwt_secret:
            if len(self.jwt_secret) < MIN_SECRET_LENGTH:
                raise ValueError(
                    f"JWT_SECRET must be at least {MIN_SECRET_LENGTH} characters"
                )
            return self
        if self.environment == Environment.PRODUCTION:
            raise ValueError("JWT_SECRET is required in production")
        # Tokens signed with an ephemeral secret do not survive a restart.
        logger.warning(
            "jwt_secret_generated",
            environment=self.environment.value,
            message="JWT_SECRET not set; using an ephemeral signing secret",
        )
        self.jwt_secret = secrets.token_urlsafe(64)
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def capability_token_ttl_seconds(self) -> int:
        return self.capability_token_ttl_minutes * 60

    @property
    def renewal_token_ttl_seconds(self) -> int:
        return self.renewal_token_ttl_minutes * 60


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
