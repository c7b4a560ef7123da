from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sugarrush.logging import get_logger
from sugarrush.storage.models import Role

logger = get_logger(__name__)


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the API process."""

    environment: Environment = env_field(Environment.DEVELOPMENT, "NODE_ENV")
    database_url: str = env_field(
        "postgresql://localhost:5432/sugarrush", "DATABASE_URL"
    )
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow in-process fallbacks for Redis and generated secrets.",
    )
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    session_token_ttl_minutes: int = env_field(
        60,
        "SESSION_TOKEN_TTL_MINUTES",
        description="Lifetime of issued session tokens",
        gt=0,
    )
    default_user_role: Role = env_field(
        Role.TEMPORARY,
        "DEFAULT_USER_ROLE",
        description="Role assigned to accounts created on first Google login",
    )
    google_client_id: str | None = env_field(None, "GOOGLE_CLIENT_ID")
    google_client_secret: str | None = env_field(None, "GOOGLE_CLIENT_SECRET")
    local_base_url: str = env_field("http://localhost:8080", "LOCAL_BASE_URL")
    remote_base_url: str | None = env_field(None, "REMOTE_BASE_URL")
    oauth_state_ttl_minutes: int = env_field(10, "OAUTH_STATE_TTL_MINUTES", gt=0)
    oauth_http_timeout_seconds: float = env_field(
        10.0, "OAUTH_HTTP_TIMEOUT_SECONDS", gt=0
    )
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

    @field_validator("default_user_role")
    @classmethod
    def _validate_default_role(cls, value: Role) -> Role:
        role = Role(value)
        if role is Role.ADMIN:
            logger.warning(
                "default_user_role_is_admin",
                message="every new Google login will be provisioned as admin",
            )
        return role

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def _ensure_jwt_secret(self) -> "Settings":
        if self.jwt_secret:
            return self
        if not self.test_mode:
            raise ValueError("JWT_SECRET must be set outside TEST_MODE")
        from sugarrush.service.auth import generate_jwt_secret

        self.jwt_secret = generate_jwt_secret()
        logger.warning("jwt_secret_generated", message="tokens will not survive a restart")
        return self

    @property
    def base_url(self) -> str:
        if self.environment == Environment.PRODUCTION and self.remote_base_url:
            return self.remote_base_url.rstrip("/")
        return self.local_base_url.rstrip("/")

    @property
    def google_callback_url(self) -> str:
        return f"{self.base_url}/auth/google/callback"


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
