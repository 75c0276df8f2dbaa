from __future__ import annotations

import os
import secrets
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from taskgate.logging import get_logger

logger = get_logger(__name__)


class Environment(str, Enum):
    """Deployment environments; only PRODUCTION changes security behaviour."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


class AuthMode(str, Enum):
    """Credential design active for a deployment.

    - SESSION: opaque id in the ``sid`` cookie backed by the session store
    - TOKEN: self-contained signed token, no server-side state
    """

    SESSION = "session"
    TOKEN = "token"


class SessionBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings read from the process environment and ``.env``."""

    environment: Environment = env_field(Environment.DEVELOPMENT, "APP_ENV")
    auth_mode: AuthMode = env_field(AuthMode.SESSION, "AUTH_MODE")
    session_backend: SessionBackend = env_field(SessionBackend.MEMORY, "SESSION_BACKEND")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    shared_fs_root: str = env_field("/srv/taskgate", "SHARED_FS_ROOT")
    persist_state: bool = env_field(
        False,
        "PERSIST_STATE",
        description="Snapshot users and tasks to SHARED_FS_ROOT/state as JSON",
    )
    # Credentials
    session_cookie_name: str = env_field("sid", "SESSION_COOKIE_NAME")
    token_cookie_name: str = env_field("token", "TOKEN_COOKIE_NAME")
    session_ttl_days: float = env_field(1, "SESSION_TTL_DAYS", gt=0)
    token_ttl_days: float = env_field(1, "TOKEN_TTL_DAYS", gt=0)
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_issuer: str = env_field("taskgate", "JWT_ISSUER")
    session_store_timeout_seconds: float = env_field(
        3.0, "SESSION_STORE_TIMEOUT_SECONDS", gt=0
    )
    session_sweep_interval_seconds: int = env_field(
        300, "SESSION_SWEEP_INTERVAL_SECONDS", ge=1
    )
    auth_fallback_path: str = env_field("/login", "AUTH_FALLBACK_PATH")
    # Password reset
    reset_token_ttl_minutes: int = env_field(10, "RESET_TOKEN_TTL_MINUTES", ge=1)
    # Uploads
    max_upload_bytes: int = env_field(1_048_576, "MAX_UPLOAD_BYTES", ge=1)
    # Email service settings
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("TaskGate", "EMAIL_FROM_NAME")
    app_base_url: str = env_field("http://localhost:8000", "APP_BASE_URL")
    cors_allow_origins: str = env_field(
        "http://localhost:3000", "CORS_ALLOW_ORIGINS",
        description="Comma separated list of allowed browser origins",
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

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("auth_fallback_path")
    @classmethod
    def _validate_fallback_path(cls, value: str) -> str:
        # Local paths only; an absolute URL here would be an open redirect
        if not value.startswith("/") or value.startswith("//"):
            raise ValueError("AUTH_FALLBACK_PATH must be a local absolute path")
        return value

    @model_validator(mode="after")
    def _ensure_jwt_secret(self) -> "Settings":
        if self.jwt_secret:
            if self.is_production and len(self.jwt_secret) < 32:
                raise ValueError("JWT_SECRET must be at least 32 characters in production")
            return self
        if self.is_production:
            raise ValueError("JWT_SECRET is required when APP_ENV=production")
        self.jwt_secret = _load_or_generate_secret(Path(self.shared_fs_root))
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def credential_cookie_name(self) -> str:
        if self.auth_mode == AuthMode.TOKEN:
            return self.token_cookie_name
        return self.session_cookie_name

    @property
    def credential_ttl_seconds(self) -> int:
        days = self.token_ttl_days if self.auth_mode == AuthMode.TOKEN else self.session_ttl_days
        return int(days * 86400)

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]


def _load_or_generate_secret(fs_root: Path) -> str:
    """Reuse a secret persisted under ``fs_root`` or generate a new one."""
    secret_path = fs_root / ".jwt_secret"
    if secret_path.exists() and not secret_path.is_symlink():
        try:
            persisted = secret_path.read_text().strip()
            if len(persisted) >= 32:
                return persisted
        except OSError as exc:
            logger.error("jwt_secret_read_failed", error=str(exc), path=str(secret_path))

    generated = secrets.token_urlsafe(64)
    try:
        fs_root.mkdir(parents=True, exist_ok=True)
        secret_path.write_text(generated)
        os.chmod(secret_path, 0o600)
    except OSError as exc:
        logger.warning(
            "jwt_secret_not_persisted",
            error=str(exc),
            path=str(secret_path),
            message="Using a per-process secret; credentials will not survive restart",
        )
    return generated


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
