from __future__ import annotations

import os
import secrets
import tempfile
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from authservice.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the auth service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/authservice", "DATABASE_URL"
    )
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    shared_fs_root: str = env_field("/srv/authservice", "SHARED_FS_ROOT")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors (mock email, runtime resets).",
    )

    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("authservice", "JWT_ISSUER")
    jwt_audience: str = env_field("authservice-clients", "JWT_AUDIENCE")
    jwt_cookie_name: str = env_field("jwt", "JWT_COOKIE_NAME")
    jwt_cookie_secure: bool = env_field(
        False,
        "JWT_COOKIE_SECURE",
        description="Mark the auth cookie Secure (enable behind HTTPS)",
    )
    token_ttl_seconds: int = env_field(
        600, "TOKEN_TTL_SECONDS", description="Lifetime of issued auth tokens", gt=0
    )
    two_fa_code_ttl_seconds: int = env_field(
        600,
        "TWO_FA_CODE_TTL_SECONDS",
        description="Lifetime of a pending 2FA code",
        gt=0,
    )
    two_fa_supersede_pending: bool = env_field(
        False,
        "TWO_FA_SUPERSEDE_PENDING",
        description="Replace a pending 2FA code on a new login instead of rejecting it",
    )

    # Argon2id cost parameters
    argon2_memory_kib: int = env_field(15000, "ARGON2_MEMORY_KIB", ge=8)
    argon2_time_cost: int = env_field(2, "ARGON2_TIME_COST", ge=1)
    argon2_parallelism: int = env_field(1, "ARGON2_PARALLELISM", ge=1)
    password_hash_workers: int = env_field(
        4,
        "PASSWORD_HASH_WORKERS",
        description="Threads reserved for password hashing and verification",
        ge=1,
    )

    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    # Email service settings
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("Auth Service", "EMAIL_FROM_NAME")

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

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            if len(value) < 32:
                # 32 bytes matches the HMAC-SHA256 output size
                logger.warning("jwt_secret_short", length=len(value))
            return value
        # Persist a generated secret so tokens stay valid across restarts
        fs_root = Path(os.getenv("SHARED_FS_ROOT", "/srv/authservice"))
        secret_path = fs_root / ".jwt_secret"

        try:
            fs_root.mkdir(parents=True, exist_ok=True)
            os.chmod(fs_root, 0o700)
        except PermissionError:
            # Directory may already exist with different permissions (e.g., in container)
            pass
        except OSError as exc:
            logger.warning(
                "jwt_secret_dir_setup",
                error=str(exc),
                path=str(fs_root),
                message="Could not set directory permissions",
            )

        if secret_path.exists() and not secret_path.is_symlink():
            try:
                persisted = secret_path.read_text().strip()
                if persisted and len(persisted) >= 32:
                    return persisted
            except OSError as exc:
                logger.error(
                    "jwt_secret_read_failed", error=str(exc), path=str(secret_path)
                )

        generated = secrets.token_urlsafe(64)
        tmp_path: str | None = None
        try:
            # Write to a temp file then rename so readers never see a partial secret
            fd, tmp_path = tempfile.mkstemp(
                dir=str(fs_root), prefix=".jwt_secret_", suffix=".tmp"
            )
            try:
                os.write(fd, generated.encode())
                os.fchmod(fd, 0o600)
            finally:
                os.close(fd)
            os.rename(tmp_path, str(secret_path))
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error(
                "jwt_secret_persist_failed", error=str(exc), path=str(secret_path)
            )
            raise RuntimeError(
                "Unable to persist JWT secret; set JWT_SECRET env var or make SHARED_FS_ROOT writable"
            ) from exc
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
