from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from authservice.config import get_settings, reset_settings_cache
from authservice.logging import get_logger
from authservice.service.auth import AuthService
from authservice.service.email import EmailClient, MockEmailClient, SmtpEmailClient
from authservice.service.passwords import PasswordHashingService
from authservice.service.tokens import TokenService
from authservice.storage.banned_tokens import (
    BannedTokenStore,
    MemoryBannedTokenStore,
    RedisBannedTokenStore,
)
from authservice.storage.redis_client import (
    close_redis_client,
    create_redis_client,
    verify_redis_connection,
)
from authservice.storage.two_fa_codes import (
    MemoryTwoFACodeStore,
    RedisTwoFACodeStore,
    TwoFACodeStore,
)
from authservice.storage.users import MemoryUserStore, PostgresUserStore, UserStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds the service instances shared by every request."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        self.users: UserStore
        if self.settings.use_memory_store:
            self.users = MemoryUserStore()
        else:
            self.users = PostgresUserStore(self.settings.database_url)
        logger.info(
            "runtime_store_initialized",
            store_type="memory" if self.settings.use_memory_store else "postgres",
            database_url=(
                None
                if self.settings.use_memory_store
                else _mask_url_password(self.settings.database_url)
            ),
        )

        self.redis: Optional[aioredis.Redis] = None
        if not self.settings.use_memory_store:
            self.redis = self._connect_redis()

        self.banned_tokens: BannedTokenStore
        self.two_fa_codes: TwoFACodeStore
        ttl = self.settings.two_fa_code_ttl_seconds
        if self.redis is not None:
            self.banned_tokens = RedisBannedTokenStore(self.redis)
            self.two_fa_codes = RedisTwoFACodeStore(self.redis, ttl_seconds=ttl)
        else:
            self.banned_tokens = MemoryBannedTokenStore()
            self.two_fa_codes = MemoryTwoFACodeStore(ttl_seconds=ttl)

        self.email: EmailClient
        if self.settings.test_mode:
            self.email = MockEmailClient()
        else:
            self.email = SmtpEmailClient.from_settings(self.settings)

        self.hasher = PasswordHashingService.from_settings(self.settings)
        self.tokens = TokenService(self.settings)
        self.auth = AuthService(
            users=self.users,
            banned_tokens=self.banned_tokens,
            two_fa_codes=self.two_fa_codes,
            email_client=self.email,
            hasher=self.hasher,
            tokens=self.tokens,
            settings=self.settings,
        )
        logger.info(
            "runtime_initialized",
            redis_enabled=self.redis is not None,
            mailer="mock" if isinstance(self.email, MockEmailClient) else "smtp",
            token_ttl_seconds=self.settings.token_ttl_seconds,
        )

    def _connect_redis(self) -> Optional[aioredis.Redis]:
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                verify_redis_connection(self.settings.redis_url)
                return create_redis_client(self.settings.redis_url)
            except (OSError, RedisError) as exc:
                redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for revoked tokens and pending 2FA codes; "
                "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
            ) from redis_error

        fallback_mode = (
            "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        )
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
            message=(
                f"Running without Redis under {fallback_mode}; revoked tokens and "
                "pending 2FA codes are held in process memory only."
            ),
            mode=fallback_mode,
        )
        return None

    async def startup(self) -> None:
        if isinstance(self.users, PostgresUserStore):
            await self.users.open()
            logger.info("runtime_user_store_opened")

    async def shutdown(self) -> None:
        if isinstance(self.users, PostgresUserStore):
            await self.users.close()
        if self.redis is not None:
            await close_redis_client(self.redis)
        self.hasher.shutdown(wait=False)
        logger.info("runtime_shutdown")


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton.

    Double-checked locking: the fast path skips the lock once the runtime
    exists, the slow path re-checks under the lock before creating it.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        if runtime is not None:
            runtime.hasher.shutdown(wait=False)
        runtime = Runtime()
        return runtime
