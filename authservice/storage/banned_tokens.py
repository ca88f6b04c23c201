from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from authservice.logging import get_logger
from authservice.storage.errors import StoreUnavailableError
from authservice.types import Token

logger = get_logger(__name__)

BANNED_TOKEN_KEY_PREFIX = "banned_token:"


class BannedTokenStore(Protocol):
    """Tokens revoked before their natural expiry. ``add`` is idempotent."""

    async def add(self, token: Token, ttl_seconds: int) -> None: ...

    async def exists(self, token: Token) -> bool: ...


class MemoryBannedTokenStore:
    """Process-local revocation list with per-entry deadlines."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._deadlines: Dict[str, float] = {}

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, deadline in self._deadlines.items() if deadline <= now]
        for key in expired:
            del self._deadlines[key]

    async def add(self, token: Token, ttl_seconds: int) -> None:
        ttl = max(1, int(ttl_seconds))
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            # Re-banning keeps the later deadline
            deadline = now + ttl
            current = self._deadlines.get(token.value)
            if current is None or current < deadline:
                self._deadlines[token.value] = deadline

    async def exists(self, token: Token) -> bool:
        with self._lock:
            deadline = self._deadlines.get(token.value)
            if deadline is None:
                return False
            if deadline <= self._clock():
                del self._deadlines[token.value]
                return False
            return True

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._deadlines)


class RedisBannedTokenStore:
    """Revocation list in Redis; each key expires with the token it bans."""

    def __init__(self, client: aioredis.Redis) -> None:
        self.client = client

    @staticmethod
    def _key(token: Token) -> str:
        return f"{BANNED_TOKEN_KEY_PREFIX}{token.value}"

    async def add(self, token: Token, ttl_seconds: int) -> None:
        # Redis rejects non-positive EX values
        ttl = max(1, int(ttl_seconds))
        try:
            await self.client.set(self._key(token), "1", ex=ttl)
        except RedisError as exc:
            logger.error("banned_token_add_failed", error=str(exc))
            raise StoreUnavailableError("revocation store unavailable") from exc

    async def exists(self, token: Token) -> bool:
        try:
            return bool(await self.client.exists(self._key(token)))
        except RedisError as exc:
            logger.error("banned_token_lookup_failed", error=str(exc))
            raise StoreUnavailableError("revocation store unavailable") from exc
