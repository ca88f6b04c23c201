from __future__ import annotations

import json
import threading
import time
from typing import Callable, Dict, Protocol, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from authservice.logging import get_logger
from authservice.storage.errors import (
    StoreUnavailableError,
    TwoFACodeAlreadyExistsError,
    TwoFACodeNotFoundError,
)
from authservice.types import Email, LoginAttemptId, TwoFACode

logger = get_logger(__name__)

TWO_FA_CODE_KEY_PREFIX = "two_fa_code:"
DEFAULT_TWO_FA_CODE_TTL_SECONDS = 600


class TwoFACodeStore(Protocol):
    """Pending 2FA codes keyed by normalized email, one entry per email.

    ``add`` never overwrites a pending entry; ``remove`` succeeds for exactly
    one caller per entry, which is what makes a code single-use.
    """

    async def add(
        self, email: Email, login_attempt_id: LoginAttemptId, code: TwoFACode
    ) -> None: ...

    async def exists(self, email: Email) -> bool: ...

    async def get(self, email: Email) -> Tuple[LoginAttemptId, TwoFACode]: ...

    async def remove(self, email: Email) -> None: ...


class MemoryTwoFACodeStore:
    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_TWO_FA_CODE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._codes: Dict[str, Tuple[LoginAttemptId, TwoFACode, float]] = {}

    def _live_entry(self, email: Email):
        """Return the unexpired entry for ``email``; caller holds the lock."""
        entry = self._codes.get(email.value)
        if entry is None:
            return None
        if entry[2] <= self._clock():
            del self._codes[email.value]
            return None
        return entry

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._codes.items() if entry[2] <= now]
        for key in expired:
            del self._codes[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._codes)

    async def add(
        self, email: Email, login_attempt_id: LoginAttemptId, code: TwoFACode
    ) -> None:
        with self._lock:
            now = self._clock()
            # Abandoned attempts for other emails go too
            self._purge_expired(now)
            if email.value in self._codes:
                raise TwoFACodeAlreadyExistsError("2FA code already pending")
            self._codes[email.value] = (login_attempt_id, code, now + self.ttl_seconds)

    async def exists(self, email: Email) -> bool:
        with self._lock:
            return self._live_entry(email) is not None

    async def get(self, email: Email) -> Tuple[LoginAttemptId, TwoFACode]:
        with self._lock:
            entry = self._live_entry(email)
        if entry is None:
            raise TwoFACodeNotFoundError("no pending 2FA code")
        return entry[0], entry[1]

    async def remove(self, email: Email) -> None:
        with self._lock:
            if self._live_entry(email) is None:
                raise TwoFACodeNotFoundError("no pending 2FA code")
            del self._codes[email.value]


class RedisTwoFACodeStore:
    """Pending codes in Redis as ``two_fa_code:<email>`` -> ``["<id>", "<code>"]``."""

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        ttl_seconds: int = DEFAULT_TWO_FA_CODE_TTL_SECONDS,
    ) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(email: Email) -> str:
        return f"{TWO_FA_CODE_KEY_PREFIX}{email.value}"

    async def add(
        self, email: Email, login_attempt_id: LoginAttemptId, code: TwoFACode
    ) -> None:
        value = json.dumps([login_attempt_id.value, code.value])
        try:
            # NX makes check-and-insert a single atomic command
            stored = await self.client.set(
                self._key(email), value, nx=True, ex=self.ttl_seconds
            )
        except RedisError as exc:
            logger.error("two_fa_code_add_failed", error=str(exc))
            raise StoreUnavailableError("2FA code store unavailable") from exc
        if not stored:
            raise TwoFACodeAlreadyExistsError("2FA code already pending")

    async def exists(self, email: Email) -> bool:
        try:
            return bool(await self.client.exists(self._key(email)))
        except RedisError as exc:
            logger.error("two_fa_code_lookup_failed", error=str(exc))
            raise StoreUnavailableError("2FA code store unavailable") from exc

    async def get(self, email: Email) -> Tuple[LoginAttemptId, TwoFACode]:
        try:
            raw = await self.client.get(self._key(email))
        except RedisError as exc:
            logger.error("two_fa_code_lookup_failed", error=str(exc))
            raise StoreUnavailableError("2FA code store unavailable") from exc
        if raw is None:
            raise TwoFACodeNotFoundError("no pending 2FA code")
        try:
            attempt_raw, code_raw = json.loads(raw)
            return LoginAttemptId.parse(attempt_raw), TwoFACode.parse(code_raw)
        except (TypeError, ValueError) as exc:
            logger.error("two_fa_code_corrupt", error=str(exc))
            raise StoreUnavailableError("stored 2FA code is corrupt") from exc

    async def remove(self, email: Email) -> None:
        try:
            deleted = await self.client.delete(self._key(email))
        except RedisError as exc:
            logger.error("two_fa_code_remove_failed", error=str(exc))
            raise StoreUnavailableError("2FA code store unavailable") from exc
        if not deleted:
            raise TwoFACodeNotFoundError("no pending 2FA code")
