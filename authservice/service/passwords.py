from __future__ import annotations

import asyncio
import concurrent.futures

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from authservice.config import Settings
from authservice.logging import get_logger
from authservice.types import HashedPassword, MalformedHashError, Password

logger = get_logger(__name__)


class PasswordHashingService:
    """Argon2id hashing on a dedicated worker pool.

    Hashing is deliberately expensive, so neither ``hash`` nor ``verify`` runs
    on the event loop. The pool is bounded and private to this service so a
    burst of logins cannot starve other thread-offloaded work.
    """

    MAX_WORKERS = 32

    def __init__(
        self,
        *,
        memory_cost: int = 15000,
        time_cost: int = 2,
        parallelism: int = 1,
        workers: int = 4,
    ) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        workers = min(max(1, workers), self.MAX_WORKERS)
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="argon2"
        )
        self._executor_shutdown = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordHashingService":
        return cls(
            memory_cost=settings.argon2_memory_kib,
            time_cost=settings.argon2_time_cost,
            parallelism=settings.argon2_parallelism,
            workers=settings.password_hash_workers,
        )

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _hash_sync(self, raw: str) -> HashedPassword:
        return HashedPassword.from_hash(self._hasher.hash(raw))

    def _verify_sync(self, hashed: HashedPassword, candidate: str) -> bool:
        try:
            return self._hasher.verify(hashed.value, candidate)
        except VerifyMismatchError:
            return False
        except InvalidHashError as exc:
            logger.error("password_hash_unparsable", error=str(exc))
            raise MalformedHashError("stored password hash cannot be parsed") from exc
        except VerificationError as exc:
            logger.warning("password_verification_failed", error=str(exc))
            return False

    async def hash(self, password: Password) -> HashedPassword:
        """Hash ``password`` with a fresh random salt."""
        return await self._run(self._hash_sync, password.value)

    async def verify(self, hashed: HashedPassword, candidate: Password) -> bool:
        """Check ``candidate`` against ``hashed`` using the parameters embedded in it."""
        return await self._run(self._verify_sync, hashed, candidate.value)

    def needs_rehash(self, hashed: HashedPassword) -> bool:
        return self._hasher.check_needs_rehash(hashed.value)

    def shutdown(self, wait: bool = True) -> None:
        """Release the worker pool. Safe to call more than once."""
        if self._executor_shutdown:
            return
        self._executor_shutdown = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        logger.info("password_executor_shutdown", wait=wait)

