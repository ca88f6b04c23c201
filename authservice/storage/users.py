from __future__ import annotations

import threading
from typing import Dict, Optional, Protocol

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from authservice.logging import get_logger
from authservice.storage.errors import (
    StoreUnavailableError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from authservice.storage.models import User
from authservice.types import Email, HashedPassword, MalformedHashError, ValueTypeError

logger = get_logger(__name__)

_CREATE_USERS_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    email TEXT PRIMARY KEY,
    password_hash TEXT NOT NULL,
    requires_2fa BOOLEAN NOT NULL DEFAULT FALSE
)
"""


class UserStore(Protocol):
    async def add_user(self, user: User) -> None: ...

    async def get_user(self, email: Email) -> User: ...


class MemoryUserStore:
    """Users held in process memory; used for tests and ``USE_MEMORY_STORE``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: Dict[Email, User] = {}

    async def add_user(self, user: User) -> None:
        with self._lock:
            if user.email in self._users:
                raise UserAlreadyExistsError(
                    "user already exists", {"field": "email"}
                )
            self._users[user.email] = user

    async def get_user(self, email: Email) -> User:
        with self._lock:
            user = self._users.get(email)
        if user is None:
            raise UserNotFoundError("user not found")
        return user


class PostgresUserStore:
    """Users in a single ``users`` table behind an async connection pool."""

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        pool: Optional[AsyncConnectionPool] = None,
    ) -> None:
        self.dsn = dsn
        self.pool = pool or AsyncConnectionPool(
            dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row},
            open=False,
        )

    def _connect(self):
        return self.pool.connection()

    async def open(self) -> None:
        """Open the pool and create the users table if it is missing."""
        await self.pool.open()
        try:
            async with self._connect() as conn:
                await conn.execute(_CREATE_USERS_TABLE)
        except psycopg.Error as exc:
            logger.error("users_schema_setup_failed", error=str(exc))
            raise StoreUnavailableError("user store unavailable") from exc

    async def close(self) -> None:
        await self.pool.close()

    async def add_user(self, user: User) -> None:
        try:
            async with self._connect() as conn:
                await conn.execute(
                    """
                    INSERT INTO users (email, password_hash, requires_2fa)
                    VALUES (%s, %s, %s)
                    """,
                    (user.email.value, user.password_hash.value, user.requires_2fa),
                )
        except errors.UniqueViolation as exc:
            raise UserAlreadyExistsError(
                "user already exists", {"field": "email"}
            ) from exc
        except psycopg.Error as exc:
            logger.error("user_insert_failed", error=str(exc))
            raise StoreUnavailableError("user store unavailable") from exc

    async def get_user(self, email: Email) -> User:
        try:
            async with self._connect() as conn:
                cur = await conn.execute(
                    "SELECT email, password_hash, requires_2fa FROM users WHERE email = %s",
                    (email.value,),
                )
                row = await cur.fetchone()
        except psycopg.Error as exc:
            logger.error("user_lookup_failed", error=str(exc))
            raise StoreUnavailableError("user store unavailable") from exc
        if not row:
            raise UserNotFoundError("user not found")
        try:
            return User(
                email=Email.parse(row["email"]),
                password_hash=HashedPassword.from_hash(row["password_hash"]),
                requires_2fa=bool(row["requires_2fa"]),
            )
        except (MalformedHashError, ValueTypeError) as exc:
            logger.error("user_row_invalid", error=str(exc))
            raise StoreUnavailableError("stored user record is invalid") from exc
