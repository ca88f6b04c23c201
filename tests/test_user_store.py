"""Tests for the user stores."""

import contextlib

import pytest
from argon2 import PasswordHasher, Type
from psycopg import errors

from authservice.storage.errors import (
    StoreUnavailableError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from authservice.storage.models import User
from authservice.storage.users import MemoryUserStore, PostgresUserStore
from authservice.types import Email, HashedPassword

_HASH = PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1, type=Type.ID).hash(
    "Abcd123!"
)


def _user(email="a@b.com", requires_2fa=False) -> User:
    return User(
        email=Email.parse(email),
        password_hash=HashedPassword.from_hash(_HASH),
        requires_2fa=requires_2fa,
    )


class FakeCursor:
    def __init__(self, row):
        self.row = row

    async def fetchone(self):
        return self.row


class FakeConnection:
    def __init__(self, pool):
        self.pool = pool

    async def execute(self, sql, params=None):
        self.pool.statements.append((" ".join(sql.split()), params))
        if self.pool.error is not None:
            raise self.pool.error
        return FakeCursor(self.pool.row)


class FakePool:
    """Async pool double; records statements instead of talking to Postgres."""

    def __init__(self):
        self.statements = []
        self.row = None
        self.error = None
        self.opened = False
        self.closed = False

    @contextlib.asynccontextmanager
    async def connection(self):
        yield FakeConnection(self)

    async def open(self):
        self.opened = True

    async def close(self):
        self.closed = True


class TestMemoryUserStore:
    async def test_add_and_get(self):
        store = MemoryUserStore()
        user = _user(requires_2fa=True)
        await store.add_user(user)
        assert await store.get_user(Email.parse("A@B.com")) == user

    async def test_duplicate_rejected(self):
        store = MemoryUserStore()
        await store.add_user(_user())
        with pytest.raises(UserAlreadyExistsError):
            await store.add_user(_user(email="A@b.com"))

    async def test_unknown_user(self):
        with pytest.raises(UserNotFoundError):
            await MemoryUserStore().get_user(Email.parse("missing@b.com"))


class TestPostgresUserStore:
    @pytest.fixture
    def pool(self):
        return FakePool()

    @pytest.fixture
    def store(self, pool):
        return PostgresUserStore("postgresql://unused", pool=pool)

    async def test_open_creates_table(self, store, pool):
        await store.open()
        assert pool.opened
        sql, _ = pool.statements[0]
        assert sql.startswith("CREATE TABLE IF NOT EXISTS users")
        assert "email TEXT PRIMARY KEY" in sql
        await store.close()
        assert pool.closed

    async def test_add_user_inserts_row(self, store, pool):
        await store.add_user(_user(requires_2fa=True))
        sql, params = pool.statements[-1]
        assert sql.startswith("INSERT INTO users (email, password_hash, requires_2fa)")
        assert params == ("a@b.com", _HASH, True)

    async def test_unique_violation_maps_to_already_exists(self, store, pool):
        pool.error = errors.UniqueViolation("duplicate key value")
        with pytest.raises(UserAlreadyExistsError):
            await store.add_user(_user())

    async def test_other_database_errors_are_unavailable(self, store, pool):
        pool.error = errors.OperationalError("server closed the connection")
        with pytest.raises(StoreUnavailableError):
            await store.add_user(_user())
        with pytest.raises(StoreUnavailableError):
            await store.get_user(Email.parse("a@b.com"))

    async def test_get_user_builds_model(self, store, pool):
        pool.row = {"email": "a@b.com", "password_hash": _HASH, "requires_2fa": True}
        user = await store.get_user(Email.parse("a@b.com"))
        assert user == _user(requires_2fa=True)
        assert pool.statements[-1][1] == ("a@b.com",)

    async def test_get_user_missing(self, store, pool):
        pool.row = None
        with pytest.raises(UserNotFoundError):
            await store.get_user(Email.parse("a@b.com"))

    async def test_corrupt_hash_is_unavailable(self, store, pool):
        pool.row = {"email": "a@b.com", "password_hash": "plaintext", "requires_2fa": False}
        with pytest.raises(StoreUnavailableError):
            await store.get_user(Email.parse("a@b.com"))
