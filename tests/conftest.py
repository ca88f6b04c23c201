import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="authservice_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")

import pytest  # noqa: E402
from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from authservice.service.runtime import reset_runtime_for_tests  # noqa: E402


class FakeAsyncRedis:
    """In-process stand-in for the subset of ``redis.asyncio.Redis`` the stores use."""

    def __init__(self):
        self.data = {}
        self.expiries = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def set(self, key, value, ex=None, nx=False):
        self._check()
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.expiries[key] = ex
        return True

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def exists(self, *keys):
        self._check()
        return sum(1 for key in keys if key in self.data)

    async def delete(self, *keys):
        self._check()
        deleted = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.expiries.pop(key, None)
                deleted += 1
        return deleted

    def expire_now(self, key):
        """Simulate Redis evicting ``key`` when its TTL runs out."""
        self.data.pop(key, None)
        self.expiries.pop(key, None)


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_redis():
    return FakeAsyncRedis()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
