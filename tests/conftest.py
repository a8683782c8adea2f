import asyncio
import inspect
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

# Environment must be in place before devhub modules read settings
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-access-secret-for-testing-only-do-not-use")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-for-testing-only-do-not-use")
# No Redis in the default suite; rate limits use the in-process bucket
os.environ.setdefault("REDIS_URL", "")
# Integration tests log in many times from the same client address
os.environ.setdefault("LOGIN_RATE_LIMIT_PER_MINUTE", "1000")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from devhub.config import Settings  # noqa: E402
from devhub.service.runtime import reset_runtime_for_tests  # noqa: E402
from devhub.storage.memory import MemoryStore  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="unit-access-secret-0123456789abcdef",
        jwt_refresh_secret="unit-refresh-secret-fedcba9876543210",
    )


@pytest.fixture
def memory_store():
    return MemoryStore()


class FakeClock:
    """Settable clock for lock-window tests."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


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
