import asyncio
import inspect
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Environment must be in place before any housepulse import reads settings
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("IDENTITY_BACKEND", "static")
os.environ.setdefault("STATIC_IDENTITY_TOKENS", "token-alice:user-alice,token-bob:user-bob")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fastapi.testclient import TestClient  # noqa: E402

from housepulse.app import create_app  # noqa: E402
from housepulse.config import Settings  # noqa: E402
from housepulse.service.identity import StaticIdentityProvider  # noqa: E402
from housepulse.service.runtime import Runtime, reset_runtime_for_tests  # noqa: E402
from housepulse.storage.memory import MemoryStore  # noqa: E402

ALICE_TOKEN = "token-alice"
BOB_TOKEN = "token-bob"
HOME_ID = "3f2b8c1e-9a4d-4c6e-8b1f-2d7e5a9c0b13"
DEVICE_KEY = "abcdefghij"


class MutableClock:
    """Test clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return MutableClock(datetime(2024, 5, 14, 9, 30, 0, 250000, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    return Settings(
        identity_backend="static",
        static_identity_tokens=f"{ALICE_TOKEN}:user-alice,{BOB_TOKEN}:user-bob",
        use_memory_store=True,
        free_tier_daily_limit=50,
        test_mode=True,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def runtime(settings, store, clock):
    return Runtime(
        settings,
        store=store,
        identity=StaticIdentityProvider(settings.static_token_map()),
        clock=clock,
    )


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime))


@pytest.fixture
def alice_headers():
    return {"Authorization": f"Bearer {ALICE_TOKEN}"}


@pytest.fixture
def bob_headers():
    return {"Authorization": f"Bearer {BOB_TOKEN}"}


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
