from datetime import datetime, timedelta, timezone

import httpx
import pytest

from housepulse.app import create_app
from housepulse.client import (
    DailyUsageMirror,
    HousePulseAPIError,
    HousePulseClient,
    RateLimitExceededError,
)

HOME_ID = "3f2b8c1e-9a4d-4c6e-8b1f-2d7e5a9c0b13"
BASE_URL = "http://housepulse.test"


def _client(runtime, *, token="token-alice", usage=None):
    transport = httpx.ASGITransport(app=create_app(runtime))
    return HousePulseClient(BASE_URL, token, transport=transport, usage=usage)


async def test_client_pairs_checks_and_chats(runtime, clock):
    async with _client(runtime, usage=DailyUsageMirror(50, clock=clock)) as api:
        assert await api.pair_home(HOME_ID, "abcdefghij") is True

        status = await api.system_check(HOME_ID)
        assert status["ok"] is True
        assert status["notes"][0] == "Pairing reference validated"

        result = await api.chat(HOME_ID, [{"role": "user", "content": "sensor data please"}], locale="en-US")
        assert result.tool_events == [{"tool": "mcp_get_sensor_data", "status": "success"}]
        assert api.usage.count == 1
        assert api.usage.remaining() == 49


async def test_client_surfaces_server_errors(runtime):
    async with _client(runtime) as api:
        with pytest.raises(HousePulseAPIError) as excinfo:
            await api.system_check(HOME_ID)
    assert excinfo.value.status_code == 422
    assert excinfo.value.message == "Home not paired to user"


async def test_client_with_bad_token(runtime):
    async with _client(runtime, token="nope") as api:
        with pytest.raises(HousePulseAPIError) as excinfo:
            await api.pair_home(HOME_ID, "abcdefghij")
    assert excinfo.value.status_code == 401


async def test_client_sends_even_when_mirror_says_limit_reached(runtime, clock):
    mirror = DailyUsageMirror(50, clock=clock)
    mirror.sync_exhausted()
    assert mirror.limit_reached() is True

    async with _client(runtime, usage=mirror) as api:
        await api.pair_home(HOME_ID, "abcdefghij")
        result = await api.chat(HOME_ID, [{"role": "user", "content": "hello"}])

    assert result.reply == "Understood. How can I help you further?"
    assert runtime.usage.current_count("user-alice") == 1


async def test_client_reports_server_429_even_when_mirror_has_quota(runtime, store, clock):
    day = clock().date()
    for _ in range(50):
        store.increment_usage_if_under_limit("user-alice", day, 50)
    mirror = DailyUsageMirror(50, clock=clock)
    assert mirror.remaining() == 50

    async with _client(runtime, usage=mirror) as api:
        await api.pair_home(HOME_ID, "abcdefghij")
        with pytest.raises(RateLimitExceededError) as excinfo:
            await api.chat(HOME_ID, [{"role": "user", "content": "hello"}])

    assert excinfo.value.status_code == 429
    assert excinfo.value.message == "Free-tier message limit exceeded"
    assert mirror.remaining() == 0


def test_mirror_restarts_each_utc_day():
    now = {"value": datetime(2024, 5, 14, 23, 0, tzinfo=timezone.utc)}
    mirror = DailyUsageMirror(3, clock=lambda: now["value"])
    mirror.record()
    mirror.record()
    assert mirror.remaining() == 1

    now["value"] += timedelta(hours=2)

    assert mirror.count == 0
    assert mirror.remaining() == 3


def test_mirror_sync_never_lowers_count():
    mirror = DailyUsageMirror(2)
    for _ in range(3):
        mirror.record()
    mirror.sync_exhausted()
    assert mirror.count == 3
    assert mirror.remaining() == 0
