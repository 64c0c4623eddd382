import pytest
from pydantic import ValidationError

from housepulse.config import IdentityBackend, Settings, get_settings, reset_settings_cache
from housepulse.logging import _redact_secrets
from housepulse.service.runtime import _mask_url_password


def test_from_env_reads_named_variables(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co/")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
    monkeypatch.setenv("IDENTITY_BACKEND", "supabase")
    monkeypatch.setenv("FREE_TIER_DAILY_LIMIT", "10")
    monkeypatch.setenv("USE_MEMORY_STORE", "false")

    settings = Settings.from_env()

    assert settings.identity_url == "https://project.supabase.co"
    assert settings.identity_api_key == "anon"
    assert settings.identity_backend is IdentityBackend.SUPABASE
    assert settings.free_tier_daily_limit == 10
    assert settings.use_memory_store is False


def test_defaults():
    settings = Settings()
    assert settings.free_tier_daily_limit == 50
    assert settings.identity_timeout_seconds == 10.0
    assert settings.cors_allow_origin == "*"
    assert settings.redis_url == ""


@pytest.mark.parametrize(
    "overrides",
    [
        {"free_tier_daily_limit": -1},
        {"identity_timeout_seconds": 0},
        {"identity_backend": "ldap"},
    ],
)
def test_invalid_values_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_static_token_map_skips_malformed_entries():
    settings = Settings(static_identity_tokens="a:user-a, broken ,:nouser,b: user-b ,")
    assert settings.static_token_map() == {"a": "user-a", "b": "user-b"}


def test_get_settings_is_cached_until_reset(monkeypatch):
    reset_settings_cache()
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("FREE_TIER_DAILY_LIMIT", "7")
    reset_settings_cache()
    assert get_settings().free_tier_daily_limit == 7


def test_secret_fields_are_redacted_in_logs():
    event = _redact_secrets(
        None,
        "info",
        {"event": "x", "mcp_api_key": "abcdefghij", "key_hash": "f" * 64, "authorization": "Bearer t", "home_id": "h"},
    )
    assert event["mcp_api_key"] == "[redacted]"
    assert event["key_hash"] == "[redacted]"
    assert event["authorization"] == "[redacted]"
    assert event["home_id"] == "h"


def test_mask_url_password():
    assert _mask_url_password("redis://:pw@localhost:6379/0") == "redis://:***@localhost:6379/0"
    assert _mask_url_password("postgresql://u:pw@db:5432/x") == "postgresql://u:***@db:5432/x"
    assert _mask_url_password("redis://localhost:6379") == "redis://localhost:6379"
