from __future__ import annotations

import os
from enum import Enum
from typing import Any, Dict

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from housepulse.logging import get_logger

logger = get_logger(__name__)


class IdentityBackend(str, Enum):
    """Where bearer tokens are resolved to user identities."""

    SUPABASE = "supabase"
    STATIC = "static"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the relay service."""

    identity_url: str = env_field("", "SUPABASE_URL")
    identity_api_key: str = env_field("", "SUPABASE_ANON_KEY")
    identity_backend: IdentityBackend = env_field(
        IdentityBackend.SUPABASE,
        "IDENTITY_BACKEND",
        description="supabase resolves tokens over HTTP; static uses STATIC_IDENTITY_TOKENS",
    )
    static_identity_tokens: str = env_field(
        "",
        "STATIC_IDENTITY_TOKENS",
        description="Comma separated token:user_id pairs for the static identity backend",
    )
    identity_timeout_seconds: float = env_field(10.0, "IDENTITY_TIMEOUT_SECONDS", gt=0)
    identity_cache_ttl_seconds: int = env_field(60, "IDENTITY_CACHE_TTL_SECONDS", ge=0)
    database_url: str = env_field(
        "postgresql://localhost:5432/housepulse", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    redis_url: str = env_field("", "REDIS_URL")
    free_tier_daily_limit: int = env_field(
        50,
        "FREE_TIER_DAILY_LIMIT",
        ge=0,
        description="Chat messages allowed per user per UTC day",
    )
    cors_allow_origin: str = env_field("*", "CORS_ALLOW_ORIGIN")
    test_mode: bool = env_field(False, "TEST_MODE")
    build_sha: str = env_field("dev", "BUILD_SHA")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("identity_backend")
    @classmethod
    def _validate_identity_backend(cls, value: IdentityBackend) -> IdentityBackend:
        return IdentityBackend(value)

    @field_validator("identity_url")
    @classmethod
    def _strip_identity_url(cls, value: str) -> str:
        return value.rstrip("/")

    def static_token_map(self) -> Dict[str, str]:
        """Parse ``STATIC_IDENTITY_TOKENS`` into a token -> user id map."""
        tokens: Dict[str, str] = {}
        for entry in self.static_identity_tokens.split(","):
            entry = entry.strip()
            if not entry:
                continue
            token, sep, user_id = entry.partition(":")
            if not sep or not token.strip() or not user_id.strip():
                logger.warning("static_identity_entry_ignored", position=len(tokens))
                continue
            tokens[token.strip()] = user_id.strip()
        return tokens


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
