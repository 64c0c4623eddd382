from __future__ import annotations

import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from housepulse.config import IdentityBackend, Settings, get_settings, reset_settings_cache
from housepulse.logging import get_logger
from housepulse.service.auth import AuthService
from housepulse.service.chat import ChatRelay
from housepulse.service.identity import (
    IdentityProvider,
    StaticIdentityProvider,
    SupabaseIdentityProvider,
)
from housepulse.service.pairing import PairingService
from housepulse.service.responder import KeywordResponder, Responder
from housepulse.service.status import SystemStatusReporter
from housepulse.service.usage import UsageCounter
from housepulse.service.validation import Clock, utcnow
from housepulse.storage.memory import MemoryStore
from housepulse.storage.postgres import PostgresStore
from housepulse.storage.redis_cache import RedisCache

logger = get_logger(__name__)

Store = Union[MemoryStore, PostgresStore]


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Service graph for the HTTP app.

    Every collaborator can be passed in; anything omitted is built from
    ``settings``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[Store] = None,
        identity: Optional[IdentityProvider] = None,
        cache: Optional[RedisCache] = None,
        responder: Optional[Responder] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.clock = clock
        self.store = store if store is not None else self._build_store()
        self.identity = identity if identity is not None else self._build_identity()
        self.cache = cache if cache is not None else self._build_cache()
        self.responder = responder or KeywordResponder()

        self.auth = AuthService(
            self.identity,
            self.cache,
            cache_ttl_seconds=self.settings.identity_cache_ttl_seconds,
        )
        self.pairing = PairingService(self.store, clock=clock)
        self.usage = UsageCounter(self.store, clock=clock)
        self.chat = ChatRelay(
            self.pairing,
            self.usage,
            self.responder,
            daily_limit=self.settings.free_tier_daily_limit,
        )
        self.status = SystemStatusReporter(self.pairing, clock=clock)

        logger.info(
            "runtime_initialized",
            store_type=type(self.store).__name__,
            identity_provider=type(self.identity).__name__,
            identity_cache_enabled=self.cache is not None,
            daily_limit=self.settings.free_tier_daily_limit,
        )

    def _build_store(self) -> Store:
        if self.settings.use_memory_store:
            return MemoryStore()
        try:
            return PostgresStore(self.settings.database_url)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

    def _build_identity(self) -> IdentityProvider:
        if self.settings.identity_backend == IdentityBackend.STATIC:
            return StaticIdentityProvider(self.settings.static_token_map())
        provider = SupabaseIdentityProvider(
            self.settings.identity_url,
            self.settings.identity_api_key,
            timeout=self.settings.identity_timeout_seconds,
        )
        if not provider.is_configured:
            logger.warning(
                "identity_provider_unconfigured",
                message="SUPABASE_URL and SUPABASE_ANON_KEY are required; every request will be rejected.",
            )
        return provider

    def _build_cache(self) -> Optional[RedisCache]:
        if not self.settings.redis_url:
            return None
        try:
            cache = RedisCache(self.settings.redis_url)
            cache.verify_connection()
            return cache
        except Exception as exc:
            logger.warning(
                "identity_cache_disabled",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(exc),
            )
            return None

    async def close(self) -> None:
        await self.identity.close()
        if self.cache is not None:
            await self.cache.close()
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def set_runtime(value: Optional[Runtime]) -> None:
    global runtime
    with _runtime_lock:
        runtime = value


def reset_runtime_for_tests() -> None:
    """Drop the singleton and cached settings between test runs."""
    global runtime
    with _runtime_lock:
        reset_settings_cache()
        if not get_settings().test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = None
