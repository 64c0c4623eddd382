from __future__ import annotations

import hashlib
from typing import Optional

import redis.asyncio as aioredis
from redis import Redis


class RedisCache:
    """Thin Redis wrapper caching resolved bearer tokens."""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling the identity cache."""
        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    @staticmethod
    def _identity_key(token: str) -> str:
        """Key identities by token digest so raw tokens never sit in Redis."""
        digest = hashlib.sha256(token.encode()).hexdigest()
        return f"auth:identity:{digest}"

    async def get_identity(self, token: str) -> Optional[str]:
        return await self.client.get(self._identity_key(token))

    async def set_identity(self, token: str, user_id: str, ttl_seconds: int) -> None:
        await self.client.set(self._identity_key(token), user_id, ex=max(1, ttl_seconds))

    async def close(self) -> None:
        await self.client.aclose()
