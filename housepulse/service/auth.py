from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from housepulse.logging import get_logger
from housepulse.service.errors import InvalidAuthentication, MissingAuthorization
from housepulse.service.identity import IdentityProvider
from housepulse.storage.redis_cache import RedisCache

logger = get_logger(__name__)


@dataclass
class AuthContext:
    user_id: str


class AuthService:
    """Resolve an ``Authorization`` header to a user through the identity provider."""

    def __init__(
        self,
        identity: IdentityProvider,
        cache: Optional[RedisCache] = None,
        *,
        cache_ttl_seconds: int = 60,
    ) -> None:
        self.identity = identity
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds

    @staticmethod
    def _extract_bearer(header: str) -> str:
        value = header.strip()
        if value.lower().startswith("bearer "):
            return value[7:].strip()
        return value

    async def authenticate(self, authorization: Optional[str]) -> AuthContext:
        if not authorization or not authorization.strip():
            raise MissingAuthorization()
        token = self._extract_bearer(authorization)
        if not token:
            raise InvalidAuthentication()

        if self.cache and self.cache_ttl_seconds > 0:
            try:
                cached_user = await self.cache.get_identity(token)
            except Exception as exc:
                # Cache outage falls back to the identity provider
                logger.warning("identity_cache_read_failed", error=str(exc))
                cached_user = None
            if cached_user:
                return AuthContext(user_id=cached_user)

        user = await self.identity.resolve(token)
        if user is None or not user.id:
            raise InvalidAuthentication()

        if self.cache and self.cache_ttl_seconds > 0:
            try:
                await self.cache.set_identity(token, user.id, self.cache_ttl_seconds)
            except Exception as exc:
                logger.warning("identity_cache_write_failed", error=str(exc))
        return AuthContext(user_id=user.id)
