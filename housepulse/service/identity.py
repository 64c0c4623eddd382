from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, Union

import httpx

from housepulse.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class IntegerValue:
    value: int

    def encode(self) -> int:
        return self.value


@dataclass(frozen=True)
class TextValue:
    value: str

    def encode(self) -> str:
        return self.value


@dataclass(frozen=True)
class BooleanValue:
    value: bool

    def encode(self) -> bool:
        return self.value


@dataclass(frozen=True)
class RealValue:
    value: float

    def encode(self) -> float:
        return self.value


MetadataValue = Union[IntegerValue, TextValue, BooleanValue, RealValue]


def decode_metadata_value(raw: Any) -> Optional[MetadataValue]:
    """Decode a JSON scalar from identity metadata.

    Returns ``None`` for shapes outside the four scalar variants (null,
    arrays, objects); callers drop those keys.
    """
    # bool is a subclass of int, so it has to be checked first
    if isinstance(raw, bool):
        return BooleanValue(raw)
    if isinstance(raw, int):
        return IntegerValue(raw)
    if isinstance(raw, float):
        return RealValue(raw)
    if isinstance(raw, str):
        return TextValue(raw)
    return None


def decode_metadata(raw: Any) -> Dict[str, MetadataValue]:
    if not isinstance(raw, Mapping):
        return {}
    decoded: Dict[str, MetadataValue] = {}
    for key, value in raw.items():
        item = decode_metadata_value(value)
        if item is None:
            logger.debug("identity_metadata_value_dropped", key=str(key), type=type(value).__name__)
            continue
        decoded[str(key)] = item
    return decoded


def encode_metadata(values: Mapping[str, MetadataValue]) -> Dict[str, Any]:
    return {key: value.encode() for key, value in values.items()}


@dataclass
class IdentityUser:
    id: str
    email: Optional[str] = None
    app_metadata: Dict[str, MetadataValue] = field(default_factory=dict)
    user_metadata: Dict[str, MetadataValue] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["IdentityUser"]:
        if not isinstance(payload, Mapping):
            return None
        user_id = payload.get("id")
        if not isinstance(user_id, str) or not user_id:
            return None
        email = payload.get("email")
        return cls(
            id=user_id,
            email=email if isinstance(email, str) else None,
            app_metadata=decode_metadata(payload.get("app_metadata")),
            user_metadata=decode_metadata(payload.get("user_metadata")),
        )


class IdentityProvider(Protocol):
    async def resolve(self, token: str) -> Optional[IdentityUser]: ...

    async def close(self) -> None: ...


class SupabaseIdentityProvider:
    """Resolve bearer tokens through the Supabase auth ``/user`` endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 5.0)),
                follow_redirects=False,
                transport=self._transport,
            )
        return self._client

    async def resolve(self, token: str) -> Optional[IdentityUser]:
        if not self.is_configured:
            logger.error("identity_provider_not_configured")
            return None
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.base_url}/auth/v1/user",
                headers={
                    "apikey": self.api_key,
                    "Authorization": f"Bearer {token}",
                },
            )
        except httpx.HTTPError as exc:
            logger.error(
                "identity_lookup_failed", error_type=type(exc).__name__, error=str(exc)
            )
            return None
        if response.status_code in (401, 403, 404):
            logger.info("identity_token_rejected", status_code=response.status_code)
            return None
        if response.status_code >= 400:
            logger.error("identity_lookup_http_error", status_code=response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.error("identity_payload_parse_error", status_code=response.status_code)
            return None
        user = IdentityUser.from_payload(payload)
        if user is None:
            logger.warning("identity_payload_missing_user")
        return user

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class StaticIdentityProvider:
    """Fixed token table for tests and local development."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self.tokens = dict(tokens)

    async def resolve(self, token: str) -> Optional[IdentityUser]:
        user_id = self.tokens.get(token)
        if not user_id:
            return None
        return IdentityUser(id=user_id)

    async def close(self) -> None:
        return None
