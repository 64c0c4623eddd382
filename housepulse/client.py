from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import date, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from housepulse.logging import get_logger
from housepulse.service.validation import Clock, utcnow

logger = get_logger(__name__)

DEFAULT_DAILY_LIMIT = 50


class HousePulseAPIError(Exception):
    """Non-2xx answer from the relay, carrying the server's ``error`` text."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class RateLimitExceededError(HousePulseAPIError):
    pass


class DailyUsageMirror:
    """Local running count of today's chat messages, for display only.

    The server decides whether a message is allowed. The mirror never blocks
    a send and is corrected from server answers: a 429 marks the day as
    exhausted, and the count restarts when the UTC date changes.
    """

    def __init__(self, limit: int = DEFAULT_DAILY_LIMIT, *, clock: Clock = utcnow) -> None:
        self.limit = limit
        self.clock = clock
        self._lock = threading.Lock()
        self._day: Optional[date] = None
        self._count = 0

    def _today(self) -> date:
        now = self.clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.date()

    def _roll(self) -> None:
        today = self._today()
        if self._day != today:
            self._day = today
            self._count = 0

    @property
    def count(self) -> int:
        with self._lock:
            self._roll()
            return self._count

    def record(self) -> int:
        with self._lock:
            self._roll()
            self._count += 1
            return self._count

    def remaining(self) -> int:
        with self._lock:
            self._roll()
            return max(0, self.limit - self._count)

    def limit_reached(self) -> bool:
        return self.remaining() == 0

    def sync_exhausted(self) -> None:
        with self._lock:
            self._roll()
            self._count = max(self._count, self.limit)


@dataclass
class ChatResult:
    reply: str
    tool_events: List[Dict[str, str]] = field(default_factory=list)


class HousePulseClient:
    """Async client for the pairing, status and chat endpoints."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        usage: Optional[DailyUsageMirror] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.api_key = api_key
        self.timeout = timeout
        self.usage = usage or DailyUsageMirror()
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    async def __aenter__(self) -> "HousePulseClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}",
        }
        if self.api_key:
            headers["apikey"] = self.api_key
        return headers

    async def _post(self, path: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        response = await self._client.post(path, json=dict(payload), headers=self._headers())
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if response.status_code == 200:
            return body
        message = body.get("error") or "Unknown error"
        logger.warning("housepulse_request_failed", path=path, status_code=response.status_code, error=message)
        if response.status_code == 429:
            raise RateLimitExceededError(response.status_code, message)
        raise HousePulseAPIError(response.status_code, message)

    async def pair_home(self, home_id: str, mcp_api_key: str) -> bool:
        body = await self._post("/pair_home", {"home_id": home_id, "mcp_api_key": mcp_api_key})
        return bool(body.get("paired"))

    async def system_check(self, home_id: str) -> Dict[str, Any]:
        return await self._post("/system_check", {"home_id": home_id})

    async def chat(
        self,
        home_id: str,
        messages: Sequence[Mapping[str, str]],
        *,
        locale: Optional[str] = None,
    ) -> ChatResult:
        """Send the conversation; the local mirror is updated from the server's answer."""
        payload: Dict[str, Any] = {
            "home_id": home_id,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
        }
        if locale:
            payload["locale"] = locale
        try:
            body = await self._post("/chat", payload)
        except RateLimitExceededError:
            self.usage.sync_exhausted()
            raise
        self.usage.record()
        return ChatResult(reply=body.get("reply", ""), tool_events=list(body.get("tool_events") or []))
