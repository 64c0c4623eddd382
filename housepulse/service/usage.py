from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timezone
from typing import Protocol, Tuple

from housepulse.logging import get_logger
from housepulse.service.validation import Clock, utcnow

logger = get_logger(__name__)


class UsageStore(Protocol):
    def increment_usage_if_under_limit(
        self, user_id: str, day: date, limit: int
    ) -> Tuple[bool, int]: ...

    def get_usage(self, user_id: str, day: date) -> int: ...


@dataclass(frozen=True)
class UsageDecision:
    allowed: bool
    new_count: int


class UsageCounter:
    """Per-user, per-UTC-day message counter.

    The store performs the compare and the increment as one atomic step, so
    this class holds no state of its own.
    """

    def __init__(self, store: UsageStore, *, clock: Clock = utcnow) -> None:
        self.store = store
        self.clock = clock

    def today(self) -> date:
        now = self.clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.date()

    def increment_if_under_limit(self, user_id: str, limit: int) -> UsageDecision:
        day = self.today()
        allowed, count = self.store.increment_usage_if_under_limit(user_id, day, limit)
        if not allowed:
            logger.info("usage_limit_reached", user_id=user_id, day=day.isoformat(), count=count, limit=limit)
        return UsageDecision(allowed=allowed, new_count=count)

    def current_count(self, user_id: str) -> int:
        return self.store.get_usage(user_id, self.today())
