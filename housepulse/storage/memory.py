from __future__ import annotations

import threading
from dataclasses import replace
from datetime import date, datetime
from typing import Dict, Optional, Tuple

from housepulse.logging import get_logger
from housepulse.storage.models import HomePairing, UsageRecord


class MemoryStore:
    """In-process backing store for tests and local development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.pairings: Dict[Tuple[str, str], HomePairing] = {}
        self.usage: Dict[Tuple[str, date], UsageRecord] = {}
        # RLock for all data operations so check-then-act sequences stay atomic
        self._data_lock = threading.RLock()

    def upsert_pairing(
        self, home_id: str, user_id: str, key_hash: str, paired_at: datetime
    ) -> HomePairing:
        with self._data_lock:
            pairing = HomePairing(
                home_id=home_id,
                user_id=user_id,
                key_hash=key_hash,
                paired_at=paired_at,
            )
            self.pairings[(home_id, user_id)] = pairing
            return replace(pairing)

    def get_pairing(self, home_id: str, user_id: str) -> Optional[HomePairing]:
        with self._data_lock:
            pairing = self.pairings.get((home_id, user_id))
            return replace(pairing) if pairing else None

    def increment_usage_if_under_limit(
        self, user_id: str, day: date, limit: int
    ) -> Tuple[bool, int]:
        """Add one message for ``(user_id, day)`` unless ``limit`` is reached.

        Returns ``(allowed, count)`` where ``count`` is the stored value after
        the call.
        """
        with self._data_lock:
            record = self.usage.get((user_id, day))
            current = record.message_count if record else 0
            if limit <= 0 or current >= limit:
                return False, current
            if record is None:
                record = UsageRecord(user_id=user_id, date=day)
                self.usage[(user_id, day)] = record
            record.message_count = current + 1
            return True, record.message_count

    def get_usage(self, user_id: str, day: date) -> int:
        with self._data_lock:
            record = self.usage.get((user_id, day))
            return record.message_count if record else 0
