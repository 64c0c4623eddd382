from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any, Optional, Protocol

from housepulse.logging import get_logger
from housepulse.service.errors import NotPairedError, StorageUnavailable, ValidationError
from housepulse.service.validation import (
    Clock,
    canonical_home_id,
    is_valid_device_key,
    is_valid_home_id,
    utcnow,
)
from housepulse.storage.errors import StorageError
from housepulse.storage.models import HomePairing

logger = get_logger(__name__)


class PairingStore(Protocol):
    def upsert_pairing(
        self, home_id: str, user_id: str, key_hash: str, paired_at: datetime
    ) -> HomePairing: ...

    def get_pairing(self, home_id: str, user_id: str) -> Optional[HomePairing]: ...


def hash_device_key(raw_key: str) -> str:
    """SHA-256 of the device credential as lowercase hex."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


class PairingService:
    """Create and look up home pairings; the raw device key never leaves this call."""

    def __init__(self, store: PairingStore, *, clock: Clock = utcnow) -> None:
        self.store = store
        self.clock = clock

    def upsert_pairing(self, home_id: Any, user_id: str, raw_key: Any) -> HomePairing:
        if not is_valid_home_id(home_id):
            raise ValidationError("Invalid home_id format")
        if not is_valid_device_key(raw_key):
            raise ValidationError("Invalid MCP API key")
        home_key = canonical_home_id(home_id)
        try:
            pairing = self.store.upsert_pairing(
                home_key, user_id, hash_device_key(raw_key), self.clock()
            )
        except StorageError as exc:
            logger.error("home_pairing_write_failed", home_id=home_key, user_id=user_id, error=exc.message)
            raise StorageUnavailable() from exc
        logger.info("home_paired", home_id=home_key, user_id=user_id)
        return pairing

    def find_pairing(self, home_id: str, user_id: str) -> Optional[HomePairing]:
        return self.store.get_pairing(canonical_home_id(home_id), user_id)

    def require_pairing(self, home_id: str, user_id: str) -> HomePairing:
        """Return the caller's pairing or raise ``NotPairedError``.

        Unknown homes and homes paired to another user raise the same error.
        """
        pairing = self.find_pairing(home_id, user_id)
        if pairing is None:
            logger.warning("home_not_paired", home_id=canonical_home_id(home_id), user_id=user_id)
            raise NotPairedError()
        return pairing
