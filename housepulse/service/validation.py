from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable

# RFC-4122 lexical form: 8-4-4-4-12 hex groups, any case
HOME_ID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)

MIN_DEVICE_KEY_LENGTH = 10

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_valid_home_id(value: Any) -> bool:
    return isinstance(value, str) and HOME_ID_PATTERN.fullmatch(value) is not None


def canonical_home_id(value: str) -> str:
    """Lowercase form used as the storage key."""
    return value.lower()


def is_valid_device_key(value: Any) -> bool:
    return isinstance(value, str) and len(value) >= MIN_DEVICE_KEY_LENGTH
