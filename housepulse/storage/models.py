from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime


@dataclass
class HomePairing:
    home_id: str
    user_id: str
    key_hash: str
    paired_at: datetime


@dataclass
class UsageRecord:
    user_id: str
    date: date
    message_count: int = 0
