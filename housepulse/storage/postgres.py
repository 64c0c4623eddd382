from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional, Tuple

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from housepulse.logging import get_logger
from housepulse.storage.errors import StorageError
from housepulse.storage.models import HomePairing

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS home_pairings (
        home_id UUID NOT NULL,
        user_id TEXT NOT NULL,
        key_hash CHAR(64) NOT NULL,
        paired_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (home_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_usage (
        user_id TEXT NOT NULL,
        date DATE NOT NULL,
        message_count INTEGER NOT NULL DEFAULT 0 CHECK (message_count >= 0),
        PRIMARY KEY (user_id, date)
    )
    """,
)

REQUIRED_TABLES = ("home_pairings", "chat_usage")


class PostgresStore:
    """Postgres-backed store for pairings and daily chat usage."""

    def __init__(self, dsn: str, *, verify_schema: bool = True) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        if verify_schema:
            self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def ensure_schema(self) -> None:
        """Create the pairing and usage tables if they are missing."""
        with self._connect() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)

    def _verify_required_schema(self) -> None:
        with self._connect() as conn:
            missing_tables = []
            for table in REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)
        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Run scripts/bootstrap_schema.py first.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    def upsert_pairing(
        self, home_id: str, user_id: str, key_hash: str, paired_at: datetime
    ) -> HomePairing:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO home_pairings (home_id, user_id, key_hash, paired_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (home_id, user_id) DO UPDATE
                    SET key_hash = EXCLUDED.key_hash,
                        paired_at = EXCLUDED.paired_at
                    RETURNING home_id, user_id, key_hash, paired_at
                    """,
                    (home_id, user_id, key_hash, paired_at),
                ).fetchone()
        except psycopg.Error as exc:
            self.logger.error(
                "pairing_upsert_failed", error_type=type(exc).__name__, home_id=home_id
            )
            raise StorageError("pairing write failed") from exc
        if not row:
            raise StorageError("pairing write returned no row")
        return self._pairing_from_row(row)

    def get_pairing(self, home_id: str, user_id: str) -> Optional[HomePairing]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT home_id, user_id, key_hash, paired_at
                    FROM home_pairings
                    WHERE home_id = %s AND user_id = %s
                    """,
                    (home_id, user_id),
                ).fetchone()
        except psycopg.Error as exc:
            self.logger.error(
                "pairing_lookup_failed", error_type=type(exc).__name__, home_id=home_id
            )
            raise StorageError("pairing lookup failed") from exc
        if not row:
            return None
        return self._pairing_from_row(row)

    def increment_usage_if_under_limit(
        self, user_id: str, day: date, limit: int
    ) -> Tuple[bool, int]:
        """Conditionally add one message in a single statement.

        The ``ON CONFLICT ... WHERE`` clause is evaluated against the locked
        row, so concurrent requests for the same user-day cannot both take
        the last slot.
        """
        if limit <= 0:
            return False, self.get_usage(user_id, day)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO chat_usage (user_id, date, message_count)
                    VALUES (%s, %s, 1)
                    ON CONFLICT (user_id, date) DO UPDATE
                    SET message_count = chat_usage.message_count + 1
                    WHERE chat_usage.message_count < %s
                    RETURNING message_count
                    """,
                    (user_id, day, limit),
                ).fetchone()
                if row:
                    return True, int(row["message_count"])
                current = conn.execute(
                    "SELECT message_count FROM chat_usage WHERE user_id = %s AND date = %s",
                    (user_id, day),
                ).fetchone()
        except psycopg.Error as exc:
            self.logger.error(
                "usage_increment_failed", error_type=type(exc).__name__, user_id=user_id
            )
            raise StorageError("usage write failed") from exc
        return False, int(current["message_count"]) if current else 0

    def get_usage(self, user_id: str, day: date) -> int:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT message_count FROM chat_usage WHERE user_id = %s AND date = %s",
                    (user_id, day),
                ).fetchone()
        except psycopg.Error as exc:
            raise StorageError("usage lookup failed") from exc
        return int(row["message_count"]) if row else 0

    @staticmethod
    def _parse_ts(value: Any) -> datetime:
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        parsed = datetime.fromisoformat(str(value))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    def _pairing_from_row(self, row: dict) -> HomePairing:
        return HomePairing(
            home_id=str(row["home_id"]),
            user_id=str(row["user_id"]),
            key_hash=(row.get("key_hash") or "").strip(),
            paired_at=self._parse_ts(row["paired_at"]),
        )
