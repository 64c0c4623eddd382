from contextlib import contextmanager
from datetime import date, datetime, timezone

import psycopg
import pytest

from housepulse.logging import get_logger
from housepulse.storage.errors import StorageError
from housepulse.storage.postgres import PostgresStore

HOME_ID = "3f2b8c1e-9a4d-4c6e-8b1f-2d7e5a9c0b13"


class StubCursor:
    def __init__(self, row):
        self.row = row

    def fetchone(self):
        return self.row


class StubConnection:
    def __init__(self, rows, *, error=None):
        self.rows = list(rows)
        self.error = error
        self.statements = []

    def execute(self, sql, params=None):
        if self.error is not None:
            raise self.error
        self.statements.append((" ".join(sql.split()), params))
        return StubCursor(self.rows.pop(0) if self.rows else None)


class StubPool:
    def __init__(self, conn):
        self.conn = conn
        self.closed = False

    @contextmanager
    def connection(self):
        yield self.conn

    def close(self):
        self.closed = True


def _store(rows=(), *, error=None):
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    conn = StubConnection(rows, error=error)
    store.dsn = "postgresql://stub"
    store.pool = StubPool(conn)
    store.logger = get_logger("test")
    return store, conn


def test_upsert_pairing_uses_on_conflict_and_strips_char_padding():
    paired_at = datetime(2024, 5, 14, 9, 30, tzinfo=timezone.utc)
    store, conn = _store(
        [{"home_id": HOME_ID, "user_id": "user-alice", "key_hash": "a" * 64 + "  ", "paired_at": paired_at}]
    )

    pairing = store.upsert_pairing(HOME_ID, "user-alice", "a" * 64, paired_at)

    sql, params = conn.statements[0]
    assert "ON CONFLICT (home_id, user_id) DO UPDATE" in sql
    assert "RETURNING" in sql
    assert params == (HOME_ID, "user-alice", "a" * 64, paired_at)
    assert pairing.key_hash == "a" * 64
    assert pairing.paired_at == paired_at


def test_get_pairing_missing_returns_none():
    store, conn = _store([None])
    assert store.get_pairing(HOME_ID, "user-alice") is None
    assert conn.statements[0][1] == (HOME_ID, "user-alice")


def test_get_pairing_parses_naive_timestamps_as_utc():
    store, _ = _store(
        [{"home_id": HOME_ID, "user_id": "user-alice", "key_hash": "b" * 64, "paired_at": "2024-05-14T09:30:00"}]
    )
    pairing = store.get_pairing(HOME_ID, "user-alice")
    assert pairing.paired_at == datetime(2024, 5, 14, 9, 30, tzinfo=timezone.utc)


def test_increment_is_a_single_conditional_upsert():
    day = date(2024, 5, 14)
    store, conn = _store([{"message_count": 7}])

    allowed, count = store.increment_usage_if_under_limit("user-alice", day, 50)

    assert (allowed, count) == (True, 7)
    assert len(conn.statements) == 1
    sql, params = conn.statements[0]
    assert "ON CONFLICT (user_id, date) DO UPDATE" in sql
    assert "WHERE chat_usage.message_count < %s" in sql
    assert params == ("user-alice", day, 50)


def test_increment_at_limit_reports_current_count():
    day = date(2024, 5, 14)
    store, conn = _store([None, {"message_count": 50}])

    allowed, count = store.increment_usage_if_under_limit("user-alice", day, 50)

    assert (allowed, count) == (False, 50)
    assert conn.statements[1][0].startswith("SELECT message_count FROM chat_usage")


def test_zero_limit_only_reads():
    store, conn = _store([None])
    assert store.increment_usage_if_under_limit("user-alice", date(2024, 5, 14), 0) == (False, 0)
    assert conn.statements[0][0].startswith("SELECT")


def test_driver_errors_become_storage_errors():
    store, _ = _store(error=psycopg.OperationalError("connection refused"))

    with pytest.raises(StorageError):
        store.get_pairing(HOME_ID, "user-alice")
    with pytest.raises(StorageError):
        store.upsert_pairing(HOME_ID, "user-alice", "c" * 64, datetime.now(timezone.utc))
    with pytest.raises(StorageError):
        store.increment_usage_if_under_limit("user-alice", date(2024, 5, 14), 5)


def test_ensure_schema_creates_both_tables():
    store, conn = _store()
    store.ensure_schema()
    created = " ".join(sql for sql, _ in conn.statements)
    assert "CREATE TABLE IF NOT EXISTS home_pairings" in created
    assert "CREATE TABLE IF NOT EXISTS chat_usage" in created


def test_close_closes_pool():
    store, _ = _store()
    store.close()
    assert store.pool.closed is True
