import threading
from datetime import date, datetime, timedelta, timezone

from housepulse.service.usage import UsageCounter
from housepulse.storage.memory import MemoryStore


def test_limit_allows_exactly_limit_calls(clock):
    store = MemoryStore()
    counter = UsageCounter(store, clock=clock)

    counts = [counter.increment_if_under_limit("user-alice", 50) for _ in range(50)]

    assert all(decision.allowed for decision in counts)
    assert [decision.new_count for decision in counts] == list(range(1, 51))

    denied = counter.increment_if_under_limit("user-alice", 50)
    assert denied.allowed is False
    assert denied.new_count == 50
    assert counter.current_count("user-alice") == 50


def test_quota_is_per_user(clock):
    counter = UsageCounter(MemoryStore(), clock=clock)
    for _ in range(3):
        counter.increment_if_under_limit("user-alice", 3)

    assert counter.increment_if_under_limit("user-alice", 3).allowed is False
    bob = counter.increment_if_under_limit("user-bob", 3)
    assert bob.allowed is True
    assert bob.new_count == 1


def test_quota_resets_at_utc_day_rollover(clock):
    store = MemoryStore()
    counter = UsageCounter(store, clock=clock)
    clock.now = datetime(2024, 5, 14, 23, 59, 0, tzinfo=timezone.utc)
    for _ in range(2):
        counter.increment_if_under_limit("user-alice", 2)
    assert counter.increment_if_under_limit("user-alice", 2).allowed is False

    clock.advance(minutes=2)
    decision = counter.increment_if_under_limit("user-alice", 2)

    assert decision.allowed is True
    assert decision.new_count == 1
    # yesterday's record is kept as history
    assert store.get_usage("user-alice", date(2024, 5, 14)) == 2
    assert store.get_usage("user-alice", date(2024, 5, 15)) == 1


def test_day_is_taken_in_utc_for_offset_clocks(clock):
    counter = UsageCounter(MemoryStore(), clock=clock)
    # 01:00 at +02:00 is still the previous day in UTC
    clock.now = datetime(2024, 5, 15, 1, 0, tzinfo=timezone(timedelta(hours=2)))
    assert counter.today() == date(2024, 5, 14)


def test_zero_limit_denies_without_creating_a_record(clock):
    store = MemoryStore()
    counter = UsageCounter(store, clock=clock)

    decision = counter.increment_if_under_limit("user-alice", 0)

    assert decision.allowed is False
    assert decision.new_count == 0
    assert store.usage == {}


def test_concurrent_increments_never_exceed_limit(clock):
    counter = UsageCounter(MemoryStore(), clock=clock)
    results = []
    lock = threading.Lock()

    def worker():
        for _ in range(10):
            decision = counter.increment_if_under_limit("user-alice", 25)
            with lock:
                results.append(decision)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    allowed = [d for d in results if d.allowed]
    assert len(allowed) == 25
    assert sorted(d.new_count for d in allowed) == list(range(1, 26))
    assert counter.current_count("user-alice") == 25
