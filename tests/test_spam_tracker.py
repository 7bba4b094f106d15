import threading

from conftest import FakeClock

from modsentry.automod.spam_tracker import DUPLICATE_SPAM, RATE_EXCEEDED, SpamTracker
from modsentry.datatypes.automod_datatypes import SpamFilterConfig


def test_rate_limit_triggers_on_message_after_limit() -> None:
    tracker = SpamTracker(clock=FakeClock())
    config = SpamFilterConfig(max_messages=3, window_seconds=5, max_duplicates=10)

    for i in range(3):
        assert tracker.check("u1", "c1", f"message {i}", config) == (False, "")
    assert tracker.check("u1", "c1", "message 3", config) == (True, RATE_EXCEEDED)


def test_duplicates_trigger_case_insensitively() -> None:
    tracker = SpamTracker(clock=FakeClock())
    config = SpamFilterConfig(max_messages=100, window_seconds=5, max_duplicates=2)

    assert tracker.check("u1", "c1", "Buy now", config)[0] is False
    assert tracker.check("u1", "c1", "BUY NOW", config)[0] is False
    assert tracker.check("u1", "c1", "buy now", config) == (True, DUPLICATE_SPAM)


def test_rate_is_checked_before_duplicates() -> None:
    tracker = SpamTracker(clock=FakeClock())
    config = SpamFilterConfig(max_messages=2, window_seconds=5, max_duplicates=1)

    tracker.check("u1", "c1", "same", config)
    tracker.check("u1", "c1", "same", config)
    assert tracker.check("u1", "c1", "same", config) == (True, RATE_EXCEEDED)


def test_window_expiry_resets_rate() -> None:
    clock = FakeClock()
    tracker = SpamTracker(clock=clock)
    config = SpamFilterConfig(max_messages=2, window_seconds=5, max_duplicates=10)

    tracker.check("u1", "c1", "a", config)
    tracker.check("u1", "c1", "b", config)
    clock.advance(6)
    assert tracker.check("u1", "c1", "c", config) == (False, "")
    assert [entry.content for entry in tracker.entries("u1", "c1")] == ["c"]


def test_keys_are_per_user_and_channel() -> None:
    tracker = SpamTracker(clock=FakeClock())
    config = SpamFilterConfig(max_messages=1, window_seconds=5, max_duplicates=10)

    assert tracker.check("u1", "c1", "x", config)[0] is False
    assert tracker.check("u1", "c2", "x", config)[0] is False
    assert tracker.check("u2", "c1", "x", config)[0] is False
    assert tracker.check("u1", "c1", "y", config)[0] is True
    assert len(tracker) == 3


def test_cleanup_removes_strictly_older_entries_and_empty_keys() -> None:
    clock = FakeClock(start=1000.0)
    tracker = SpamTracker(clock=clock)
    config = SpamFilterConfig(max_messages=50, window_seconds=10_000, max_duplicates=50)

    tracker.check("old", "c1", "a", config)      # t=1000
    clock.advance(40)
    tracker.check("mixed", "c1", "b", config)    # t=1040
    clock.advance(60)
    tracker.check("mixed", "c1", "c", config)    # t=1100

    # Horizon 60s at t=1100: cutoff 1040, entries at exactly 1040 stay
    assert tracker.cleanup(60) == 1
    assert SpamTracker.make_key("old", "c1") not in tracker
    assert [entry.content for entry in tracker.entries("mixed", "c1")] == ["b", "c"]

    # Idempotent
    assert tracker.cleanup(60) == 0
    assert [entry.content for entry in tracker.entries("mixed", "c1")] == ["b", "c"]


def test_entries_stay_sorted_under_concurrent_checks() -> None:
    tracker = SpamTracker()
    config = SpamFilterConfig(max_messages=10_000, window_seconds=60, max_duplicates=10_000)

    def worker(n: int) -> None:
        for i in range(200):
            tracker.check("u1", "c1", f"{n}-{i}", config)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    entries = tracker.entries("u1", "c1")
    assert len(entries) == 800
    timestamps = [entry.timestamp for entry in entries]
    assert timestamps == sorted(timestamps)
