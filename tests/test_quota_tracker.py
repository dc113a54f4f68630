import asyncio
from datetime import datetime, timedelta

from governor.errors import QuotaPersistenceError
from governor.quota_state import QuotaHistoryEntry, QuotaState
from governor.quota_store import InMemoryQuotaStore
from governor.quota_tracker import QuotaTracker

T0 = datetime(2024, 3, 10, 12, 0, 0)


class FakeNow:
    def __init__(self, ts=T0):
        self.ts = ts

    def __call__(self):
        return self.ts

    def advance(self, **kw):
        self.ts += timedelta(**kw)


class BrokenStore:
    kind = "broken"

    def load(self):
        raise QuotaPersistenceError("disk on fire")

    def save(self, state):
        raise QuotaPersistenceError("read-only filesystem")


def _ms(ts):
    return int(ts.timestamp() * 1000)


def test_third_call_over_minute_quota_of_two_is_flagged():
    tracker = QuotaTracker(InMemoryQuotaStore(), minute_quota=2, now=FakeNow())
    flags = [tracker.record().is_quota_exceeded for _ in range(3)]
    assert flags == [False, False, True]


def test_minute_counter_counts_calls_and_reports_time_to_reset():
    now = FakeNow()
    tracker = QuotaTracker(InMemoryQuotaStore(), minute_quota=3, now=now)
    results = []
    for _ in range(5):
        results.append(tracker.record())
        now.advance(seconds=5)
    assert [r.state.requests_this_minute for r in results] == [1, 2, 3, 4, 5]
    assert [r.is_quota_exceeded for r in results] == [False, False, False, True, True]
    # 4th call happens 15s into the window.
    assert results[3].time_to_reset_ms == 45_000
    assert results[0].time_to_reset_ms == 0
    assert results[4].state.quota_exceeded_count == 2


def test_minute_window_rolls_from_the_call_that_resets_it():
    now = FakeNow()
    tracker = QuotaTracker(InMemoryQuotaStore(), minute_quota=2, now=now)
    tracker.record()
    tracker.record()
    now.advance(seconds=61, milliseconds=500)
    status = tracker.record()
    assert status.state.requests_this_minute == 1
    assert status.state.minute_window_start == _ms(now.ts)
    assert status.state.requests_today == 3
    assert not status.is_quota_exceeded


def test_window_not_reset_before_sixty_seconds():
    now = FakeNow()
    tracker = QuotaTracker(InMemoryQuotaStore(), minute_quota=5, now=now)
    tracker.record()
    now.advance(seconds=59, milliseconds=999)
    assert tracker.record().state.requests_this_minute == 2


def test_daily_rollover_archives_previous_day():
    now = FakeNow()
    tracker = QuotaTracker(InMemoryQuotaStore(), minute_quota=1, now=now)
    for _ in range(3):
        tracker.record()
    now.advance(days=1)
    status = tracker.record()
    assert status.state.requests_today == 1
    assert status.state.day_key == "2024-03-11"
    assert status.state.quota_exceeded_count == 0
    last = status.state.history[-1]
    assert (last.date, last.requests, last.quota_exceeds) == ("2024-03-10", 3, 2)


def test_history_keeps_thirty_most_recent_days():
    seeded = QuotaState(
        requests_today=7,
        minute_window_start=_ms(T0),
        day_key="2024-03-09",
        history=[QuotaHistoryEntry(date=f"day-{i}", requests=i) for i in range(30)],
    )
    tracker = QuotaTracker(InMemoryQuotaStore(seeded), now=FakeNow())
    state = tracker.record().state
    assert len(state.history) == 30
    assert state.history[0].date == "day-1"
    assert state.history[-1].date == "2024-03-09"
    assert state.history[-1].requests == 7


def test_daily_quota_flags_at_the_ceiling():
    tracker = QuotaTracker(InMemoryQuotaStore(), minute_quota=100, daily_quota=3, now=FakeNow())
    assert [tracker.record().is_quota_exceeded for _ in range(3)] == [False, False, True]


def test_check_is_read_only():
    store = InMemoryQuotaStore()
    now = FakeNow()
    tracker = QuotaTracker(store, minute_quota=4, now=now)
    tracker.record()
    tracker.record()
    saves = store.saves
    a = tracker.check()
    now.advance(seconds=3)
    b = tracker.check()
    assert store.saves == saves
    assert a.state.requests_this_minute == b.state.requests_this_minute == 2
    assert a.state.requests_today == b.state.requests_today == 2


def test_check_rejects_one_slot_before_record_flags():
    now = FakeNow()
    tracker = QuotaTracker(InMemoryQuotaStore(), minute_quota=2, now=now)
    assert not tracker.record().is_quota_exceeded
    assert not tracker.record().is_quota_exceeded
    now.advance(seconds=10)
    status = tracker.check()
    assert status.is_quota_exceeded
    assert status.time_to_reset_ms == 50_000
    assert not tracker.may_proceed()


def test_check_after_window_elapsed_reports_available_without_resetting():
    now = FakeNow()
    tracker = QuotaTracker(InMemoryQuotaStore(), minute_quota=1, now=now)
    tracker.record()
    tracker.record()
    now.advance(minutes=2)
    status = tracker.check()
    assert not status.is_quota_exceeded
    assert status.time_to_reset_ms == 0
    assert status.state.requests_this_minute == 2
    assert tracker.may_proceed()


def test_storage_failures_fall_back_to_memory():
    tracker = QuotaTracker(BrokenStore(), minute_quota=2, now=FakeNow())
    tracker.init()
    assert tracker.record().state.requests_this_minute == 1
    assert tracker.record().state.requests_this_minute == 2
    assert tracker.check().is_quota_exceeded


def test_state_survives_a_new_tracker_on_the_same_store():
    store = InMemoryQuotaStore()
    now = FakeNow()
    QuotaTracker(store, now=now).record()
    QuotaTracker(store, now=now).record()
    status = QuotaTracker(store, now=now).check()
    assert status.state.requests_today == 2


def test_configured_quotas_override_persisted_ceilings():
    seeded = QuotaState(minute_window_start=_ms(T0), day_key="2024-03-10", minute_quota=5, daily_quota=50)
    tracker = QuotaTracker(InMemoryQuotaStore(seeded), minute_quota=15, daily_quota=120, now=FakeNow())
    state = tracker.check().state
    assert (state.minute_quota, state.daily_quota) == (15, 120)


def test_arecord_counts_then_saves_the_snapshot():
    store = InMemoryQuotaStore()
    tracker = QuotaTracker(store, minute_quota=1, now=FakeNow())
    first = asyncio.run(tracker.arecord())
    second = asyncio.run(tracker.arecord())
    assert (first.is_quota_exceeded, second.is_quota_exceeded) == (False, True)
    assert store.saves == 2
    assert store.load().requests_this_minute == 2


def test_record_without_persist_leaves_the_store_alone():
    store = InMemoryQuotaStore()
    tracker = QuotaTracker(store, now=FakeNow())
    status = tracker.record(persist=False)
    assert status.state.requests_today == 1
    assert store.saves == 0


def test_older_snapshot_never_overwrites_a_newer_one():
    store = InMemoryQuotaStore()
    tracker = QuotaTracker(store, now=FakeNow())
    older = tracker.record(persist=False).state
    newer = tracker.record(persist=False).state
    tracker._save_snapshot(2, newer)
    tracker._save_snapshot(1, older)
    assert store.saves == 1
    assert store.load().requests_today == 2
