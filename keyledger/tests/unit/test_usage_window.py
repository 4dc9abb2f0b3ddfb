from __future__ import annotations

from datetime import datetime, timedelta, timezone

from keyledger.services.usage import monthly_total, prune_history, record_usage
from keyledger.tests.utils.factories import make_record


NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def test_first_usage_creates_today_entry_without_mutating_input() -> None:
    record = make_record(NOW)
    updated = record_usage(record, NOW)

    assert updated.request_history == {TODAY: 1}
    assert updated.daily_requests == 1
    assert updated.monthly_requests == 1
    assert updated.last_access == NOW
    assert updated.updated_at == NOW
    assert record.request_history == {}
    assert record.last_access is None


def test_monthly_total_covers_last_thirty_calendar_days() -> None:
    history = {
        TODAY: 2,
        TODAY - timedelta(days=10): 5,
        TODAY - timedelta(days=29): 1,
        TODAY - timedelta(days=30): 3,
        TODAY - timedelta(days=31): 7,
        TODAY - timedelta(days=60): 11,
    }
    assert monthly_total(history, TODAY) == 8


def test_window_boundary_days_drop_out_on_update() -> None:
    record = make_record(
        NOW,
        request_history={TODAY - timedelta(days=30): 5, TODAY - timedelta(days=90): 7},
    )
    updated = record_usage(record, NOW)
    assert updated.monthly_requests == 1
    assert TODAY - timedelta(days=90) not in updated.request_history
    assert updated.request_history[TODAY - timedelta(days=30)] == 5


def test_monthly_requests_is_recomputed_not_accumulated() -> None:
    # A drifted stored total must not leak into the new value.
    record = make_record(
        NOW,
        request_history={TODAY - timedelta(days=45): 50},
        monthly_requests=999,
        daily_requests=42,
    )
    updated = record_usage(record, NOW)
    assert updated.monthly_requests == 1
    assert updated.daily_requests == 1


def test_history_pruned_past_retention() -> None:
    record = make_record(
        NOW,
        request_history={
            TODAY - timedelta(days=89): 4,
            TODAY - timedelta(days=90): 6,
            TODAY - timedelta(days=400): 1,
        },
    )
    updated = record_usage(record, NOW)
    cutoff = TODAY - timedelta(days=90)
    assert all(day > cutoff for day in updated.request_history)
    assert updated.request_history[TODAY - timedelta(days=89)] == 4
    assert TODAY - timedelta(days=90) not in updated.request_history


def test_prune_history_keeps_recent_entries() -> None:
    history = {TODAY: 1, TODAY - timedelta(days=5): 2, TODAY - timedelta(days=95): 3}
    assert prune_history(history, TODAY) == {TODAY: 1, TODAY - timedelta(days=5): 2}


def test_forty_requests_over_three_days() -> None:
    record = make_record(NOW)
    now = NOW
    for day_offset, count in ((0, 12), (1, 13), (2, 15)):
        now = NOW + timedelta(days=day_offset)
        for _ in range(count):
            record = record_usage(record, now)

    assert record.daily_requests == 15
    assert record.monthly_requests == 40
    assert sum(record.request_history.values()) == 40
    assert len(record.request_history) == 3


def test_monthly_total_tracks_clock_advances() -> None:
    record = make_record(NOW)
    for _ in range(5):
        record = record_usage(record, NOW)

    later = NOW + timedelta(days=20)
    record = record_usage(record, later)
    assert record.monthly_requests == 6

    # Day-zero traffic leaves the 30-day window but stays in the 90-day history.
    much_later = NOW + timedelta(days=31)
    record = record_usage(record, much_later)
    assert record.monthly_requests == 2
    assert record.request_history[TODAY] == 5
    assert record.monthly_requests == sum(
        count for day, count in record.request_history.items() if day > much_later.date() - timedelta(days=30)
    )


def test_custom_windows_are_honoured() -> None:
    record = make_record(NOW, request_history={TODAY - timedelta(days=8): 3, TODAY - timedelta(days=20): 4})
    updated = record_usage(record, NOW, monthly_window_days=7, retention_days=10)
    assert updated.monthly_requests == 1
    assert set(updated.request_history) == {TODAY, TODAY - timedelta(days=8)}
