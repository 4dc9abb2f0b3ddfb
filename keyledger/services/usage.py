from __future__ import annotations

from datetime import date, datetime, timedelta

from keyledger.domain.models import CredentialRecord


MONTHLY_WINDOW_DAYS = 30
HISTORY_RETENTION_DAYS = 90


def monthly_total(history: dict[date, int], today: date, window_days: int = MONTHLY_WINDOW_DAYS) -> int:
    # Recompute from history on every call; the window holds the last window_days calendar days.
    cutoff = today - timedelta(days=window_days)
    return sum(count for day, count in history.items() if cutoff < day <= today)


def prune_history(
    history: dict[date, int], today: date, retention_days: int = HISTORY_RETENTION_DAYS
) -> dict[date, int]:
    cutoff = today - timedelta(days=retention_days)
    return {day: count for day, count in history.items() if day > cutoff}


def record_usage(
    record: CredentialRecord,
    now: datetime,
    *,
    monthly_window_days: int = MONTHLY_WINDOW_DAYS,
    retention_days: int = HISTORY_RETENTION_DAYS,
) -> CredentialRecord:
    # Fold one request into the rolling counters; the input record is left untouched.
    today = now.date()
    history = dict(record.request_history)
    history[today] = history.get(today, 0) + 1
    daily = history[today]
    monthly = monthly_total(history, today, monthly_window_days)
    history = prune_history(history, today, retention_days)
    return record.model_copy(
        update={
            "request_history": history,
            "daily_requests": daily,
            "monthly_requests": monthly,
            "last_access": now,
            "updated_at": now,
        }
    )
