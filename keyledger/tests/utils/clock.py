from __future__ import annotations

from datetime import datetime, timedelta


class FrozenClock:
    # Deterministic time source for CredentialManager(time_provider=...).

    def __init__(self, now: datetime) -> None:
        self._now = now

    def __call__(self) -> datetime:
        return self._now

    def advance(self, **delta: float) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now
