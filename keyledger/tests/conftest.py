from __future__ import annotations

from datetime import datetime, timezone

import pytest

from keyledger.core.config import Settings
from keyledger.persistence.store import CredentialStore
from keyledger.services.credentials import CredentialManager
from keyledger.services.sweeper import ExpirySweeper
from keyledger.tests.utils.clock import FrozenClock
from keyledger.tests.utils.fake_redis import FakeRedis


START = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> Settings:
    # Ignore any developer .env so defaults stay deterministic.
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis: FakeRedis) -> CredentialStore:
    return CredentialStore(fake_redis, prefix="test")


@pytest.fixture
def manager(store: CredentialStore, settings: Settings, clock: FrozenClock) -> CredentialManager:
    return CredentialManager(store, settings=settings, time_provider=clock)


@pytest.fixture
def sweeper(manager: CredentialManager, settings: Settings) -> ExpirySweeper:
    return ExpirySweeper(manager, settings=settings)
