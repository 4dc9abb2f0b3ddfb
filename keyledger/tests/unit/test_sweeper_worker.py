from __future__ import annotations

from datetime import timedelta

import pytest

from keyledger.core.config import Settings
from keyledger.services.credentials import CredentialManager
from keyledger.services.sweeper import ExpirySweeper
from keyledger.tests.utils.clock import FrozenClock
from keyledger.tests.utils.factories import make_owner
from keyledger.tests.utils.fake_redis import FakeRedis
from keyledger.workers import sweeper_worker
from keyledger.workers.sweeper_worker import (
    WorkerSettings,
    safety_net_hours,
    seed_credential,
    sweep_expired_credentials,
)


def _seed_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "seed_credential_id": "test-seed-2025",
        "seed_owner_name": "Demo Store",
        "seed_contact_name": "Demo Contact",
        "seed_contact_phone": "05321234567",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_safety_net_hours() -> None:
    assert safety_net_hours(4) == {0, 4, 8, 12, 16, 20}
    assert safety_net_hours(0) == set(range(24))
    assert safety_net_hours(48) == {0}


def test_worker_settings_schedules_daily_and_interval_sweeps() -> None:
    names = {job.name for job in WorkerSettings.cron_jobs}
    assert names == {"credential_sweep_daily", "credential_sweep_safety_net"}
    assert sweep_expired_credentials in WorkerSettings.functions


@pytest.mark.asyncio
async def test_job_returns_sweep_summary(
    manager: CredentialManager, sweeper: ExpirySweeper, clock: FrozenClock
) -> None:
    await manager.issue(make_owner(), subscription_end=clock() + timedelta(days=1))
    clock.advance(days=2)

    summary = await sweep_expired_credentials({"sweeper": sweeper})
    assert summary == {"status": "ok", "checked": 1, "deactivated": 1, "failed": 0, "pruned_index": 0}


@pytest.mark.asyncio
async def test_seed_credential_only_on_empty_store(manager: CredentialManager) -> None:
    settings = _seed_settings()
    assert await seed_credential(manager, settings) == "test-seed-2025"
    assert await seed_credential(manager, settings) is None
    assert (await manager.validate("test-seed-2025")).valid is True


@pytest.mark.asyncio
async def test_seed_credential_disabled_or_invalid(manager: CredentialManager, settings: Settings) -> None:
    assert await seed_credential(manager, settings) is None
    assert await seed_credential(manager, _seed_settings(seed_contact_phone="not-a-phone")) is None
    assert await manager.list_credentials() == []


@pytest.mark.asyncio
async def test_startup_and_shutdown_wire_worker_context(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeRedis()
    settings = _seed_settings(sweep_startup_delay_s=0.0)
    monkeypatch.setattr(sweeper_worker, "get_settings", lambda: settings)
    monkeypatch.setattr(sweeper_worker, "create_redis", lambda _settings=None: fake)

    ctx: dict = {}
    await sweeper_worker._startup(ctx)
    assert isinstance(ctx["sweeper"], ExpirySweeper)
    result = await ctx["startup_sweep_task"]
    assert result.status == "ok"
    assert result.checked == 1

    await sweeper_worker._shutdown(ctx)
    assert fake.closed is True
