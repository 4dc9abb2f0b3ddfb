from __future__ import annotations

import asyncio
import logging
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from keyledger.core.config import Settings, get_settings
from keyledger.core.errors import KeyLedgerError
from keyledger.core.logging import configure_logging
from keyledger.domain.models import CredentialCreate
from keyledger.persistence.connection import create_redis
from keyledger.persistence.store import CredentialStore
from keyledger.services.credentials import CredentialManager
from keyledger.services.sweeper import ExpirySweeper


logger = logging.getLogger(__name__)


def safety_net_hours(interval_hours: int) -> set[int]:
    # Expand "every N hours" into the hour set arq's cron matcher expects.
    step = min(24, max(1, int(interval_hours)))
    return set(range(0, 24, step))


async def sweep_expired_credentials(ctx) -> dict[str, Any]:
    # Shared by the cron schedule and manually enqueued jobs; the sweeper gate drops overlaps.
    sweeper: ExpirySweeper = ctx["sweeper"]
    result = await sweeper.run()
    return {
        "status": result.status,
        "checked": result.checked,
        "deactivated": result.deactivated,
        "failed": result.failed,
        "pruned_index": result.pruned_index,
    }


async def seed_credential(manager: CredentialManager, settings: Settings) -> str | None:
    # Install the configured well-known credential on an empty store.
    if not settings.seed_credential_id:
        return None
    owner = CredentialCreate(
        owner_name=settings.seed_owner_name,
        contact_name=settings.seed_contact_name,
        contact_phone=settings.seed_contact_phone,
    )
    try:
        return await manager.seed_if_empty(owner, credential_id=settings.seed_credential_id)
    except KeyLedgerError:
        # A bad seed must not keep the sweeper from booting.
        logger.exception("credential_seed_failed id=%s", settings.seed_credential_id)
        return None


async def _startup(ctx) -> None:
    # Build the store stack per worker process and schedule the delayed startup sweep.
    settings = get_settings()
    configure_logging(settings)
    redis = create_redis(settings)
    store = CredentialStore(redis, prefix=settings.credential_key_prefix)
    manager = CredentialManager(store, settings=settings)
    sweeper = ExpirySweeper(manager, settings=settings)
    ctx["credential_redis"] = redis
    ctx["credential_manager"] = manager
    ctx["sweeper"] = sweeper
    await seed_credential(manager, settings)
    ctx["startup_sweep_task"] = asyncio.create_task(sweeper.run_after(settings.sweep_startup_delay_s))
    logger.info(
        "credential_sweeper_started daily_hour=%d interval_hours=%d",
        settings.sweep_daily_hour,
        settings.sweep_interval_hours,
    )


async def _shutdown(ctx) -> None:
    # Cancel the startup sweep if still pending and release the Redis connection.
    task = ctx.get("startup_sweep_task")
    if task:
        task.cancel()
    redis = ctx.get("credential_redis")
    if redis is not None:
        await redis.aclose()


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.sweep_queue_name
    functions = [sweep_expired_credentials]
    cron_jobs = [
        cron(
            sweep_expired_credentials,
            name="credential_sweep_daily",
            hour={settings.sweep_daily_hour},
            minute={0},
            unique=True,
        ),
        cron(
            sweep_expired_credentials,
            name="credential_sweep_safety_net",
            hour=safety_net_hours(settings.sweep_interval_hours),
            minute={0},
            unique=True,
        ),
    ]
    on_startup = _startup
    on_shutdown = _shutdown
