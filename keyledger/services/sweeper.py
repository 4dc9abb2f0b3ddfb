from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
import logging

from keyledger.core.config import Settings, get_settings
from keyledger.core.errors import StoreUnavailableError
from keyledger.domain.models import SweepResult, SweepStats
from keyledger.services.credentials import CredentialManager


logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Deactivate credentials whose subscription has ended.

    The sweeper is either idle or running. A trigger that arrives while a
    sweep is in flight is dropped rather than queued, so overlapping cron
    ticks and manual runs never pile up.
    """

    def __init__(self, manager: CredentialManager, *, settings: Settings | None = None) -> None:
        self._manager = manager
        self._settings = settings or get_settings()
        self._running = False
        self._last_result: SweepResult | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> SweepResult | None:
        return self._last_result

    async def run(self) -> SweepResult:
        started_at = self._manager.now()
        # Check and flip happen before any await, so a second trigger on this loop sees the gate.
        if self._running:
            logger.warning("credential_sweep_skipped reason=already_running")
            return SweepResult(status="skipped_running", started_at=started_at)
        self._running = True
        try:
            result = await self._sweep(started_at)
        finally:
            self._running = False
        self._last_result = result
        logger.info(
            "credential_sweep_finished status=%s checked=%d deactivated=%d failed=%d pruned_index=%d",
            result.status,
            result.checked,
            result.deactivated,
            result.failed,
            result.pruned_index,
        )
        return result

    async def _sweep(self, started_at: datetime) -> SweepResult:
        logger.info("credential_sweep_started")
        try:
            summaries = await self._manager.list_credentials(full=True)
        except StoreUnavailableError:
            logger.exception("credential_sweep_failed stage=list")
            return SweepResult(status="failed", started_at=started_at, finished_at=self._manager.now())

        deactivated = 0
        failed = 0
        for summary in summaries:
            if not summary.active or started_at <= summary.subscription_end or summary.full_key is None:
                continue
            try:
                changed = await self._manager.deactivate(summary.full_key)
            except Exception:  # noqa: BLE001 - one bad record must not abort the sweep
                failed += 1
                logger.exception("credential_sweep_deactivate_failed key=%s", summary.key)
                continue
            if not changed:
                # Record vanished between listing and deactivation.
                continue
            deactivated += 1
            logger.info(
                "credential_expired_deactivated key=%s owner=%s subscription_end=%s days_past_expiry=%d",
                summary.key,
                summary.owner_name,
                summary.subscription_end.isoformat(),
                (started_at - summary.subscription_end).days,
            )

        pruned = 0
        try:
            pruned = await self._manager.prune_dangling_index()
        except StoreUnavailableError:
            logger.warning("credential_sweep_prune_skipped reason=store_unavailable")

        return SweepResult(
            status="ok",
            started_at=started_at,
            finished_at=self._manager.now(),
            checked=len(summaries),
            deactivated=deactivated,
            failed=failed,
            pruned_index=pruned,
        )

    async def run_after(self, delay_s: float) -> SweepResult:
        # Startup trigger: give the store connection a moment before the first sweep.
        await asyncio.sleep(max(0.0, delay_s))
        return await self.run()

    async def run_sweep_now(self) -> SweepResult:
        logger.info("credential_sweep_manual_trigger")
        return await self.run()

    async def stats(self) -> SweepStats:
        now = self._manager.now()
        horizon = now + timedelta(days=self._settings.sweep_expiring_soon_days)
        summaries = await self._manager.list_credentials()
        active = 0
        expired_but_active = 0
        expiring_soon = 0
        for summary in summaries:
            if not summary.active:
                continue
            active += 1
            if now > summary.subscription_end:
                expired_but_active += 1
            elif summary.subscription_end <= horizon:
                expiring_soon += 1
        return SweepStats(
            total=len(summaries),
            active=active,
            expired_but_active=expired_but_active,
            expiring_soon=expiring_soon,
            running=self._running,
            checked_at=now,
            last_run_at=self._last_result.started_at if self._last_result else None,
            last_result=self._last_result,
        )

    async def get_sweep_stats(self) -> SweepStats:
        return await self.stats()
