from __future__ import annotations

import argparse
import asyncio
import sys

from keyledger.core.config import get_settings
from keyledger.core.logging import configure_logging
from keyledger.persistence.connection import create_redis
from keyledger.persistence.store import CredentialStore
from keyledger.services.credentials import CredentialManager
from keyledger.services.sweeper import ExpirySweeper


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deactivate expired credentials once and print sweep stats")
    parser.add_argument("--stats-only", action="store_true", help="Print stats without sweeping")
    return parser


async def _sweep(args: argparse.Namespace) -> int:
    # Manual trigger for operators; scheduled sweeps run in the arq worker.
    settings = get_settings()
    redis = create_redis(settings)
    try:
        manager = CredentialManager(CredentialStore(redis, prefix=settings.credential_key_prefix), settings=settings)
        sweeper = ExpirySweeper(manager, settings=settings)
        if not args.stats_only:
            result = await sweeper.run_sweep_now()
            print(
                f"sweep status={result.status} checked={result.checked} "
                f"deactivated={result.deactivated} failed={result.failed} pruned_index={result.pruned_index}"
            )
            if result.status == "failed":
                return 1
        stats = await sweeper.get_sweep_stats()
    finally:
        await redis.aclose()
    print(
        f"total={stats.total} active={stats.active} expired_but_active={stats.expired_but_active} "
        f"expiring_soon={stats.expiring_soon}"
    )
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    configure_logging()
    try:
        return asyncio.run(_sweep(args))
    except Exception as exc:  # noqa: BLE001 - surface store failures clearly
        print(f"sweep_credentials failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
