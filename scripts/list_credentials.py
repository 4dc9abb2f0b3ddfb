from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timezone
import sys

from keyledger.core.config import get_settings
from keyledger.domain.models import CredentialSummary
from keyledger.persistence.connection import create_redis
from keyledger.persistence.store import CredentialStore
from keyledger.services.credentials import CredentialManager


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="List issued credentials")
    parser.add_argument("--full", action="store_true", help="Print full credential keys instead of prefixes")
    parser.add_argument(
        "--expired-only",
        action="store_true",
        help="Show only credentials past their subscription end",
    )
    return parser


def format_row(summary: CredentialSummary, *, now: datetime) -> str:
    # Tab-separated so operators can pipe output into cut/awk.
    is_expired = now > summary.subscription_end
    return (
        f"{summary.full_key or summary.key}\t{summary.owner_name}\t{summary.contact_name}\t"
        f"{summary.active}\t{summary.subscription_end.isoformat()}\t"
        f"{summary.last_access.isoformat() if summary.last_access else ''}\t"
        f"{summary.daily_requests}\t{summary.monthly_requests}\t{is_expired}"
    )


async def _list(args: argparse.Namespace) -> int:
    settings = get_settings()
    redis = create_redis(settings)
    try:
        manager = CredentialManager(CredentialStore(redis, prefix=settings.credential_key_prefix), settings=settings)
        summaries = await manager.list_credentials(full=args.full)
    finally:
        await redis.aclose()

    now = _utc_now()
    print("key\towner\tcontact\tactive\tsubscription_end\tlast_access\tdaily\tmonthly\tis_expired")
    for summary in summaries:
        if args.expired_only and now <= summary.subscription_end:
            continue
        print(format_row(summary, now=now))
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_list(args))
    except Exception as exc:  # noqa: BLE001 - show full operator-facing error context.
        print(f"list_credentials failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
