from __future__ import annotations

import argparse
import asyncio
from datetime import datetime
import sys

from keyledger.core.config import get_settings
from keyledger.core.errors import DateRangeError, ValidationError
from keyledger.core.logging import configure_logging
from keyledger.domain.models import BillingInfo, CredentialCreate
from keyledger.persistence.connection import create_redis
from keyledger.persistence.store import CredentialStore
from keyledger.services.credentials import CredentialManager


def _build_parser() -> argparse.ArgumentParser:
    # Keep CLI arguments explicit so operators see exactly what gets issued.
    parser = argparse.ArgumentParser(description="Issue a credential for a customer")
    parser.add_argument("--owner", required=True, help="Owner (store/tenant) name")
    parser.add_argument("--contact", required=True, help="Contact person name")
    parser.add_argument("--phone", required=True, help="Contact mobile phone")
    parser.add_argument("--company", default=None, help="Billing company name")
    parser.add_argument("--tax-office", default=None, help="Billing tax office")
    parser.add_argument("--tax-number", default=None, help="Billing tax number (10-11 chars)")
    parser.add_argument("--address", default=None, help="Billing address")
    parser.add_argument("--email", default=None, help="Billing email")
    parser.add_argument("--start", type=datetime.fromisoformat, default=None, help="Subscription start (ISO 8601)")
    parser.add_argument("--end", type=datetime.fromisoformat, default=None, help="Subscription end (ISO 8601)")
    parser.add_argument(
        "--duration",
        choices=["14_days", "1_month", "1_year", "2_years"],
        default=None,
        help="Subscription preset used when --end is omitted",
    )
    parser.add_argument("--id", dest="credential_id", default=None, help="Explicit id for seed/test credentials")
    return parser


def _billing_from_args(args: argparse.Namespace) -> BillingInfo | None:
    values = {
        "company_name": args.company,
        "tax_office": args.tax_office,
        "tax_number": args.tax_number,
        "address": args.address,
        "email": args.email,
    }
    provided = {name: value for name, value in values.items() if value is not None}
    return BillingInfo(**provided) if provided else None


async def _create(args: argparse.Namespace) -> int:
    settings = get_settings()
    redis = create_redis(settings)
    try:
        manager = CredentialManager(CredentialStore(redis, prefix=settings.credential_key_prefix), settings=settings)
        owner = CredentialCreate(
            owner_name=args.owner,
            contact_name=args.contact,
            contact_phone=args.phone,
            billing_info=_billing_from_args(args),
        )
        try:
            credential_id = await manager.issue(
                owner,
                credential_id=args.credential_id,
                subscription_start=args.start,
                subscription_end=args.end,
                duration=args.duration,
            )
        except ValidationError as exc:
            for error in exc.errors:
                print(f"  - {error}", file=sys.stderr)
            return 2
        except DateRangeError as exc:
            print(f"date range rejected ({exc.rule}): {exc}", file=sys.stderr)
            return 2
        details = await manager.get_details(credential_id)
    finally:
        await redis.aclose()

    print("Credential issued:")
    print(f"  credential: {credential_id}")
    if details is not None:
        print(f"  owner: {details.owner_name}")
        print(f"  subscription_end: {details.subscription_end.isoformat()}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    configure_logging()
    try:
        return asyncio.run(_create(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_credential failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
