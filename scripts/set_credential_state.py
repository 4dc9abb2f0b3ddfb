from __future__ import annotations

import argparse
import asyncio
import sys

from keyledger.core.config import get_settings
from keyledger.core.logging import configure_logging
from keyledger.persistence.connection import create_redis
from keyledger.persistence.store import CredentialStore
from keyledger.services.credentials import CredentialManager


def _build_parser() -> argparse.ArgumentParser:
    # Require the full id so a prefix typo cannot flip the wrong credential.
    parser = argparse.ArgumentParser(description="Activate or deactivate a credential")
    parser.add_argument("state", choices=["activate", "deactivate"], help="Target state")
    parser.add_argument("credential_id", help="Full credential id")
    return parser


async def _set_state(credential_id: str, state: str) -> int:
    settings = get_settings()
    redis = create_redis(settings)
    try:
        manager = CredentialManager(CredentialStore(redis, prefix=settings.credential_key_prefix), settings=settings)
        if state == "activate":
            changed = await manager.activate(credential_id)
        else:
            changed = await manager.deactivate(credential_id)
    finally:
        await redis.aclose()
    if not changed:
        print(f"Credential {credential_id} not found", file=sys.stderr)
        return 1
    print(f"Credential {credential_id[:8]}... {state}d")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    configure_logging()
    try:
        return asyncio.run(_set_state(args.credential_id, args.state))
    except Exception as exc:  # noqa: BLE001 - surface store failures clearly
        print(f"set_credential_state failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
