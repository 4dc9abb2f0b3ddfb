from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import Callable, Iterable, Iterator

from pydantic import ValidationError as PayloadError
from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from keyledger.core.errors import DuplicateCredentialError, StoreUnavailableError, UsageConflictError
from keyledger.domain.models import CredentialRecord


logger = logging.getLogger(__name__)

# Network timeouts and socket failures surface as these alongside redis-py's own errors.
_BACKEND_ERRORS = (RedisError, TimeoutError, OSError)


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    # Translate backend failures into StoreUnavailableError; callers own retry policy.
    try:
        yield
    except _BACKEND_ERRORS as exc:
        logger.warning("credential_store_unavailable op=%s error=%s", operation, exc.__class__.__name__)
        raise StoreUnavailableError(f"Credential store unavailable during {operation}") from exc


def encode_record(record: CredentialRecord) -> str:
    return record.model_dump_json()


def decode_record(raw: str | bytes) -> CredentialRecord:
    return CredentialRecord.model_validate_json(raw)


class CredentialStore:
    """Redis-backed persistence for credential records.

    Records live as JSON strings under ``{prefix}:credential:{id}`` and every
    issued id is a member of the ``{prefix}:index:credentials`` set so the
    sweeper can enumerate credentials without scanning the keyspace.
    """

    def __init__(self, redis: Redis, *, prefix: str = "keyledger") -> None:
        self._redis = redis
        self._prefix = prefix

    @property
    def index_key(self) -> str:
        return f"{self._prefix}:index:credentials"

    def record_key(self, credential_id: str) -> str:
        return f"{self._prefix}:credential:{credential_id}"

    async def create(self, record: CredentialRecord, *, ttl_seconds: int) -> None:
        # Record, index membership and TTL commit together in one MULTI/EXEC or not at all.
        key = self.record_key(record.id)
        with _store_errors("create"):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    if await pipe.exists(key):
                        raise DuplicateCredentialError(f"Credential {record.id} already exists")
                    pipe.multi()
                    pipe.set(key, encode_record(record))
                    pipe.sadd(self.index_key, record.id)
                    pipe.expire(key, max(1, int(ttl_seconds)))
                    await pipe.execute()
                except WatchError as exc:
                    raise DuplicateCredentialError(f"Credential {record.id} was written concurrently") from exc

    async def put(self, record: CredentialRecord, *, ttl_seconds: int | None = None) -> bool:
        # Overwrite an existing record; without a new TTL the current expiry is preserved.
        # Returns False when the record no longer exists.
        key = self.record_key(record.id)
        with _store_errors("put"):
            if ttl_seconds is None:
                # XX keeps a physically expired record from being resurrected without a TTL.
                written = await self._redis.set(key, encode_record(record), keepttl=True, xx=True)
                return bool(written)
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(key, encode_record(record), xx=True)
                pipe.expire(key, max(1, int(ttl_seconds)))
                written, _expired = await pipe.execute()
            return bool(written)

    async def compare_and_set(
        self,
        credential_id: str,
        mutate: Callable[[CredentialRecord], CredentialRecord | None],
    ) -> tuple[CredentialRecord | None, CredentialRecord | None]:
        """Read-modify-write a record under WATCH.

        Returns ``(current, updated)``. ``current`` is ``None`` when the
        record is absent or unreadable; ``updated`` is ``None`` when ``mutate`` declined to
        write. A concurrent write between read and commit raises
        ``UsageConflictError``.
        """
        key = self.record_key(credential_id)
        with _store_errors("compare_and_set"):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        return None, None
                    current = self._decode(credential_id, raw)
                    if current is None:
                        return None, None
                    updated = mutate(current)
                    if updated is None:
                        return current, None
                    pipe.multi()
                    # XX: a key that expired after the read is not recreated.
                    pipe.set(key, encode_record(updated), keepttl=True, xx=True)
                    (written,) = await pipe.execute()
                    if not written:
                        return None, None
                    return current, updated
                except WatchError as exc:
                    raise UsageConflictError(f"Credential {credential_id[:8]}... changed during update") from exc

    def _decode(self, credential_id: str, raw: str | bytes) -> CredentialRecord | None:
        # Corrupt payloads are logged and reported as absent.
        try:
            return decode_record(raw)
        except PayloadError:
            logger.warning("credential_record_corrupt key=%s...", credential_id[:8])
            return None

    async def get(self, credential_id: str) -> CredentialRecord | None:
        with _store_errors("get"):
            raw = await self._redis.get(self.record_key(credential_id))
        if raw is None:
            return None
        return self._decode(credential_id, raw)

    async def get_many(self, credential_ids: Iterable[str]) -> dict[str, CredentialRecord | None]:
        # Batch reads through MGET; corrupt payloads are logged and reported as absent.
        ids = list(credential_ids)
        if not ids:
            return {}
        with _store_errors("get_many"):
            raws = await self._redis.mget([self.record_key(credential_id) for credential_id in ids])
        records: dict[str, CredentialRecord | None] = {}
        for credential_id, raw in zip(ids, raws):
            records[credential_id] = None if raw is None else self._decode(credential_id, raw)
        return records

    async def exists(self, credential_id: str) -> bool:
        with _store_errors("exists"):
            return bool(await self._redis.exists(self.record_key(credential_id)))

    async def list_ids(self) -> set[str]:
        with _store_errors("list_ids"):
            members = await self._redis.smembers(self.index_key)
        return {str(member) for member in members}

    async def ttl_seconds(self, credential_id: str) -> int | None:
        # Return None when the key is missing or has no expiry.
        with _store_errors("ttl"):
            ttl = await self._redis.ttl(self.record_key(credential_id))
        return int(ttl) if ttl is not None and ttl >= 0 else None

    async def delete(self, credential_id: str) -> bool:
        # Physical removal for administrative flows; the sweeper never calls this.
        with _store_errors("delete"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(self.record_key(credential_id))
                pipe.srem(self.index_key, credential_id)
                deleted, _removed = await pipe.execute()
        return bool(deleted)

    async def remove_from_index(self, credential_ids: Iterable[str]) -> int:
        ids = list(credential_ids)
        if not ids:
            return 0
        with _store_errors("remove_from_index"):
            return int(await self._redis.srem(self.index_key, *ids))

    async def ping(self) -> bool:
        with _store_errors("ping"):
            return bool(await self._redis.ping())
