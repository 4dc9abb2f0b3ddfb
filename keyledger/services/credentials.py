from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Callable
from uuid import uuid4

from keyledger.core.config import Settings, get_settings
from keyledger.core.errors import DateRangeError, UsageConflictError
from keyledger.domain.models import (
    BillingInfo,
    CredentialCreate,
    CredentialDetails,
    CredentialRecord,
    CredentialSummary,
    CredentialUpdate,
    SubscriptionDuration,
    ValidationOutcome,
    ValidationReason,
    ValidationSummary,
)
from keyledger.persistence.store import CredentialStore
from keyledger.services.usage import record_usage
from keyledger.services.validation import (
    RULE_END_BEFORE_START,
    subscription_end_for,
    validate_owner_data,
    validate_subscription_window,
)


logger = logging.getLogger(__name__)

USAGE_MODE_OPTIMISTIC = "optimistic"
LAST_WRITE_WINS_ATTEMPTS = 2

_IDENTITY_FIELDS = frozenset({"owner_name", "contact_name", "contact_phone", "billing_info"})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Treat naive datetimes as UTC so comparisons never mix aware and naive values.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def short_key(credential_id: str, chars: int) -> str:
    return f"{credential_id[:chars]}..."


class CredentialManager:
    """Issue, validate and maintain credential records.

    The manager owns no connection state: it works through the injected
    ``CredentialStore`` and reads the current time from ``time_provider`` so
    expiry and usage windows can be exercised deterministically.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        settings: Settings | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._time_provider = time_provider or _utc_now

    @property
    def store(self) -> CredentialStore:
        return self._store

    def now(self) -> datetime:
        return _as_utc(self._time_provider())

    def _ttl_seconds(self, subscription_end: datetime, now: datetime) -> int:
        # Physical expiry trails the subscription by a grace period; logical expiry is the active flag.
        grace = timedelta(days=self._settings.credential_ttl_grace_days)
        return max(1, int((subscription_end - now + grace).total_seconds()))

    def _key(self, credential_id: str) -> str:
        return short_key(credential_id, self._settings.list_key_prefix_chars)

    async def issue(
        self,
        owner: CredentialCreate,
        *,
        credential_id: str | None = None,
        subscription_start: datetime | None = None,
        subscription_end: datetime | None = None,
        duration: SubscriptionDuration | None = None,
    ) -> str:
        validate_owner_data(owner, settings=self._settings)
        now = self.now()
        start = _as_utc(subscription_start) if subscription_start is not None else now
        if subscription_end is not None:
            end = _as_utc(subscription_end)
        else:
            end = subscription_end_for(duration or self._settings.subscription_default_duration, now)
        validate_subscription_window(start, end, now=now, settings=self._settings)

        # Explicit ids are reserved for well-known seed and test credentials.
        resolved_id = credential_id or str(uuid4())
        record = CredentialRecord(
            id=resolved_id,
            owner_name=(owner.owner_name or "").strip(),
            contact_name=(owner.contact_name or "").strip(),
            contact_phone=(owner.contact_phone or "").strip(),
            billing_info=owner.billing_info,
            active=True,
            subscription_start=start,
            subscription_end=end,
            created_at=now,
            updated_at=now,
        )
        await self._store.create(record, ttl_seconds=self._ttl_seconds(end, now))
        logger.info(
            "credential_issued id=%s owner=%s subscription_end=%s",
            resolved_id,
            record.owner_name,
            end.isoformat(),
        )
        return resolved_id

    def _rejection(self, record: CredentialRecord | None, now: datetime) -> ValidationReason | None:
        if record is None:
            return "not_found"
        if not record.active:
            return "inactive"
        if record.is_expired(now):
            return "expired"
        return None

    def _apply_usage(self, record: CredentialRecord, now: datetime) -> CredentialRecord:
        return record_usage(
            record,
            now,
            monthly_window_days=self._settings.usage_monthly_window_days,
            retention_days=self._settings.usage_history_retention_days,
        )

    def _rejected(self, credential_id: str, reason: ValidationReason) -> ValidationOutcome:
        logger.warning("credential_rejected key=%s reason=%s", self._key(credential_id), reason)
        return ValidationOutcome(valid=False, reason=reason)

    def _accepted(self, record: CredentialRecord) -> ValidationOutcome:
        summary = ValidationSummary(
            owner_name=record.owner_name,
            contact_name=record.contact_name,
            subscription_end=record.subscription_end,
            daily_requests=record.daily_requests,
            monthly_requests=record.monthly_requests,
            last_access=record.last_access or record.updated_at,
        )
        logger.debug(
            "credential_validated key=%s daily=%d monthly=%d",
            self._key(record.id),
            record.daily_requests,
            record.monthly_requests,
        )
        return ValidationOutcome(valid=True, summary=summary)

    async def validate(self, credential_id: str) -> ValidationOutcome:
        if self._settings.usage_update_mode == USAGE_MODE_OPTIMISTIC:
            attempts = max(1, int(self._settings.usage_cas_max_attempts))
            return await self._validate_guarded(credential_id, attempts=attempts, drop_on_conflict=False)
        # Default mode: one re-read on conflict, then this request's increment is dropped.
        return await self._validate_guarded(credential_id, attempts=LAST_WRITE_WINS_ATTEMPTS, drop_on_conflict=True)

    async def _validate_guarded(
        self, credential_id: str, *, attempts: int, drop_on_conflict: bool
    ) -> ValidationOutcome:
        # Usage is written under WATCH so it never replaces a newer state change.
        attempt = 1
        while True:
            now = self.now()

            def _mutate(record: CredentialRecord) -> CredentialRecord | None:
                if self._rejection(record, now) is not None:
                    return None
                return self._apply_usage(record, now)

            try:
                current, updated = await self._store.compare_and_set(credential_id, _mutate)
            except UsageConflictError:
                if attempt < attempts:
                    attempt += 1
                    continue
                if not drop_on_conflict:
                    logger.warning("credential_usage_conflict key=%s attempts=%d", self._key(credential_id), attempt)
                    raise
                return await self._validate_without_usage(credential_id, now)
            if updated is None:
                return self._rejected(credential_id, self._rejection(current, now) or "not_found")
            return self._accepted(updated)

    async def _validate_without_usage(self, credential_id: str, now: datetime) -> ValidationOutcome:
        # Answer from the latest committed record and leave the counters as they are.
        logger.info("credential_usage_dropped key=%s", self._key(credential_id))
        record = await self._store.get(credential_id)
        reason = self._rejection(record, now)
        if reason is not None or record is None:
            return self._rejected(credential_id, reason or "not_found")
        return self._accepted(record)

    async def _set_active(self, credential_id: str, active: bool) -> bool:
        record = await self._store.get(credential_id)
        if record is None:
            return False
        if record.active == active:
            return True
        updated = record.model_copy(update={"active": active, "updated_at": self.now()})
        written = await self._store.put(updated)
        if written:
            logger.info("credential_%s key=%s", "activated" if active else "deactivated", self._key(credential_id))
        return written

    async def activate(self, credential_id: str) -> bool:
        return await self._set_active(credential_id, True)

    async def deactivate(self, credential_id: str) -> bool:
        return await self._set_active(credential_id, False)

    async def update(self, credential_id: str, changes: CredentialUpdate) -> bool:
        # Apply only the fields the caller explicitly set; id and usage counters are not updatable.
        fields = set(changes.model_fields_set)
        record = await self._store.get(credential_id)
        if record is None:
            return False

        identity_fields = fields & _IDENTITY_FIELDS
        if identity_fields:
            validate_owner_data(
                CredentialCreate(
                    owner_name=changes.owner_name,
                    contact_name=changes.contact_name,
                    contact_phone=changes.contact_phone,
                    billing_info=changes.billing_info,
                ),
                settings=self._settings,
                fields=identity_fields,
            )

        now = self.now()
        values: dict[str, object] = {"updated_at": now}
        for name in ("owner_name", "contact_name", "contact_phone"):
            if name in fields:
                values[name] = (getattr(changes, name) or "").strip()
        if "billing_info" in fields:
            values["billing_info"] = _merge_billing(record.billing_info, changes.billing_info)

        start = record.subscription_start
        end = record.subscription_end
        if "subscription_start" in fields and changes.subscription_start is not None:
            start = _as_utc(changes.subscription_start)
        if "subscription_end" in fields and changes.subscription_end is not None:
            end = _as_utc(changes.subscription_end)
        if end <= start:
            raise DateRangeError(RULE_END_BEFORE_START, "subscription_end must be after subscription_start")
        values["subscription_start"] = start
        values["subscription_end"] = end

        ttl_seconds = self._ttl_seconds(end, now) if end != record.subscription_end else None
        written = await self._store.put(record.model_copy(update=values), ttl_seconds=ttl_seconds)
        if written:
            logger.info("credential_updated key=%s fields=%s", self._key(credential_id), ",".join(sorted(fields)))
        return written

    def _summary(self, record: CredentialRecord, *, full: bool) -> CredentialSummary:
        return CredentialSummary(
            key=self._key(record.id),
            full_key=record.id if full else None,
            owner_name=record.owner_name,
            contact_name=record.contact_name,
            contact_phone=record.contact_phone,
            active=record.active,
            subscription_start=record.subscription_start,
            subscription_end=record.subscription_end,
            last_access=record.last_access,
            daily_requests=record.daily_requests,
            monthly_requests=record.monthly_requests,
            created_at=record.created_at,
        )

    async def list_credentials(self, *, full: bool = False) -> list[CredentialSummary]:
        # Whether a caller may see full keys is decided upstream; this only shapes the projection.
        ids = await self._store.list_ids()
        records = await self._store.get_many(sorted(ids))
        summaries = [self._summary(record, full=full) for record in records.values() if record is not None]
        missing = len(records) - len(summaries)
        if missing:
            # Index members whose record is gone (TTL or half-written issuance) count as deleted.
            logger.debug("credential_index_dangling count=%d", missing)
        summaries.sort(key=lambda summary: summary.created_at)
        return summaries

    async def get_details(self, credential_id: str) -> CredentialDetails | None:
        record = await self._store.get(credential_id)
        if record is None:
            return None
        return CredentialDetails(
            full_key=record.id,
            key=short_key(record.id, self._settings.details_key_prefix_chars),
            owner_name=record.owner_name,
            contact_name=record.contact_name,
            contact_phone=record.contact_phone,
            billing_info=record.billing_info,
            active=record.active,
            state=record.state,
            subscription_start=record.subscription_start,
            subscription_end=record.subscription_end,
            last_access=record.last_access,
            daily_requests=record.daily_requests,
            monthly_requests=record.monthly_requests,
            request_history=dict(record.request_history),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    async def seed_if_empty(self, owner: CredentialCreate, *, credential_id: str) -> str | None:
        # First-boot convenience: install a well-known credential only when nothing is issued yet.
        if await self._store.list_ids():
            return None
        logger.info("credential_seeding id=%s", credential_id)
        return await self.issue(owner, credential_id=credential_id)

    async def prune_dangling_index(self) -> int:
        ids = await self._store.list_ids()
        records = await self._store.get_many(sorted(ids))
        # get_many reports corrupt payloads as absent too; only drop ids whose key is really gone.
        missing = [
            credential_id
            for credential_id, record in records.items()
            if record is None and not await self._store.exists(credential_id)
        ]
        removed = await self._store.remove_from_index(missing)
        if removed:
            logger.info("credential_index_pruned count=%d", removed)
        return removed


def _merge_billing(current: BillingInfo | None, changes: BillingInfo | None) -> BillingInfo | None:
    # Merge billing sub-fields individually; an explicit None clears the whole block.
    if changes is None:
        return None
    merged = (current or BillingInfo()).model_dump()
    for name in changes.model_fields_set:
        merged[name] = getattr(changes, name)
    return BillingInfo(**merged)
