from __future__ import annotations

import calendar
from datetime import datetime, timedelta
import logging
import re

from keyledger.core.config import Settings, get_settings
from keyledger.core.errors import DateRangeError, ValidationError
from keyledger.domain.models import BillingInfo, CredentialCreate, SubscriptionDuration


logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_WHITESPACE_RE = re.compile(r"\s+")

MIN_NAME_CHARS = 2
TAX_NUMBER_LENGTHS = (10, 11)

RULE_END_NOT_IN_FUTURE = "end_not_in_future"
RULE_END_BEFORE_START = "end_before_start"
RULE_START_TOO_OLD = "start_too_old"
RULE_SPAN_TOO_LONG = "span_too_long"


def add_months(value: datetime, months: int) -> datetime:
    # Clamp to the last day of the target month (Jan 31 + 1 month -> Feb 28/29).
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_years(value: datetime, years: int) -> datetime:
    return add_months(value, years * 12)


def subscription_end_for(duration: SubscriptionDuration | str, start: datetime) -> datetime:
    # Resolve the quick-pick subscription presets offered to operators.
    if duration == "14_days":
        return start + timedelta(days=14)
    if duration == "1_month":
        return add_months(start, 1)
    if duration == "1_year":
        return add_years(start, 1)
    if duration == "2_years":
        return add_years(start, 2)
    raise ValueError(f"Unsupported subscription duration: {duration}")


def normalize_phone(phone: str) -> str:
    return _WHITESPACE_RE.sub("", phone)


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


def _name_errors(field: str, value: str | None) -> list[str]:
    if value is None or len(value.strip()) < MIN_NAME_CHARS:
        return [f"{field} must be at least {MIN_NAME_CHARS} characters"]
    return []


def _phone_errors(value: str | None, pattern: str) -> list[str]:
    if not value or not re.match(pattern, normalize_phone(value)):
        return ["contact_phone must be a valid mobile phone number"]
    return []


def _billing_errors(billing: BillingInfo | None) -> list[str]:
    if billing is None:
        return []
    errors: list[str] = []
    if billing.email and not is_valid_email(billing.email):
        errors.append("billing_info.email must be a valid email address")
    if billing.tax_number and len(billing.tax_number) not in TAX_NUMBER_LENGTHS:
        errors.append("billing_info.tax_number must be 10 or 11 characters")
    return errors


def collect_owner_errors(
    payload: CredentialCreate,
    *,
    settings: Settings | None = None,
    fields: set[str] | None = None,
) -> list[str]:
    # Gather every violation instead of stopping at the first one; fields limits checks for partial updates.
    settings = settings or get_settings()
    checked = fields if fields is not None else {"owner_name", "contact_name", "contact_phone", "billing_info"}
    errors: list[str] = []
    if "owner_name" in checked:
        errors.extend(_name_errors("owner_name", payload.owner_name))
    if "contact_name" in checked:
        errors.extend(_name_errors("contact_name", payload.contact_name))
    if "contact_phone" in checked:
        errors.extend(_phone_errors(payload.contact_phone, settings.contact_phone_pattern))
    if "billing_info" in checked:
        errors.extend(_billing_errors(payload.billing_info))
    return errors


def validate_owner_data(
    payload: CredentialCreate,
    *,
    settings: Settings | None = None,
    fields: set[str] | None = None,
) -> None:
    errors = collect_owner_errors(payload, settings=settings, fields=fields)
    if errors:
        logger.info("credential_owner_rejected errors=%d", len(errors))
        raise ValidationError(errors)


def validate_subscription_window(
    start: datetime,
    end: datetime,
    *,
    now: datetime,
    settings: Settings | None = None,
) -> None:
    # Enforce issuance bounds; the raised rule names which bound was crossed.
    settings = settings or get_settings()
    if end <= now:
        raise DateRangeError(RULE_END_NOT_IN_FUTURE, "subscription_end must be in the future")
    if end <= start:
        raise DateRangeError(RULE_END_BEFORE_START, "subscription_end must be after subscription_start")
    if start < add_years(now, -settings.subscription_max_past_years):
        raise DateRangeError(
            RULE_START_TOO_OLD,
            f"subscription_start cannot be more than {settings.subscription_max_past_years} year(s) in the past",
        )
    if end > add_years(start, settings.subscription_max_span_years):
        raise DateRangeError(
            RULE_SPAN_TOO_LONG,
            f"subscription cannot span more than {settings.subscription_max_span_years} years",
        )
