from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


CredentialState = Literal["active", "deactivated"]
ValidationReason = Literal["not_found", "inactive", "expired"]
SubscriptionDuration = Literal["14_days", "1_month", "1_year", "2_years"]


class BillingInfo(BaseModel):
    # Invoicing details owned by a credential record; every field is optional.
    company_name: str | None = None
    contact_name: str | None = None
    tax_office: str | None = None
    tax_number: str | None = None
    address: str | None = None
    email: str | None = None


class CredentialCreate(BaseModel):
    # Already-parsed issuance payload; format checks happen in the validation service.
    owner_name: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    billing_info: BillingInfo | None = None


class CredentialUpdate(BaseModel):
    # Partial update; only fields present in model_fields_set are applied.
    owner_name: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    billing_info: BillingInfo | None = None
    subscription_start: datetime | None = None
    subscription_end: datetime | None = None


class CredentialRecord(BaseModel):
    # Stored as JSON under the credential key; id never changes after issuance.
    id: str
    owner_name: str
    contact_name: str
    contact_phone: str
    billing_info: BillingInfo | None = None
    active: bool = True
    subscription_start: datetime
    subscription_end: datetime
    last_access: datetime | None = None
    request_history: dict[date, int] = Field(default_factory=dict)
    daily_requests: int = 0
    monthly_requests: int = 0
    created_at: datetime
    updated_at: datetime

    @property
    def state(self) -> CredentialState:
        return "active" if self.active else "deactivated"

    def is_expired(self, now: datetime) -> bool:
        return now > self.subscription_end


class CredentialSummary(BaseModel):
    # Public-safe list projection; full_key is only filled for privileged callers.
    key: str
    full_key: str | None = None
    owner_name: str
    contact_name: str
    contact_phone: str
    active: bool
    subscription_start: datetime
    subscription_end: datetime
    last_access: datetime | None = None
    daily_requests: int = 0
    monthly_requests: int = 0
    created_at: datetime


class CredentialDetails(BaseModel):
    # Single-record view for administrative screens.
    full_key: str
    key: str
    owner_name: str
    contact_name: str
    contact_phone: str
    billing_info: BillingInfo | None = None
    active: bool
    state: CredentialState
    subscription_start: datetime
    subscription_end: datetime
    last_access: datetime | None = None
    daily_requests: int = 0
    monthly_requests: int = 0
    request_history: dict[date, int] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class ValidationSummary(BaseModel):
    owner_name: str
    contact_name: str
    subscription_end: datetime
    daily_requests: int
    monthly_requests: int
    last_access: datetime


@dataclass(frozen=True)
class ValidationOutcome:
    # Negative outcomes are values, not exceptions.
    valid: bool
    reason: ValidationReason | None = None
    summary: ValidationSummary | None = None


@dataclass(frozen=True)
class SweepResult:
    status: Literal["ok", "skipped_running", "failed"]
    started_at: datetime
    finished_at: datetime | None = None
    checked: int = 0
    deactivated: int = 0
    failed: int = 0
    pruned_index: int = 0


@dataclass(frozen=True)
class SweepStats:
    total: int
    active: int
    expired_but_active: int
    expiring_soon: int
    running: bool
    checked_at: datetime
    last_run_at: datetime | None = None
    last_result: SweepResult | None = None
