from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from keyledger.domain.models import BillingInfo, CredentialCreate, CredentialRecord


def make_owner(**overrides: Any) -> CredentialCreate:
    values: dict[str, Any] = {
        "owner_name": "Lotus Jewellery",
        "contact_name": "Ayse Demir",
        "contact_phone": "+90 532 123 45 67",
        "billing_info": BillingInfo(
            company_name="Lotus Jewellery Ltd.",
            tax_office="Kadikoy",
            tax_number="1234567890",
            address="Istanbul",
            email="billing@lotus.example",
        ),
    }
    values.update(overrides)
    return CredentialCreate(**values)


def make_record(now: datetime, **overrides: Any) -> CredentialRecord:
    values: dict[str, Any] = {
        "id": str(uuid4()),
        "owner_name": "Lotus Jewellery",
        "contact_name": "Ayse Demir",
        "contact_phone": "+905321234567",
        "subscription_start": now,
        "subscription_end": now + timedelta(days=365),
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    return CredentialRecord(**values)
