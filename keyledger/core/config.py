from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


# Turkish mobile numbers, optionally prefixed with +90 or 0, whitespace stripped.
DEFAULT_CONTACT_PHONE_PATTERN = r"^(\+90|0)?5[0-9]{9}$"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "keyledger"
    log_level: str = "INFO"

    # Single authoritative Redis backend for credential records and the index set.
    redis_url: str = "redis://localhost:6379/0"
    # Bound every store round trip so outages surface quickly as StoreUnavailableError.
    redis_socket_timeout_s: float = 2.0
    # Prefix credential keys to avoid collisions with other Redis data.
    credential_key_prefix: str = "keyledger"
    # Keep records around this long past subscription end before Redis drops them.
    credential_ttl_grace_days: int = 30
    # Subscription window applied when issuance omits an explicit end date.
    subscription_default_duration: str = "1_year"
    # Reject windows starting further back than this many years.
    subscription_max_past_years: int = 1
    # Reject windows spanning more than this many years.
    subscription_max_span_years: int = 5
    # Rolling window used for monthly request totals.
    usage_monthly_window_days: int = 30
    # Drop per-day request history older than this.
    usage_history_retention_days: int = 90
    # Usage writes are WATCH-guarded; last_write_wins drops a contended increment, optimistic retries.
    usage_update_mode: str = "last_write_wins"
    # Retry budget for optimistic usage updates before reporting a conflict.
    usage_cas_max_attempts: int = 3
    # Phone format enforced for credential contacts.
    contact_phone_pattern: str = DEFAULT_CONTACT_PHONE_PATTERN
    # Number of key characters shown in list and detail projections.
    list_key_prefix_chars: int = 8
    details_key_prefix_chars: int = 12
    # Daily sweep hour (UTC) plus a more frequent safety-net cadence.
    sweep_daily_hour: int = 2
    sweep_interval_hours: int = 4
    # arq queue used for manually enqueued sweeps.
    sweep_queue_name: str = "keyledger:sweeps"
    # Delay the startup sweep so the Redis connection can settle.
    sweep_startup_delay_s: float = 5.0
    # Look-ahead window for the "expiring soon" sweep statistic.
    sweep_expiring_soon_days: int = 7
    # Optional well-known credential seeded on first boot when the index is empty.
    seed_credential_id: str | None = None
    seed_owner_name: str | None = None
    seed_contact_name: str | None = None
    seed_contact_phone: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
