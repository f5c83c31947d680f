"""Campuzon configuration — plain frozen dataclass, no pydantic.

The host application constructs this from its own settings (env vars,
pydantic-settings, etc.) and passes it to ``Storefront``.
"""

from dataclasses import dataclass

from campuzon.constants import (
    CART_RECORD_NAME,
    DEFAULT_GC_AFTER_SECS,
    DEFAULT_STALE_AFTER_SECS,
    MESSAGES_POLL_INTERVAL_SECS,
)


@dataclass(frozen=True)
class CampuzonConfig:
    api_base_url: str = "http://localhost:5000/api/v1"
    cart_record_name: str = CART_RECORD_NAME
    cart_storage_dir: str | None = None
    stale_after_secs: float = DEFAULT_STALE_AFTER_SECS
    gc_after_secs: float = DEFAULT_GC_AFTER_SECS
    messages_poll_interval_secs: float = MESSAGES_POLL_INTERVAL_SECS
    session_public_key: str | None = None
    connect_timeout_secs: float = 5.0
    read_timeout_secs: float = 15.0
