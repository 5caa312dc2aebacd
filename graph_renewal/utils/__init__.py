"""Utility functions and helpers for the renewal service."""

from graph_renewal.utils.expiry_policy import (
    credential_due,
    is_due,
    subscription_due,
    time_remaining,
)
from graph_renewal.utils.timestamps import (
    expiry_from_now,
    expiry_from_seconds,
    format_remote_datetime,
    parse_remote_datetime,
    utc_now,
)

__all__ = [
    # Expiry policy
    "credential_due",
    "subscription_due",
    "is_due",
    "time_remaining",
    # Timestamps
    "utc_now",
    "parse_remote_datetime",
    "format_remote_datetime",
    "expiry_from_now",
    "expiry_from_seconds",
]
