"""Renewal due-ness predicates.

A resource is due for renewal when the time left before it expires is
shorter than its lead-time window. Windows are configuration, never derived
from remote state.
"""

from datetime import datetime, timedelta

DEFAULT_CREDENTIAL_LEAD = timedelta(minutes=10)
DEFAULT_SUBSCRIPTION_LEAD = timedelta(minutes=60)


def time_remaining(expiry: datetime, now: datetime) -> timedelta:
    """Time left before expiry (negative once expired).

    Raises:
        ValueError: If either timestamp is naive
    """
    if expiry.tzinfo is None or now.tzinfo is None:
        raise ValueError("expiry and now must both be timezone-aware")
    return expiry - now


def is_due(expiry: datetime, now: datetime, lead_time: timedelta) -> bool:
    """Check whether a resource expiring at ``expiry`` is inside its window.

    Args:
        expiry: UTC instant the resource lapses
        now: Current UTC instant
        lead_time: Renewal window

    Returns:
        True if ``expiry - now < lead_time``

    Examples:
        >>> from datetime import timezone
        >>> now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        >>> is_due(now + timedelta(minutes=5), now, timedelta(minutes=10))
        True
        >>> is_due(now + timedelta(minutes=10), now, timedelta(minutes=10))
        False
    """
    return time_remaining(expiry, now) < lead_time


def credential_due(
    expiry: datetime, now: datetime, lead_time: timedelta = DEFAULT_CREDENTIAL_LEAD
) -> bool:
    """Check whether a credential must be refreshed."""
    return is_due(expiry, now, lead_time)


def subscription_due(
    expiry: datetime, now: datetime, lead_time: timedelta = DEFAULT_SUBSCRIPTION_LEAD
) -> bool:
    """Check whether a subscription must be renewed."""
    return is_due(expiry, now, lead_time)
