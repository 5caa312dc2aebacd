"""UTC timestamp helpers for the remote service's date-time strings."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_remote_datetime(value: str) -> datetime:
    """Parse an ISO 8601 date-time as returned by the remote service.

    Accepts a trailing ``Z`` and fractional seconds of any precision
    (e.g. ``2026-10-22T06:30:00.1234567Z``). Values without an offset are
    taken to be UTC.

    Args:
        value: ISO 8601 date-time string

    Returns:
        Timezone-aware UTC datetime

    Raises:
        ValueError: If the string is empty or not a valid date-time
    """
    if not value or not isinstance(value, str):
        raise ValueError("Date-time must be a non-empty string")

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    # fromisoformat accepts at most 6 fractional digits
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        while rest and rest[0].isdigit():
            digits, rest = digits + rest[0], rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_remote_datetime(value: datetime) -> str:
    """Format a UTC datetime the way the remote service expects (``...Z``)."""
    if value.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def expiry_from_now(
    minutes: Union[int, float], now: Optional[datetime] = None
) -> datetime:
    """UTC instant ``minutes`` after ``now`` (defaults to the current time)."""
    return (now or utc_now()) + timedelta(minutes=minutes)


def expiry_from_seconds(seconds: Union[int, float, str], now: Optional[datetime] = None) -> datetime:
    """UTC instant ``seconds`` after ``now``; accepts the string form some token endpoints return."""
    return (now or utc_now()) + timedelta(seconds=int(seconds))
