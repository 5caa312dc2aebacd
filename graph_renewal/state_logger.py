"""Simple expiry change logging for credentials and subscriptions.

Tracks expiry moves with before/after values for debugging and auditing.
"""

from datetime import datetime
from typing import Any, Optional

from graph_renewal.logging_config import get_logger

logger = get_logger(__name__)


def _shorten(identifier: str) -> str:
    return identifier[:20] + "..." if len(identifier) > 20 else identifier


def log_credential_expiry_change(
    user_id: str,
    old_expiry: datetime,
    new_expiry: datetime,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log a credential expiry change.

    Args:
        user_id: Owner of the credential
        old_expiry: Previous expiry instant
        new_expiry: New expiry instant
        reason: Reason for the change (refresh, sign-in, etc.)
        **extra_context: Additional context
    """
    logger.info(
        "credential_expiry_changed",
        user_id=_shorten(user_id),
        old_expiry=old_expiry.isoformat(),
        new_expiry=new_expiry.isoformat(),
        extension_minutes=round((new_expiry - old_expiry).total_seconds() / 60, 1),
        reason=reason,
        **extra_context,
    )


def log_subscription_expiry_change(
    user_id: str,
    subscription_id: str,
    old_expiry: datetime,
    new_expiry: datetime,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log a subscription expiry change.

    Args:
        user_id: Owner of the subscription
        subscription_id: Remote subscription ID
        old_expiry: Previous expiry instant
        new_expiry: New expiry instant
        reason: Reason for the change
        **extra_context: Additional context
    """
    logger.info(
        "subscription_expiry_changed",
        user_id=_shorten(user_id),
        subscription_id=subscription_id,
        old_expiry=old_expiry.isoformat(),
        new_expiry=new_expiry.isoformat(),
        extension_hours=round((new_expiry - old_expiry).total_seconds() / 3600, 2),
        reason=reason,
        **extra_context,
    )


def log_subscription_removed(
    user_id: str,
    subscription_id: str,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log removal of a subscription record."""
    logger.info(
        "subscription_removed",
        user_id=_shorten(user_id),
        subscription_id=subscription_id,
        reason=reason,
        **extra_context,
    )
