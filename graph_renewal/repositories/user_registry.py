"""User registry - in-memory storage for per-user renewal state.

Holds each user's account identity, credential and subscriptions. Reads hand
out deep copies so a renewal pass works on a point-in-time snapshot; all
targeted updates are no-ops when the user or subscription has disappeared.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional

from graph_renewal.logging_config import get_logger
from graph_renewal.models.user import (
    AccountIdentity,
    Credential,
    SubscriptionRecord,
    UserRecord,
)
from graph_renewal.state_logger import log_subscription_removed

logger = get_logger(__name__)


class UserNotFoundError(Exception):
    """Raised when a user is not found in the registry."""

    pass


class DuplicateSubscriptionError(ValueError):
    """Raised when a subscription id is registered twice for the same user."""

    pass


class UserRegistry:
    """In-memory storage for user records.

    Thread-safe: every read and mutation holds one re-entrant lock, which
    serializes access at (at least) per-record granularity.
    """

    def __init__(self):
        """Initialize user registry with empty storage."""
        self._users: Dict[str, UserRecord] = {}
        self._lock = threading.RLock()

    # Registry boundary used by the authorization flow

    def save_user_token(
        self, user_id: str, account: AccountIdentity, credential: Credential
    ) -> UserRecord:
        """Create or replace a user's credential after an interactive sign-in.

        An existing user keeps its subscriptions; only the account identity and
        credential are replaced.

        Args:
            user_id: User identifier
            account: Account identity for silent refresh
            credential: Credential obtained from the sign-in

        Returns:
            Snapshot of the stored UserRecord
        """
        with self._lock:
            existing = self._users.get(user_id)
            if existing is None:
                record = UserRecord(user_id=user_id, account=account, credential=credential)
                self._users[user_id] = record
                logger.info("user_saved", user_id=user_id, expires_on=credential.expires_on.isoformat())
            else:
                existing.account = account
                existing.set_credential(credential, reason="Interactive sign-in")
                record = existing
            return record.model_copy(deep=True)

    def add_subscription(self, user_id: str, subscription: SubscriptionRecord) -> bool:
        """Attach a newly created subscription to a user.

        Args:
            user_id: User identifier
            subscription: Subscription returned by the remote service

        Returns:
            True if added, False if the user does not exist

        Raises:
            DuplicateSubscriptionError: If the user already holds this subscription id
        """
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                logger.debug("add_subscription_unknown_user", user_id=user_id)
                return False
            if user.find_subscription(subscription.id) is not None:
                raise DuplicateSubscriptionError(
                    f"Subscription '{subscription.id}' already registered for user '{user_id}'"
                )
            user.subscriptions.append(subscription.model_copy(deep=True))
            logger.info(
                "subscription_added",
                user_id=user_id,
                subscription_id=subscription.id,
                resource=subscription.resource,
            )
            return True

    # Reads

    def get_user(self, user_id: str) -> UserRecord:
        """Get a snapshot of one user.

        Raises:
            UserNotFoundError: If user_id is unknown
        """
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFoundError(f"User not found: {user_id}")
            return user.model_copy(deep=True)

    def find_user(self, user_id: str) -> Optional[UserRecord]:
        """Get a snapshot of one user (returns None if not found)."""
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy(deep=True) if user is not None else None

    def list_all(self) -> List[UserRecord]:
        """Point-in-time copy of every user record.

        Later mutations of the registry do not affect the returned list, and
        mutating the returned records does not affect the registry.
        """
        with self._lock:
            return [user.model_copy(deep=True) for user in self._users.values()]

    def get_all_users(self) -> List[UserRecord]:
        """Alias of list_all()."""
        return self.list_all()

    # Targeted updates used by the renewal pass

    def update_credential(self, user_id: str, credential: Credential) -> bool:
        """Store a refreshed credential.

        The stored expiry only ever moves forward; a credential that does not
        extend the current expiry is ignored.

        Returns:
            True if stored, False if the user is unknown or the expiry would not advance
        """
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                logger.debug("update_credential_unknown_user", user_id=user_id)
                return False
            if credential.expires_on <= user.credential.expires_on:
                logger.warning(
                    "credential_update_ignored",
                    user_id=user_id,
                    current_expiry=user.credential.expires_on.isoformat(),
                    offered_expiry=credential.expires_on.isoformat(),
                )
                return False
            user.set_credential(credential, reason="Silent refresh")
            return True

    def update_user_token(self, user_id: str, credential: Credential) -> bool:
        """Alias of update_credential()."""
        return self.update_credential(user_id, credential)

    def update_subscription_expiry(
        self, user_id: str, subscription_id: str, expires_on: datetime
    ) -> bool:
        """Store a subscription's renewed expiry.

        Returns:
            True if updated, False if the user or subscription is unknown
        """
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                logger.debug("update_subscription_unknown_user", user_id=user_id)
                return False
            updated = user.set_subscription_expiry(subscription_id, expires_on, reason="Renewal")
            if not updated:
                logger.debug(
                    "update_subscription_unknown_subscription",
                    user_id=user_id,
                    subscription_id=subscription_id,
                )
            return updated

    def update_subscription_expiration(
        self, user_id: str, subscription_id: str, expires_on: datetime
    ) -> bool:
        """Alias of update_subscription_expiry()."""
        return self.update_subscription_expiry(user_id, subscription_id, expires_on)

    def remove_subscription(
        self, user_id: str, subscription_id: str, reason: Optional[str] = None
    ) -> bool:
        """Drop a subscription record from a user.

        Returns:
            True if removed, False if the user or subscription is unknown
        """
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return False
            remaining = [s for s in user.subscriptions if s.id != subscription_id]
            if len(remaining) == len(user.subscriptions):
                return False
            user.subscriptions = remaining
            log_subscription_removed(user_id=user_id, subscription_id=subscription_id, reason=reason)
            return True

    def remove(self, user_id: str) -> bool:
        """Delete a user and all of its subscriptions.

        Returns:
            True if the user was deleted, False if not found
        """
        with self._lock:
            if user_id in self._users:
                del self._users[user_id]
                logger.info("user_removed", user_id=user_id)
                return True
            return False

    def delete_user(self, user_id: str) -> bool:
        """Alias of remove()."""
        return self.remove(user_id)

    # Bookkeeping

    def exists(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._users

    def count(self) -> int:
        with self._lock:
            return len(self._users)

    def clear(self) -> None:
        """Clear all users from the registry.

        Warning: This removes all data. Use with caution.
        """
        with self._lock:
            self._users.clear()

    def get_statistics(self) -> Dict[str, int]:
        """Get registry statistics.

        Returns:
            Dictionary with total_users and total_subscriptions
        """
        with self._lock:
            return {
                "total_users": len(self._users),
                "total_subscriptions": sum(len(u.subscriptions) for u in self._users.values()),
            }

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, user_id: str) -> bool:
        return self.exists(user_id)

    def __repr__(self) -> str:
        return f"UserRegistry(users={self.count()})"


# Global registry instance
_registry_instance: Optional[UserRegistry] = None
_registry_lock = threading.Lock()


def get_user_registry() -> UserRegistry:
    """Get global user registry instance (singleton).

    Returns:
        UserRegistry instance
    """
    global _registry_instance
    if _registry_instance is None:
        with _registry_lock:
            if _registry_instance is None:
                _registry_instance = UserRegistry()
    return _registry_instance


def reset_user_registry() -> None:
    """Reset global user registry (clears all data).

    Warning: This removes all user data. Use with caution.
    """
    get_user_registry().clear()
