"""User, credential and subscription records.

Includes the account identity used for silent refresh, the current access
credential and the webhook subscriptions owned by each user.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def _require_utc(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("timestamp must be timezone-aware")
    return value.astimezone(timezone.utc)


class AccountIdentity(BaseModel):
    """Opaque handle identifying an account to the identity provider.

    Carried forward unchanged between renewals; never re-derived.
    """

    home_account_id: str = Field(..., description="Stable account identifier (oid.tid)")
    tenant_id: Optional[str] = Field(None, description="Directory (tenant) identifier")
    username: Optional[str] = Field(None, description="Sign-in name, informational only")

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "home_account_id": "00000000-0000-0000-0000-000000000001.72f988bf-86f1-41af-91ab-2d7cd011db47",
                "tenant_id": "72f988bf-86f1-41af-91ab-2d7cd011db47",
                "username": "adele@contoso.com",
            }
        }


class Credential(BaseModel):
    """Access token with its own expiry."""

    access_token: str = Field(..., description="Bearer token for the remote service")
    expires_on: datetime = Field(..., description="UTC instant after which the token is rejected")

    @field_validator("expires_on")
    @classmethod
    def validate_expires_on(cls, value: datetime) -> datetime:
        return _require_utc(value)

    def __repr__(self) -> str:
        return f"Credential(expires_on={self.expires_on.isoformat()})"


class SubscriptionRecord(BaseModel):
    """Remote change-notification subscription owned by a user."""

    id: str = Field(..., description="Identifier assigned by the remote service")
    resource: str = Field(..., description="Resource path the subscription watches")
    expires_on: datetime = Field(..., description="UTC instant the subscription lapses")

    @field_validator("expires_on")
    @classmethod
    def validate_expires_on(cls, value: datetime) -> datetime:
        return _require_utc(value)

    class Config:
        json_schema_extra = {
            "example": {
                "id": "7f105c7d-2dc5-4530-97cd-4e7ae6534c07",
                "resource": "/me/mailFolders/inbox/messages",
                "expires_on": "2026-10-22T06:30:00+00:00",
            }
        }


class UserRecord(BaseModel):
    """Per-user renewal state: account identity, credential and subscriptions."""

    user_id: str = Field(..., description="Opaque, stable user identifier")
    account: AccountIdentity
    credential: Credential
    subscriptions: list[SubscriptionRecord] = Field(default_factory=list)

    def find_subscription(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        """Return the subscription with the given id, or None."""
        for subscription in self.subscriptions:
            if subscription.id == subscription_id:
                return subscription
        return None

    def set_credential(self, credential: Credential, reason: Optional[str] = None) -> None:
        """Replace the current credential and log the expiry change.

        Args:
            credential: New credential
            reason: Reason for the change
        """
        from graph_renewal.state_logger import log_credential_expiry_change

        old_expiry = self.credential.expires_on
        self.credential = credential
        log_credential_expiry_change(
            user_id=self.user_id,
            old_expiry=old_expiry,
            new_expiry=credential.expires_on,
            reason=reason,
        )

    def set_subscription_expiry(
        self, subscription_id: str, expires_on: datetime, reason: Optional[str] = None
    ) -> bool:
        """Move a subscription's expiry and log the change.

        Args:
            subscription_id: Subscription to update
            expires_on: New expiry instant (timezone-aware)
            reason: Reason for the change

        Returns:
            True if the subscription exists and was updated, False otherwise
        """
        from graph_renewal.state_logger import log_subscription_expiry_change

        subscription = self.find_subscription(subscription_id)
        if subscription is None:
            return False

        old_expiry = subscription.expires_on
        subscription.expires_on = _require_utc(expires_on)
        log_subscription_expiry_change(
            user_id=self.user_id,
            subscription_id=subscription_id,
            old_expiry=old_expiry,
            new_expiry=subscription.expires_on,
            reason=reason,
        )
        return True
