"""Response models for the renewal control API."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class PassSummary(BaseModel):
    """Outcome counts of one renewal pass."""

    pass_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    users_scanned: int = 0
    credentials_renewed: int = 0
    subscriptions_renewed: int = 0
    reauth_notifications: int = 0
    subscriptions_stale: int = 0
    subscriptions_pruned: int = 0
    failures: int = 0


class SchedulerStatusResponse(BaseModel):
    """Lifecycle state of the renewal scheduler."""

    state: str = Field(..., description="IDLE, RUNNING or STOPPED")
    pass_in_progress: bool
    passes_completed: int
    tick_seconds: float
    last_pass: Optional[PassSummary] = None

    class Config:
        json_schema_extra = {
            "example": {
                "state": "RUNNING",
                "pass_in_progress": False,
                "passes_completed": 12,
                "tick_seconds": 300,
                "last_pass": None,
            }
        }


class SubscriptionStatus(BaseModel):
    """Expiry view of a single subscription."""

    id: str
    resource: str
    expires_on: datetime
    minutes_remaining: int
    due: bool


class UserStatus(BaseModel):
    """Expiry view of a user's credential and subscriptions."""

    user_id: str
    credential_expires_on: datetime
    credential_minutes_remaining: int
    credential_due: bool
    subscriptions: list[SubscriptionStatus] = Field(default_factory=list)


class UsersStatusResponse(BaseModel):
    """All tracked users."""

    count: int
    users: list[UserStatus]


class ToggleResponse(BaseModel):
    """Result of a start/stop request."""

    state: str
    changed: bool
    message: str


class ErrorDetail(BaseModel):
    """What went wrong, as carried in an error response."""

    error: str
    message: str


class ErrorResponse(BaseModel):
    """Error body returned by the control API."""

    detail: ErrorDetail

    class Config:
        json_schema_extra = {
            "example": {
                "detail": {
                    "error": "User not found",
                    "message": "User 'oid-1.tid-1' is not tracked",
                }
            }
        }


class AuthUrlResponse(BaseModel):
    """Interactive sign-in URL."""

    url: str


class AuthorizeResponse(BaseModel):
    """Result of redeeming an authorization code."""

    user_id: str
    subscription_ids: list[str]
    message: str
