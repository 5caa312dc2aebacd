"""Outbound event models published by notifiers."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class RenewalEventType(str, Enum):
    """Events a notifier can be asked to deliver."""

    REAUTH_REQUIRED = "reauth_required"


class ReauthEvent(BaseModel):
    """Notice that a user must sign in again interactively."""

    version: str = Field(default="1.0", description="Event schema version")
    event: RenewalEventType = Field(default=RenewalEventType.REAUTH_REQUIRED)
    user_id: str = Field(..., description="User that needs to re-authorize")
    timestamp: datetime = Field(..., description="UTC instant the condition was detected")

    class Config:
        json_schema_extra = {
            "example": {
                "version": "1.0",
                "event": "reauth_required",
                "user_id": "00000000-0000-0000-0000-000000000001.72f988bf",
                "timestamp": "2026-10-19T10:15:00+00:00",
            }
        }
