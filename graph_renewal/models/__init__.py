"""Pydantic models for user state, configuration, events and API responses."""

# User state models
from .user import (
    AccountIdentity,
    Credential,
    SubscriptionRecord,
    UserRecord,
)

# Configuration models
from .settings import (
    GraphSettings,
    IdentitySettings,
    NotifierSettings,
    RenewalSettings,
    ServiceConfig,
)

# Event models
from .events import (
    ReauthEvent,
    RenewalEventType,
)

# API request models (control API)
from .api_request import AuthorizeRequest

# API response models (control API)
from .api_response import (
    AuthorizeResponse,
    AuthUrlResponse,
    ErrorDetail,
    ErrorResponse,
    PassSummary,
    SchedulerStatusResponse,
    SubscriptionStatus,
    ToggleResponse,
    UserStatus,
    UsersStatusResponse,
)

__all__ = [
    # User state
    "AccountIdentity",
    "Credential",
    "SubscriptionRecord",
    "UserRecord",
    # Configuration
    "GraphSettings",
    "IdentitySettings",
    "NotifierSettings",
    "RenewalSettings",
    "ServiceConfig",
    # Events
    "ReauthEvent",
    "RenewalEventType",
    # API requests
    "AuthorizeRequest",
    # API responses
    "AuthorizeResponse",
    "AuthUrlResponse",
    "ErrorDetail",
    "ErrorResponse",
    "PassSummary",
    "SchedulerStatusResponse",
    "SubscriptionStatus",
    "ToggleResponse",
    "UserStatus",
    "UsersStatusResponse",
]
