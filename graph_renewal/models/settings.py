"""Service configuration models.

Models from renewal.yaml configuration.
"""

from typing import Optional

from pydantic import BaseModel, Field, model_validator


class RenewalSettings(BaseModel):
    """Timing and behaviour of the recurring renewal pass."""

    tick_seconds: float = Field(default=300.0, gt=0, description="Scheduler tick period")
    credential_lead_minutes: float = Field(
        default=10.0, gt=0, description="Renew a credential this long before it expires"
    )
    subscription_lead_minutes: float = Field(
        default=60.0, gt=0, description="Renew a subscription this long before it expires"
    )
    call_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Upper bound on any single external call"
    )
    max_parallel_users: int = Field(
        default=1, ge=1, description="Users processed concurrently within one pass"
    )
    prune_stale_subscriptions: bool = Field(
        default=True, description="Remove subscriptions the remote service no longer knows"
    )
    run_on_start: bool = Field(default=True, description="Run a pass immediately on start")

    @model_validator(mode="after")
    def check_windows_cover_tick(self) -> "RenewalSettings":
        """Both lead-time windows must cover one missed tick."""
        tick_minutes = self.tick_seconds / 60.0
        for name in ("credential_lead_minutes", "subscription_lead_minutes"):
            if getattr(self, name) < 2 * tick_minutes:
                raise ValueError(
                    f"{name} ({getattr(self, name)}) must be at least twice the tick period "
                    f"({tick_minutes:g} minutes)"
                )
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "tick_seconds": 300,
                "credential_lead_minutes": 10,
                "subscription_lead_minutes": 60,
                "call_timeout_seconds": 30,
                "max_parallel_users": 4,
                "prune_stale_subscriptions": True,
                "run_on_start": True,
            }
        }


class IdentitySettings(BaseModel):
    """Identity provider (OAuth 2.0 / Microsoft identity platform) settings."""

    authority_host: str = Field(
        default="https://login.microsoftonline.com", description="Authority base URL"
    )
    tenant_id: str = Field(default="common", description="Directory (tenant) ID")
    client_id: str = Field(default="", description="Application (client) ID")
    client_secret: str = Field(default="", description="Client secret")
    redirect_uri: str = Field(
        default="http://localhost:3000/auth/callback", description="OAuth redirect URI"
    )
    scopes: list[str] = Field(
        default_factory=lambda: ["User.Read", "Mail.Read", "offline_access"],
        description="Scopes requested at sign-in and refresh",
    )

    @property
    def authority(self) -> str:
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}"


class GraphSettings(BaseModel):
    """Remote subscription service settings."""

    base_url: str = Field(default="https://graph.microsoft.com/v1.0", description="API base URL")
    notification_url: Optional[str] = Field(None, description="Public webhook callback URL")
    client_state: Optional[str] = Field(None, description="Shared secret echoed in notifications")
    change_type: str = Field(default="created,updated", description="Change types to watch")
    default_resource: str = Field(
        default="/me/mailFolders/inbox/messages", description="Resource watched on sign-up"
    )
    subscription_lifetime_minutes: int = Field(
        default=4230, gt=0, description="Requested lifetime on create and renew"
    )


class NotifierSettings(BaseModel):
    """Where reauthorization notices are delivered."""

    kind: str = Field(default="log", description="'log', 'webhook' or 'pubsub'")
    webhook_url: Optional[str] = Field(None, description="Target for the webhook notifier")
    pubsub_project_id: Optional[str] = Field(None, description="GCP project for the Pub/Sub notifier")
    pubsub_topic: Optional[str] = Field(None, description="Pub/Sub topic for the Pub/Sub notifier")

    @model_validator(mode="after")
    def check_kind(self) -> "NotifierSettings":
        if self.kind not in ("log", "webhook", "pubsub"):
            raise ValueError(f"Unknown notifier kind: '{self.kind}'")
        if self.kind == "webhook" and not self.webhook_url:
            raise ValueError("webhook notifier requires webhook_url")
        if self.kind == "pubsub" and not (self.pubsub_project_id and self.pubsub_topic):
            raise ValueError("pubsub notifier requires pubsub_project_id and pubsub_topic")
        return self


class ServiceConfig(BaseModel):
    """Complete renewal.yaml configuration."""

    renewal: RenewalSettings = Field(default_factory=RenewalSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)
    graph: GraphSettings = Field(default_factory=GraphSettings)
    notifier: NotifierSettings = Field(default_factory=NotifierSettings)
