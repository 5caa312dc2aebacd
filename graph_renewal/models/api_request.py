"""API request models for control endpoints."""

from typing import Optional

from pydantic import BaseModel, Field


class AuthorizeRequest(BaseModel):
    """Authorization code returned by the identity provider after sign-in."""

    code: str = Field(..., min_length=1, description="Authorization code from the redirect")
    resource: Optional[str] = Field(
        None, description="Resource to subscribe to (defaults to graph.default_resource)"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "code": "0.AUoAx7...",
                "resource": "/me/mailFolders/inbox/messages",
            }
        }
