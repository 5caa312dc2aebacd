"""Remote change-notification subscription client.

Responsibilities:
- Create, renew, list and delete subscriptions on the remote service
- Translate remote failures into a closed set of statuses

Each call makes exactly one request; retry policy belongs to the caller.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from graph_renewal.clients.http import build_http_client
from graph_renewal.logging_config import get_logger
from graph_renewal.models.settings import GraphSettings
from graph_renewal.models.user import Credential, SubscriptionRecord
from graph_renewal.utils.timestamps import (
    expiry_from_now,
    format_remote_datetime,
    parse_remote_datetime,
)

logger = get_logger(__name__)


class RemoteStatus(str, Enum):
    """Closed set of remote failure classes."""

    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    OTHER = "other"

    @classmethod
    def from_status_code(cls, status_code: int) -> "RemoteStatus":
        if status_code == 404:
            return cls.NOT_FOUND
        if status_code == 401:
            return cls.UNAUTHORIZED
        if status_code == 429:
            return cls.RATE_LIMITED
        return cls.OTHER


class SubscriptionClientError(Exception):
    """Base exception for subscription client failures."""

    pass


class RemoteStatusError(SubscriptionClientError):
    """The remote service rejected a subscription call (or could not be reached)."""

    def __init__(
        self,
        status: RemoteStatus,
        detail: str = "",
        status_code: Optional[int] = None,
    ):
        self.status = status
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"{status.value}: {detail}" if detail else status.value)


class SubscriptionClient(ABC):
    """Contract for managing remote subscriptions."""

    @abstractmethod
    def renew(self, credential: Credential, subscription_id: str) -> datetime:
        """Extend a subscription's lifetime.

        Returns:
            The new UTC expiry reported by the remote service

        Raises:
            RemoteStatusError: On any failure
        """

    @abstractmethod
    def create(self, credential: Credential, resource: Optional[str] = None) -> SubscriptionRecord:
        """Register a new subscription for ``resource``."""

    @abstractmethod
    def delete(self, credential: Credential, subscription_id: str) -> None:
        """Remove a subscription from the remote service."""

    @abstractmethod
    def list(self, credential: Credential) -> List[SubscriptionRecord]:
        """List subscriptions visible to the credential."""

    def close(self) -> None:
        """Release any held resources."""


class GraphSubscriptionClient(SubscriptionClient):
    """Subscription client for the Microsoft Graph ``/subscriptions`` API."""

    def __init__(
        self,
        settings: GraphSettings,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the subscription client.

        Args:
            settings: Remote service settings
            timeout_seconds: Bound on each call
            transport: Optional httpx transport (used by tests)
        """
        self._settings = settings
        self._http = build_http_client(
            timeout_seconds, base_url=settings.base_url, transport=transport
        )

    def _requested_expiry(self) -> str:
        return format_remote_datetime(expiry_from_now(self._settings.subscription_lifetime_minutes))

    def _send(
        self,
        operation: str,
        method: str,
        path: str,
        credential: Credential,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            response = self._http.request(
                method,
                path,
                json=json_body,
                headers={"Authorization": f"Bearer {credential.access_token}"},
            )
        except httpx.TimeoutException as e:
            raise RemoteStatusError(RemoteStatus.OTHER, f"{operation} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise RemoteStatusError(RemoteStatus.OTHER, f"{operation} failed: {e}") from e

        if response.is_error:
            status = RemoteStatus.from_status_code(response.status_code)
            detail = self._error_detail(response)
            logger.warning(
                "subscription_call_rejected",
                operation=operation,
                status=status.value,
                status_code=response.status_code,
                detail=detail,
            )
            raise RemoteStatusError(status, detail, status_code=response.status_code)
        return response

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            error = response.json().get("error", {})
        except (ValueError, AttributeError):
            return f"HTTP {response.status_code}"
        if isinstance(error, dict):
            code = error.get("code", "")
            message = error.get("message", "")
            parts = [f"HTTP {response.status_code}", code, message]
            return " ".join(part for part in parts if part)
        return f"HTTP {response.status_code} {error}"

    @staticmethod
    def _to_record(payload: Dict[str, Any]) -> SubscriptionRecord:
        try:
            return SubscriptionRecord(
                id=payload["id"],
                resource=payload.get("resource", ""),
                expires_on=parse_remote_datetime(payload["expirationDateTime"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteStatusError(RemoteStatus.OTHER, f"Malformed subscription payload: {e}") from e

    def renew(self, credential: Credential, subscription_id: str) -> datetime:
        response = self._send(
            "renew",
            "PATCH",
            f"/subscriptions/{subscription_id}",
            credential,
            json_body={"expirationDateTime": self._requested_expiry()},
        )
        try:
            return parse_remote_datetime(response.json()["expirationDateTime"])
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteStatusError(RemoteStatus.OTHER, f"Malformed renewal response: {e}") from e

    def create(self, credential: Credential, resource: Optional[str] = None) -> SubscriptionRecord:
        body: Dict[str, Any] = {
            "changeType": self._settings.change_type,
            "notificationUrl": self._settings.notification_url,
            "resource": resource or self._settings.default_resource,
            "expirationDateTime": self._requested_expiry(),
        }
        if self._settings.client_state:
            body["clientState"] = self._settings.client_state

        response = self._send("create", "POST", "/subscriptions", credential, json_body=body)
        record = self._to_record(response.json())
        logger.info(
            "subscription_created",
            subscription_id=record.id,
            resource=record.resource,
            expires_on=record.expires_on.isoformat(),
        )
        return record

    def delete(self, credential: Credential, subscription_id: str) -> None:
        self._send("delete", "DELETE", f"/subscriptions/{subscription_id}", credential)
        logger.info("subscription_deleted", subscription_id=subscription_id)

    def list(self, credential: Credential) -> List[SubscriptionRecord]:
        response = self._send("list", "GET", "/subscriptions", credential)
        try:
            items = response.json().get("value", [])
        except (ValueError, AttributeError) as e:
            raise RemoteStatusError(RemoteStatus.OTHER, f"Malformed list response: {e}") from e
        return [self._to_record(item) for item in items]

    def close(self) -> None:
        self._http.close()
