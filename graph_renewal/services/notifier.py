"""Reauthorization notice delivery.

Responsibilities:
- Tell the outside world that a user must sign in again
- Never let a delivery failure escape to the caller

Implementations:
- LoggingNotifier: structured log line only
- WebhookNotifier: HTTP POST of a ReauthEvent
- PubSubNotifier: ReauthEvent published to a Google Cloud Pub/Sub topic
"""

from abc import ABC, abstractmethod
from threading import RLock
from typing import Callable, Optional

import httpx
from google.cloud import pubsub_v1

from graph_renewal.clients.http import build_http_client
from graph_renewal.logging_config import get_logger
from graph_renewal.models.events import ReauthEvent, RenewalEventType
from graph_renewal.models.settings import NotifierSettings
from graph_renewal.utils.timestamps import utc_now

logger = get_logger(__name__)


class Notifier(ABC):
    """Best-effort delivery of reauthorization notices.

    Subclasses implement ``_send``; ``deliver`` wraps it so that any failure
    is logged and reported as ``False`` rather than raised.
    """

    def deliver(self, user_id: str) -> bool:
        """Notify that ``user_id`` must re-authorize.

        Returns:
            True if delivered, False otherwise. Never raises.
        """
        try:
            event = ReauthEvent(user_id=user_id, timestamp=utc_now())
            self._send(event)
        except Exception as e:
            logger.error(
                "reauth_notification_failed",
                user_id=user_id,
                notifier=type(self).__name__,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return False

        logger.info(
            "reauth_notification_delivered",
            user_id=user_id,
            notifier=type(self).__name__,
        )
        return True

    @abstractmethod
    def _send(self, event: ReauthEvent) -> None:
        """Deliver one event; may raise."""

    def shutdown(self) -> None:
        """Release any held resources."""


class LoggingNotifier(Notifier):
    """Writes the notice to the log and nothing else."""

    def _send(self, event: ReauthEvent) -> None:
        logger.warning(
            "reauth_required",
            user_id=event.user_id,
            detected_at=event.timestamp.isoformat(),
        )


class WebhookNotifier(Notifier):
    """POSTs the notice as JSON to a configured URL."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._url = url
        self._http = build_http_client(timeout_seconds, transport=transport)

    def _send(self, event: ReauthEvent) -> None:
        response = self._http.post(
            self._url,
            content=event.model_dump_json(),
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()

    def shutdown(self) -> None:
        self._http.close()


class PubSubNotifier(Notifier):
    """Publishes the notice to a Google Cloud Pub/Sub topic.

    Thread-safe: the publisher client is created lazily and shared.
    """

    def __init__(
        self,
        project_id: str,
        topic: str,
        timeout_seconds: float = 30.0,
        publisher_factory: Optional[Callable[[], pubsub_v1.PublisherClient]] = None,
    ):
        self._lock = RLock()
        self._project_id = project_id
        self._topic = topic
        self._timeout_seconds = timeout_seconds
        self._publisher_factory = publisher_factory
        self._publisher: Optional[pubsub_v1.PublisherClient] = None
        self._topic_path: Optional[str] = None

    def _get_publisher(self) -> pubsub_v1.PublisherClient:
        with self._lock:
            if self._publisher is None:
                factory = self._publisher_factory or pubsub_v1.PublisherClient
                self._publisher = factory()
                self._topic_path = self._publisher.topic_path(self._project_id, self._topic)
                logger.info(
                    "pubsub_notifier_initialized",
                    project_id=self._project_id,
                    topic=self._topic,
                    topic_path=self._topic_path,
                )
            return self._publisher

    def _send(self, event: ReauthEvent) -> None:
        publisher = self._get_publisher()
        future = publisher.publish(
            self._topic_path,
            event.model_dump_json().encode("utf-8"),
            # Attributes for subscriber-side filtering
            event_type=RenewalEventType.REAUTH_REQUIRED.value,
            user_id=event.user_id,
        )
        message_id = future.result(timeout=self._timeout_seconds)
        logger.debug("pubsub_message_published", message_id=message_id)

    def shutdown(self) -> None:
        with self._lock:
            if self._publisher is not None:
                logger.info("pubsub_notifier_shutting_down")
                self._publisher = None
                self._topic_path = None


def create_notifier(settings: NotifierSettings, timeout_seconds: float = 30.0) -> Notifier:
    """Build the notifier selected by configuration."""
    if settings.kind == "webhook":
        return WebhookNotifier(settings.webhook_url, timeout_seconds=timeout_seconds)
    if settings.kind == "pubsub":
        return PubSubNotifier(
            settings.pubsub_project_id,
            settings.pubsub_topic,
            timeout_seconds=timeout_seconds,
        )
    return LoggingNotifier()
