"""One renewal pass across every tracked user.

Responsibilities:
- Take a single registry snapshot per pass
- Refresh each user's credential when it is inside its lead-time window
- Renew each due subscription with the freshest credential
- Classify failures and isolate each user's failures from all others
- Request reauthorization notices
- Write successful renewals back to the registry

The orchestrator keeps no state between passes.
"""

import contextvars
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timedelta
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel

from graph_renewal.clients.credential_client import (
    CredentialClient,
    OAuthCredentialClient,
    ReauthRequiredError,
    TransientCredentialError,
)
from graph_renewal.clients.subscription_client import (
    GraphSubscriptionClient,
    RemoteStatus,
    RemoteStatusError,
    SubscriptionClient,
)
from graph_renewal.config import Config, get_config
from graph_renewal.logging_config import bound_context, get_logger
from graph_renewal.models.api_response import PassSummary
from graph_renewal.models.settings import RenewalSettings
from graph_renewal.models.user import Credential, UserRecord
from graph_renewal.repositories.user_registry import UserRegistry, get_user_registry
from graph_renewal.services.notifier import Notifier, create_notifier
from graph_renewal.utils.expiry_policy import credential_due, subscription_due
from graph_renewal.utils.timestamps import utc_now

logger = get_logger(__name__)

T = TypeVar("T")


class UserOutcome(BaseModel):
    """What happened to one user during a pass."""

    user_id: str
    credential_renewed: bool = False
    subscriptions_renewed: int = 0
    reauth_notified: bool = False
    subscriptions_stale: int = 0
    subscriptions_pruned: int = 0
    failures: int = 0


class RenewalOrchestrator:
    """Drives renewal passes.

    Args:
        registry: Source of user records and sink for renewed expiries
        credential_client: Silent credential refresh
        subscription_client: Remote subscription renewal
        notifier: Reauthorization notice delivery
        settings: Lead times, call timeout, parallelism and pruning behaviour
        clock: Returns the current UTC time (injectable for tests)
    """

    def __init__(
        self,
        registry: UserRegistry,
        credential_client: CredentialClient,
        subscription_client: SubscriptionClient,
        notifier: Notifier,
        settings: Optional[RenewalSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.registry = registry
        self.credential_client = credential_client
        self.subscription_client = subscription_client
        self.notifier = notifier
        self.settings = settings or RenewalSettings()
        self._clock = clock

        self._credential_lead = timedelta(minutes=self.settings.credential_lead_minutes)
        self._subscription_lead = timedelta(minutes=self.settings.subscription_lead_minutes)

        # Calls run on their own threads so a hung call can be abandoned after the timeout
        self._call_executor = ThreadPoolExecutor(
            max_workers=max(4, 2 * self.settings.max_parallel_users),
            thread_name_prefix="renewal-call",
        )

        logger.info(
            "renewal_orchestrator_initialized",
            credential_lead_minutes=self.settings.credential_lead_minutes,
            subscription_lead_minutes=self.settings.subscription_lead_minutes,
            call_timeout_seconds=self.settings.call_timeout_seconds,
            max_parallel_users=self.settings.max_parallel_users,
        )

    def run_pass(self, now: Optional[datetime] = None) -> PassSummary:
        """Evaluate every user once and renew whatever is due.

        Args:
            now: Reference time for due-ness checks (defaults to the clock)

        Returns:
            PassSummary with outcome counts. A pass never raises because of
            an individual user's failure.
        """
        pass_id = uuid.uuid4().hex[:12]
        started_at = self._clock()
        now = now or started_at
        summary = PassSummary(pass_id=pass_id, started_at=started_at)

        with bound_context(pass_id=pass_id):
            users = self.registry.list_all()
            summary.users_scanned = len(users)
            logger.info("renewal_pass_started", users=len(users), now=now.isoformat())

            if self.settings.max_parallel_users > 1 and len(users) > 1:
                with ThreadPoolExecutor(
                    max_workers=self.settings.max_parallel_users,
                    thread_name_prefix="renewal-user",
                ) as pool:
                    futures = [
                        pool.submit(contextvars.copy_context().run, self.process_user, user, now)
                        for user in users
                    ]
                    outcomes = [future.result() for future in futures]
            else:
                outcomes = [self.process_user(user, now) for user in users]

            for outcome in outcomes:
                summary.credentials_renewed += int(outcome.credential_renewed)
                summary.subscriptions_renewed += outcome.subscriptions_renewed
                summary.reauth_notifications += int(outcome.reauth_notified)
                summary.subscriptions_stale += outcome.subscriptions_stale
                summary.subscriptions_pruned += outcome.subscriptions_pruned
                summary.failures += outcome.failures

            summary.finished_at = self._clock()
            logger.info("renewal_pass_completed", **summary.model_dump(exclude={"pass_id"}, mode="json"))

        return summary

    def process_user(self, user: UserRecord, now: datetime) -> UserOutcome:
        """Run both stages for one user inside a failure boundary."""
        outcome = UserOutcome(user_id=user.user_id)
        with bound_context(user_id=user.user_id):
            try:
                credential = self._credential_stage(user, now, outcome)
                if credential is not None:
                    self._subscription_stage(user, credential, now, outcome)
            except Exception as e:
                outcome.failures += 1
                logger.error(
                    "user_renewal_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
        return outcome

    def _credential_stage(
        self, user: UserRecord, now: datetime, outcome: UserOutcome
    ) -> Optional[Credential]:
        """Refresh the credential if due.

        Returns:
            The credential to use for the subscription stage, or None when the
            user needs to re-authorize.
        """
        current = user.credential
        if not credential_due(current.expires_on, now, self._credential_lead):
            return current

        logger.info("credential_renewal_started", expires_on=current.expires_on.isoformat())
        requested_at = self._clock()
        try:
            refreshed = self._call(
                self.credential_client.refresh,
                user.account,
                on_timeout=TransientCredentialError,
            )
        except ReauthRequiredError as e:
            logger.warning("credential_reauth_required", reason=str(e))
            self._request_reauth(user.user_id, outcome)
            return None
        except TransientCredentialError as e:
            outcome.failures += 1
            logger.warning("credential_renewal_deferred", reason=str(e))
            return current

        if refreshed.expires_on <= max(current.expires_on, requested_at):
            outcome.failures += 1
            logger.warning(
                "credential_expiry_not_advanced",
                current_expiry=current.expires_on.isoformat(),
                offered_expiry=refreshed.expires_on.isoformat(),
            )
            return current

        self.registry.update_credential(user.user_id, refreshed)
        outcome.credential_renewed = True
        logger.info("credential_renewed", new_expiry=refreshed.expires_on.isoformat())
        return refreshed

    def _subscription_stage(
        self,
        user: UserRecord,
        credential: Credential,
        now: datetime,
        outcome: UserOutcome,
    ) -> None:
        """Renew every due subscription in order, stopping on an auth failure."""
        for subscription in user.subscriptions:
            if not subscription_due(subscription.expires_on, now, self._subscription_lead):
                continue

            with bound_context(subscription_id=subscription.id):
                try:
                    new_expiry = self._call(
                        self.subscription_client.renew,
                        credential,
                        subscription.id,
                        on_timeout=lambda message: RemoteStatusError(RemoteStatus.OTHER, message),
                    )
                except RemoteStatusError as e:
                    if e.status is RemoteStatus.UNAUTHORIZED:
                        logger.warning("subscription_renewal_unauthorized", detail=e.detail)
                        self._request_reauth(user.user_id, outcome)
                        return
                    if e.status is RemoteStatus.NOT_FOUND:
                        self._handle_stale(user.user_id, subscription.id, outcome)
                        continue
                    outcome.failures += 1
                    logger.warning(
                        "subscription_renewal_deferred",
                        status=e.status.value,
                        detail=e.detail,
                    )
                    continue

                self.registry.update_subscription_expiry(user.user_id, subscription.id, new_expiry)
                outcome.subscriptions_renewed += 1
                logger.info("subscription_renewed", new_expiry=new_expiry.isoformat())

    def _handle_stale(self, user_id: str, subscription_id: str, outcome: UserOutcome) -> None:
        outcome.subscriptions_stale += 1
        if not self.settings.prune_stale_subscriptions:
            logger.warning("subscription_not_found", action="left_for_manual_cleanup")
            return
        if self.registry.remove_subscription(
            user_id, subscription_id, reason="Remote subscription not found"
        ):
            outcome.subscriptions_pruned += 1
        logger.warning("subscription_not_found", action="pruned")

    def _request_reauth(self, user_id: str, outcome: UserOutcome) -> None:
        if outcome.reauth_notified:
            return
        outcome.reauth_notified = True
        self.notifier.deliver(user_id)

    def _call(
        self,
        fn: Callable[..., T],
        *args,
        on_timeout: Callable[[str], Exception],
    ) -> T:
        """Run an external call with the configured timeout.

        A call that does not finish in time raises ``on_timeout(message)``;
        the worker thread is abandoned, not interrupted.
        """
        timeout = self.settings.call_timeout_seconds
        future = self._call_executor.submit(contextvars.copy_context().run, fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            raise on_timeout(f"{getattr(fn, '__name__', 'call')} exceeded {timeout:g}s")

    def shutdown(self) -> None:
        """Release clients and the call pool; in-flight calls are not awaited."""
        self._call_executor.shutdown(wait=False, cancel_futures=True)
        self.notifier.shutdown()
        self.credential_client.close()
        self.subscription_client.close()
        logger.info("renewal_orchestrator_shut_down")


def build_renewal_orchestrator(config: Optional[Config] = None) -> RenewalOrchestrator:
    """Wire an orchestrator from configuration using the global registry."""
    config = config or get_config()
    timeout = config.renewal.call_timeout_seconds
    return RenewalOrchestrator(
        registry=get_user_registry(),
        credential_client=OAuthCredentialClient(config.identity, timeout_seconds=timeout),
        subscription_client=GraphSubscriptionClient(config.graph, timeout_seconds=timeout),
        notifier=create_notifier(config.notifier, timeout_seconds=timeout),
        settings=config.renewal,
    )


# Global orchestrator instance
_orchestrator_instance: Optional[RenewalOrchestrator] = None
_orchestrator_lock = threading.Lock()


def get_renewal_orchestrator() -> RenewalOrchestrator:
    """Get global renewal orchestrator instance (singleton)."""
    global _orchestrator_instance
    if _orchestrator_instance is None:
        with _orchestrator_lock:
            if _orchestrator_instance is None:
                _orchestrator_instance = build_renewal_orchestrator()
    return _orchestrator_instance


def set_renewal_orchestrator(orchestrator: Optional[RenewalOrchestrator]) -> None:
    """Replace the global orchestrator (None drops it)."""
    global _orchestrator_instance
    with _orchestrator_lock:
        _orchestrator_instance = orchestrator


def reset_renewal_orchestrator() -> None:
    """Shut down and drop the global orchestrator."""
    global _orchestrator_instance
    with _orchestrator_lock:
        if _orchestrator_instance is not None:
            _orchestrator_instance.shutdown()
        _orchestrator_instance = None
