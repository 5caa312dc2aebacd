"""First sign-in of a user.

Exchanges an authorization code for the user's first credential, records the
user and registers the initial change-notification subscription.
"""

import threading
from typing import Optional

from graph_renewal.clients.credential_client import OAuthCredentialClient
from graph_renewal.clients.subscription_client import RemoteStatusError, SubscriptionClient
from graph_renewal.logging_config import bound_context, get_logger
from graph_renewal.models.user import UserRecord
from graph_renewal.repositories.user_registry import UserRegistry, get_user_registry

logger = get_logger(__name__)


class OnboardingService:
    """Brings a newly authorized user under renewal.

    Args:
        credential_client: client that redeems authorization codes
        subscription_client: client that creates the initial subscription
        registry: optional registry, if missing, global instance is used
    """

    def __init__(
        self,
        credential_client: OAuthCredentialClient,
        subscription_client: SubscriptionClient,
        registry: Optional[UserRegistry] = None,
    ) -> None:
        self._credential_client = credential_client
        self._subscription_client = subscription_client
        self._registry = registry or get_user_registry()

    def get_auth_url(self, state: Optional[str] = None) -> str:
        return self._credential_client.get_auth_url(state)

    def complete_authorization(self, code: str, resource: Optional[str] = None) -> UserRecord:
        """Redeem ``code`` and start tracking the user.

        The user is saved before the subscription is created, so a failed
        create still leaves a user whose credential will be renewed.

        Returns:
            Snapshot of the stored user record

        Raises:
            AuthorizationError: If the code cannot be redeemed
            RemoteStatusError: If the initial subscription cannot be created
        """
        token = self._credential_client.get_token_from_code(code)
        user_id = token.account.home_account_id

        with bound_context(user_id=user_id):
            self._registry.save_user_token(user_id, token.account, token.credential)
            logger.info("user_authorized", username=token.account.username)

            try:
                subscription = self._subscription_client.create(token.credential, resource)
            except RemoteStatusError as e:
                logger.error(
                    "initial_subscription_failed",
                    status=e.status.value,
                    detail=e.detail,
                )
                raise

            self._registry.add_subscription(user_id, subscription)
            logger.info(
                "user_onboarded",
                subscription_id=subscription.id,
                expires_on=subscription.expires_on.isoformat(),
            )
            return self._registry.get_user(user_id)


_onboarding_instance: Optional[OnboardingService] = None
_onboarding_lock = threading.Lock()


def get_onboarding_service() -> OnboardingService:
    """Get global onboarding service sharing the orchestrator's clients."""
    from graph_renewal.services.renewal_orchestrator import get_renewal_orchestrator

    global _onboarding_instance
    if _onboarding_instance is None:
        with _onboarding_lock:
            if _onboarding_instance is None:
                orchestrator = get_renewal_orchestrator()
                _onboarding_instance = OnboardingService(
                    credential_client=orchestrator.credential_client,
                    subscription_client=orchestrator.subscription_client,
                    registry=orchestrator.registry,
                )
    return _onboarding_instance


def reset_onboarding_service() -> None:
    global _onboarding_instance
    with _onboarding_lock:
        _onboarding_instance = None
