"""Credential acquisition and silent refresh against the identity provider.

Responsibilities:
- Build the interactive sign-in URL
- Exchange an authorization code for the first credential
- Refresh a credential non-interactively from the account identity alone
- Split refresh failures into "user must sign in again" and "try later"

Token handling is delegated to MSAL; refresh tokens live in the MSAL
application's in-memory token cache.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import msal
import requests
from pydantic import BaseModel

from graph_renewal.logging_config import get_logger
from graph_renewal.models.settings import IdentitySettings
from graph_renewal.models.user import AccountIdentity, Credential
from graph_renewal.utils.timestamps import expiry_from_seconds, utc_now

logger = get_logger(__name__)

# Error codes that only an interactive sign-in can clear
REAUTH_ERROR_CODES = frozenset(
    {
        "invalid_grant",
        "interaction_required",
        "consent_required",
        "login_required",
    }
)

# MSAL adds these itself and rejects them when passed explicitly
RESERVED_SCOPES = frozenset({"openid", "profile", "offline_access"})


class CredentialError(Exception):
    """Base exception for credential refresh failures."""

    pass


class ReauthRequiredError(CredentialError):
    """No silent refresh path remains; the user must sign in again."""

    pass


class TransientCredentialError(CredentialError):
    """Refresh failed for a reason that may clear on its own (network, throttling)."""

    pass


class AuthorizationError(Exception):
    """Raised when the authorization-code exchange fails."""

    pass


class TokenResult(BaseModel):
    """Outcome of a successful code exchange."""

    access_token: str
    account: AccountIdentity
    expires_on: datetime

    @property
    def credential(self) -> Credential:
        return Credential(access_token=self.access_token, expires_on=self.expires_on)


class CredentialClient(ABC):
    """Contract for obtaining fresh credentials without user interaction."""

    @abstractmethod
    def refresh(self, account: AccountIdentity) -> Credential:
        """Obtain a new credential for ``account``.

        Raises:
            ReauthRequiredError: If an interactive sign-in is required
            TransientCredentialError: For every other failure
        """

    def close(self) -> None:
        """Release any held resources."""


def _error_detail(result: Dict[str, Any]) -> str:
    detail = str(result.get("error", "unknown_error"))
    if result.get("suberror"):
        detail += f" ({result['suberror']})"
    if result.get("error_description"):
        detail += f": {str(result['error_description']).splitlines()[0]}"
    return detail


class OAuthCredentialClient(CredentialClient):
    """Credential client for the Microsoft identity platform built on MSAL.

    The MSAL application is created on first use, since creating it
    contacts the authority for its metadata.

    Args:
        settings: Identity provider settings
        timeout_seconds: Bound on each identity provider call
        app: Optional prebuilt MSAL application (used by tests)
    """

    def __init__(
        self,
        settings: IdentitySettings,
        timeout_seconds: float = 30.0,
        app: Optional[msal.ConfidentialClientApplication] = None,
    ):
        self._settings = settings
        self._timeout_seconds = timeout_seconds
        self._app = app
        self._app_lock = threading.Lock()

    @property
    def scopes(self) -> List[str]:
        return [s for s in self._settings.scopes if s.lower() not in RESERVED_SCOPES]

    def _get_app(self) -> msal.ConfidentialClientApplication:
        if self._app is None:
            with self._app_lock:
                if self._app is None:
                    self._app = msal.ConfidentialClientApplication(
                        self._settings.client_id,
                        client_credential=self._settings.client_secret,
                        authority=self._settings.authority,
                        timeout=self._timeout_seconds,
                    )
                    logger.info("msal_application_created", authority=self._settings.authority)
        return self._app

    def get_auth_url(self, state: Optional[str] = None) -> str:
        """Build the interactive sign-in URL."""
        return self._get_app().get_authorization_request_url(
            self.scopes,
            state=state,
            redirect_uri=self._settings.redirect_uri,
        )

    def get_token_from_code(self, code: str) -> TokenResult:
        """Exchange an authorization code for the first credential.

        Raises:
            AuthorizationError: If the exchange fails or the response lacks an account
        """
        if not code:
            raise AuthorizationError("Authorization code is required")

        try:
            app = self._get_app()
            result = app.acquire_token_by_authorization_code(
                code,
                scopes=self.scopes,
                redirect_uri=self._settings.redirect_uri,
            )
        except (requests.RequestException, ValueError) as e:
            raise AuthorizationError(f"Identity provider unreachable: {e}") from e

        if "error" in result:
            raise AuthorizationError(f"Code exchange failed: {_error_detail(result)}")

        claims = result.get("id_token_claims") or {}
        if not result.get("access_token") or not claims:
            raise AuthorizationError("Token response is missing access_token or id_token")

        oid = claims.get("oid") or claims.get("sub")
        tid = claims.get("tid")
        if not oid:
            raise AuthorizationError("id_token carries no object id")

        username = claims.get("preferred_username")
        cached = app.get_accounts(username=username) if username else []
        account = AccountIdentity(
            home_account_id=cached[0]["home_account_id"] if cached else (f"{oid}.{tid}" if tid else oid),
            tenant_id=tid,
            username=username,
        )

        try:
            expires_on = expiry_from_seconds(result.get("expires_in", 3600))
        except (TypeError, ValueError, OverflowError) as e:
            raise AuthorizationError(f"Token response has an invalid expires_in: {e}") from e

        logger.info("authorization_code_redeemed", user_id=account.home_account_id)
        return TokenResult(access_token=result["access_token"], account=account, expires_on=expires_on)

    def refresh(self, account: AccountIdentity) -> Credential:
        """Redeem the cached refresh token for a new access token.

        The cached access token is always bypassed so the returned expiry
        moves forward.
        """
        requested_at = utc_now()
        try:
            app = self._get_app()
            msal_account = self._find_account(app, account)
            if msal_account is None:
                raise ReauthRequiredError(f"No cached account {account.home_account_id}")
            result = app.acquire_token_silent_with_error(
                self.scopes,
                account=msal_account,
                force_refresh=True,
            )
        except (requests.RequestException, ValueError) as e:
            raise TransientCredentialError(f"Identity provider unreachable: {e}") from e

        if result is None:
            raise ReauthRequiredError(f"No refresh token cached for {account.home_account_id}")
        if "error" in result:
            self._raise_for_refresh_error(app, msal_account, result)

        access_token = result.get("access_token")
        if not access_token:
            raise TransientCredentialError("Token response is missing access_token")
        try:
            expires_on = expiry_from_seconds(result.get("expires_in", 3600), now=requested_at)
        except (TypeError, ValueError, OverflowError) as e:
            raise TransientCredentialError(f"Token response has an invalid expires_in: {e}") from e

        return Credential(access_token=access_token, expires_on=expires_on)

    def _raise_for_refresh_error(
        self,
        app: msal.ConfidentialClientApplication,
        msal_account: Dict[str, Any],
        result: Dict[str, Any],
    ) -> None:
        error = str(result.get("error", "")).lower()
        suberror = str(result.get("suberror", "")).lower()
        detail = _error_detail(result)

        if error in REAUTH_ERROR_CODES or suberror in REAUTH_ERROR_CODES:
            app.remove_account(msal_account)
            raise ReauthRequiredError(f"Silent refresh rejected: {detail}")
        raise TransientCredentialError(f"Silent refresh failed: {detail}")

    @staticmethod
    def _find_account(
        app: msal.ConfidentialClientApplication, account: AccountIdentity
    ) -> Optional[Dict[str, Any]]:
        for candidate in app.get_accounts():
            if candidate.get("home_account_id") == account.home_account_id:
                return candidate
        return None

    def forget(self, account: AccountIdentity) -> None:
        """Drop the cached tokens for an account."""
        app = self._get_app()
        msal_account = self._find_account(app, account)
        if msal_account is not None:
            app.remove_account(msal_account)

    def has_cached_account(self, account: AccountIdentity) -> bool:
        return self._find_account(self._get_app(), account) is not None
