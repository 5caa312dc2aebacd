"""Control API for the renewal service.

Implements:
- POST /renewal/start - Start periodic renewal passes
- POST /renewal/stop - Stop periodic renewal passes
- POST /renewal/run - Run one pass now
- GET /renewal/status - Scheduler state and last pass summary
- GET /renewal/users - Credential and subscription expiries per user
- DELETE /renewal/users/{user_id} - Stop tracking a user
- GET /renewal/auth-url - Interactive sign-in URL
- POST /renewal/authorize - Redeem an authorization code and onboard the user
"""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, HTTPException

from graph_renewal.clients.credential_client import AuthorizationError
from graph_renewal.clients.subscription_client import RemoteStatusError
from graph_renewal.logging_config import get_logger
from graph_renewal.models import (
    AuthorizeRequest,
    AuthorizeResponse,
    AuthUrlResponse,
    ErrorDetail,
    ErrorResponse,
    PassSummary,
    SchedulerStatusResponse,
    SubscriptionStatus,
    ToggleResponse,
    UserRecord,
    UserStatus,
    UsersStatusResponse,
)
from graph_renewal.repositories.user_registry import get_user_registry
from graph_renewal.services.onboarding import get_onboarding_service
from graph_renewal.services.renewal_scheduler import get_renewal_scheduler
from graph_renewal.utils.expiry_policy import is_due, time_remaining
from graph_renewal.utils.timestamps import utc_now

logger = get_logger(__name__)
router = APIRouter(tags=["Control API"], prefix="/renewal")


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


def _user_status(user: UserRecord, credential_lead: timedelta, subscription_lead: timedelta) -> UserStatus:
    now = utc_now()
    return UserStatus(
        user_id=user.user_id,
        credential_expires_on=user.credential.expires_on,
        credential_minutes_remaining=_minutes(time_remaining(user.credential.expires_on, now)),
        credential_due=is_due(user.credential.expires_on, now, credential_lead),
        subscriptions=[
            SubscriptionStatus(
                id=sub.id,
                resource=sub.resource,
                expires_on=sub.expires_on,
                minutes_remaining=_minutes(time_remaining(sub.expires_on, now)),
                due=is_due(sub.expires_on, now, subscription_lead),
            )
            for sub in user.subscriptions
        ],
    )


@router.post("/start", response_model=ToggleResponse, summary="Start renewal service")
async def start_renewal() -> ToggleResponse:
    """Start periodic passes. Starting a running service changes nothing."""
    scheduler = get_renewal_scheduler()
    changed = scheduler.start()
    return ToggleResponse(
        state=scheduler.state.value,
        changed=changed,
        message="Renewal service started" if changed else "Renewal service already running",
    )


@router.post("/stop", response_model=ToggleResponse, summary="Stop renewal service")
def stop_renewal() -> ToggleResponse:
    """Stop periodic passes. Stopping a stopped service changes nothing.

    Declared sync so FastAPI runs it in its threadpool; stopping waits for
    a pass in progress to finish.
    """
    scheduler = get_renewal_scheduler()
    changed = scheduler.stop()
    return ToggleResponse(
        state=scheduler.state.value,
        changed=changed,
        message="Renewal service stopped" if changed else "Renewal service not running",
    )


@router.post("/run", response_model=PassSummary, summary="Run one renewal pass now")
def run_renewal_now() -> PassSummary:
    """Run a pass immediately.

    Declared sync so FastAPI runs it in its threadpool; the pass blocks on
    remote calls.
    """
    logger.info("manual_pass_requested")
    return get_renewal_scheduler().run_now()


@router.get("/status", response_model=SchedulerStatusResponse, summary="Scheduler status")
async def renewal_status() -> SchedulerStatusResponse:
    return get_renewal_scheduler().status()


@router.get("/users", response_model=UsersStatusResponse, summary="List tracked users")
async def list_users() -> UsersStatusResponse:
    """Report each user's credential and subscription expiry, in minutes remaining."""
    settings = get_renewal_scheduler().orchestrator.settings
    credential_lead = timedelta(minutes=settings.credential_lead_minutes)
    subscription_lead = timedelta(minutes=settings.subscription_lead_minutes)

    users = [
        _user_status(user, credential_lead, subscription_lead)
        for user in get_user_registry().list_all()
    ]
    return UsersStatusResponse(count=len(users), users=users)


@router.delete(
    "/users/{user_id}",
    status_code=204,
    responses={404: {"model": ErrorResponse}},
    summary="Stop tracking a user",
)
async def delete_user(user_id: str) -> None:
    """Remove a user from the registry. Remote subscriptions are left to expire."""
    if not get_user_registry().remove(user_id):
        logger.warning("user_not_found", user_id=user_id)
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(
                error="User not found",
                message=f"User '{user_id}' is not tracked",
            ).model_dump(),
        )
    logger.info("user_deleted_via_api", user_id=user_id)


@router.get("/auth-url", response_model=AuthUrlResponse, summary="Sign-in URL")
def auth_url(state: Optional[str] = None) -> AuthUrlResponse:
    """Build the sign-in URL; the first call may contact the identity provider."""
    return AuthUrlResponse(url=get_onboarding_service().get_auth_url(state))


@router.post(
    "/authorize",
    response_model=AuthorizeResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    summary="Redeem authorization code",
)
def authorize(request: AuthorizeRequest) -> AuthorizeResponse:
    """Redeem an authorization code, store the user and create its first subscription.

    Raises:
        400: Code could not be redeemed
        502: Initial subscription could not be created
    """
    try:
        user = get_onboarding_service().complete_authorization(request.code, request.resource)
    except AuthorizationError as e:
        logger.warning("authorization_failed", error=str(e))
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(error="Authorization failed", message=str(e)).model_dump(),
        )
    except RemoteStatusError as e:
        raise HTTPException(
            status_code=502,
            detail=ErrorDetail(error="Subscription creation failed", message=str(e)).model_dump(),
        )

    return AuthorizeResponse(
        user_id=user.user_id,
        subscription_ids=[sub.id for sub in user.subscriptions],
        message="User authorized and subscribed",
    )
