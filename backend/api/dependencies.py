"""
API dependencies for authentication and service access.
"""

from typing import Annotated

from fastapi import Depends, Header

from adapters.directory.auth0_adapter import Auth0TokenVerifier
from core.errors import AuthError
from services import (
    AccessService,
    BillingService,
    SubscriptionReconciler,
    TeamSeatManager,
    WebhookDeduplicator,
    get_access_service,
    get_billing_service,
    get_reconciler,
    get_team_seat_manager,
    get_token_verifier,
    get_webhook_deduplicator,
)


def get_bearer_token(authorization: Annotated[str | None, Header()] = None) -> str:
    """Extract the bearer token from the Authorization header."""
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1].strip() or None

    if not token:
        raise AuthError("Not authenticated")
    return token


async def get_current_user_id(
    token: Annotated[str, Depends(get_bearer_token)],
    verifier: Annotated[Auth0TokenVerifier, Depends(get_token_verifier)],
) -> str:
    """Dependency resolving the caller's bearer token to their user id."""
    return await verifier.get_user_id(token)


CurrentUserId = Annotated[str, Depends(get_current_user_id)]
Reconciler = Annotated[SubscriptionReconciler, Depends(get_reconciler)]
SeatManager = Annotated[TeamSeatManager, Depends(get_team_seat_manager)]
Access = Annotated[AccessService, Depends(get_access_service)]
Billing = Annotated[BillingService, Depends(get_billing_service)]
Deduplicator = Annotated[WebhookDeduplicator, Depends(get_webhook_deduplicator)]
