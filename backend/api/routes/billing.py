"""Subscription management routes."""

import logging

from fastapi import APIRouter, Request, Response

from api.dependencies import Billing, CurrentUserId
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.account import CancelSubscriptionResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Billing"])


@router.post("/cancel-subscription", response_model=CancelSubscriptionResponse)
@limiter.limit(get_rate_limit("cancel_subscription"))
async def cancel_subscription(
    request: Request,
    response: Response,
    user_id: CurrentUserId,
    billing: Billing,
):
    """
    Cancel the caller's subscription with their payment provider.

    The stored subscription changes once the provider's cancellation
    webhook arrives, not here.
    """
    await billing.cancel_subscription(user_id)
    response.headers["Cache-Control"] = "no-store"
    return CancelSubscriptionResponse()
