"""Account data routes used by the app and the billing page."""

from typing import Any

from fastapi import APIRouter, Response

from api.dependencies import Access, CurrentUserId
from api.schemas.account import BillingDataResponse

router = APIRouter(tags=["Account"])


@router.get("/get-app-data")
async def get_app_data(user_id: CurrentUserId, access: Access, response: Response) -> dict[str, Any]:
    """The caller's effective subscription, including any delegated team subscription."""
    data = await access.get_app_data(user_id)
    # Very briefly cacheable, to absorb repeated app startup requests
    response.headers["Cache-Control"] = "private, max-age=10"
    return data


@router.get(
    "/get-billing-data",
    response_model=BillingDataResponse,
    response_model_exclude_none=True,
)
async def get_billing_data(user_id: CurrentUserId, access: Access, response: Response):
    """The caller's own subscription plus their team members or team owner."""
    data = await access.get_billing_data(user_id)
    response.headers["Cache-Control"] = "private, no-store"
    return data
