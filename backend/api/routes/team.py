"""Team membership routes."""

import logging

from fastapi import APIRouter, Request, Response

from api.dependencies import CurrentUserId, SeatManager
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.team import (
    UpdateTeamRequest,
    UpdateTeamResponse,
    UpdateTeamSizeRequest,
    UpdateTeamSizeResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Team"])


@router.post("/update-team", response_model=UpdateTeamResponse)
@limiter.limit(get_rate_limit("update_team"))
async def update_team(
    request: Request,
    body: UpdateTeamRequest,
    response: Response,
    owner_id: CurrentUserId,
    seats: SeatManager,
):
    """
    Add and remove members of the caller's team.

    The caller must own a current team subscription. Nothing is changed if
    any part of the request is invalid.
    """
    team_member_ids = await seats.update_team(
        owner_id,
        ids_to_remove=body.ids_to_remove,
        emails_to_add=[str(email) for email in body.emails_to_add],
    )
    response.headers["Cache-Control"] = "no-store"
    return UpdateTeamResponse(team_member_ids=team_member_ids)


@router.post("/update-team-size", response_model=UpdateTeamSizeResponse)
@limiter.limit(get_rate_limit("update_team_size"))
async def update_team_size(
    request: Request,
    body: UpdateTeamSizeRequest,
    response: Response,
    owner_id: CurrentUserId,
    seats: SeatManager,
):
    """
    Change how many licenses the caller's team pays for.

    Upgrades are billed immediately, pro-rated. Downgrades lower the next
    bill and can't go below the number of assigned licenses. Responds once
    the payment provider has confirmed the new quantity.
    """
    quantity = await seats.update_team_size(owner_id, body.new_team_size)
    response.headers["Cache-Control"] = "no-store"
    return UpdateTeamSizeResponse(subscription_quantity=quantity)
