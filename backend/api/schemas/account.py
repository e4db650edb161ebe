"""
Account data API schemas.

App data is returned as the stored metadata dict minus internal fields, so
it stays open-ended; billing data has a fixed shape for team details.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class TeamMemberInfo(BaseModel):
    """A member of the caller's team."""

    id: str
    name: str
    locked: bool
    error: Optional[str] = None


class TeamOwnerInfo(BaseModel):
    """The owner of the team the caller belongs to."""

    id: str
    name: Optional[str] = None
    error: Optional[str] = None


class BillingDataResponse(BaseModel):
    """Schema for the caller's billing data."""

    # Subscription fields are passed through as stored
    model_config = ConfigDict(extra="allow")

    email: str
    team_members: Optional[list[TeamMemberInfo]] = None
    team_owner: Optional[TeamOwnerInfo] = None
    locked_license_expiries: Optional[list[int]] = None


class WebhookResponse(BaseModel):
    """Schema for webhook acknowledgements."""

    status: str
    message: Optional[str] = None



class CancelSubscriptionResponse(BaseModel):
    """Schema for an accepted cancellation request."""

    status: str = "success"
