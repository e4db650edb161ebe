"""
API request and response schemas.
"""

from .account import (
    BillingDataResponse,
    CancelSubscriptionResponse,
    TeamMemberInfo,
    TeamOwnerInfo,
    WebhookResponse,
)
from .team import (
    UpdateTeamRequest,
    UpdateTeamResponse,
    UpdateTeamSizeRequest,
    UpdateTeamSizeResponse,
)

__all__ = [
    "BillingDataResponse",
    "CancelSubscriptionResponse",
    "TeamMemberInfo",
    "TeamOwnerInfo",
    "WebhookResponse",
    "UpdateTeamRequest",
    "UpdateTeamResponse",
    "UpdateTeamSizeRequest",
    "UpdateTeamSizeResponse",
]
