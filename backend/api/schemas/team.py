"""
Team membership API schemas.
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UpdateTeamRequest(BaseModel):
    """Schema for adding and removing team members."""

    model_config = ConfigDict(populate_by_name=True)

    ids_to_remove: list[str] = Field(
        default_factory=list,
        alias="idsToRemove",
        max_length=500,
        description="User ids of members to remove",
    )
    emails_to_add: list[EmailStr] = Field(
        default_factory=list,
        alias="emailsToAdd",
        max_length=500,
        description="Emails of people to add to the team",
    )


class UpdateTeamResponse(BaseModel):
    """Schema for the team after an update."""

    status: str = "success"
    team_member_ids: list[str]


class UpdateTeamSizeRequest(BaseModel):
    """Schema for changing how many licenses a team pays for."""

    model_config = ConfigDict(populate_by_name=True)

    new_team_size: int = Field(
        ...,
        alias="newTeamSize",
        description="Number of licenses the team should pay for",
    )


class UpdateTeamSizeResponse(BaseModel):
    """Schema for the team's confirmed license count."""

    status: str = "success"
    subscription_quantity: int
