"""
Effective-access and billing views of a user.

App data is what the user can actually use: team members get their owner's
subscription, team owners see their team's subscription separately (it isn't
theirs to use unless they are also a member). Billing data is what the user
pays for, plus the team membership details needed to manage it.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from core.clock import Clock, to_millis, utc_now
from core.domain.licenses import lock_expiries, locks_on_removal
from core.domain.metadata import (
    TeamOwner,
    joined_team_at_of,
    parse_metadata,
    subscription_of,
    team_owner_id_of,
)
from core.domain.user import User
from core.errors import AccountsError
from core.interfaces.metadata_store import MetadataStore
from core.plans import get_paddle_id_for_sku, is_team_sku, parse_sku
from infrastructure.error_reporting import report_error as default_report_error

logger = logging.getLogger(__name__)

# Subscription data this far past expiry is dropped from app data
EXPIRED_DATA_CUTOFF = timedelta(days=1)
EXPIRED_DATA_CUTOFF_MS = int(EXPIRED_DATA_CUTOFF.total_seconds() * 1000)

# Used internally, never returned to clients
INTERNAL_FIELDS = ("subscription_id", "paddle_user_id")

# Everything hidden once a user's subscription data has expired
SUBSCRIPTION_PROPERTIES = (
    "subscription_status",
    "subscription_id",
    "subscription_sku",
    "subscription_plan_id",
    "subscription_expiry",
    "subscription_quantity",
    "payment_provider",
    "last_receipt_url",
    "paddle_user_id",
    "update_url",
    "cancel_url",
    "team_member_ids",
    "locked_licenses",
    "subscription_owner_id",
    "joined_team_at",
)

# Moved from a team owner's own data into their team_subscription
TEAM_SUBSCRIPTION_PROPERTIES = (
    "subscription_status",
    "subscription_sku",
    "subscription_plan_id",
    "subscription_expiry",
    "subscription_quantity",
    "payment_provider",
    "last_receipt_url",
    "update_url",
    "cancel_url",
    "team_member_ids",
)

# Copied from a team owner to each member within the team's capacity
DELEGATED_PROPERTIES = (
    "subscription_status",
    "subscription_expiry",
    "subscription_sku",
    "subscription_plan_id",
)

# Dropped from billing data, as they are internal or returned in another shape
BILLING_OMITTED_FIELDS = (
    "feature_flags",
    "subscription_owner_id",
    "team_member_ids",
    "locked_licenses",
    *INTERNAL_FIELDS,
)


def _with_plan_id(data: dict[str, Any]) -> dict[str, Any]:
    """Add the legacy Paddle plan id that older clients still read."""
    sku = parse_sku(data.get("subscription_sku"))
    if sku is not None and "subscription_plan_id" not in data:
        data["subscription_plan_id"] = get_paddle_id_for_sku(sku)
    return data


class AccessService:
    """Builds the app-data and billing-data views for a user."""

    def __init__(
        self,
        store: MetadataStore,
        clock: Clock = utc_now,
        report_error: Callable[[BaseException | str], None] = default_report_error,
    ):
        self.store = store
        self.clock = clock
        self.report_error = report_error

    async def get_app_data(self, user_id: str) -> dict[str, Any]:
        """The user's effective subscription and account data."""
        user = await self.store.get_user(user_id)
        now_ms = to_millis(self.clock())
        metadata = user.metadata

        data = {
            key: value for key, value in user.app_metadata.items() if key not in INTERNAL_FIELDS
        }
        data = _with_plan_id(data)
        data["email"] = user.email

        # A team subscription belongs to the team, not to its owner
        if isinstance(metadata, TeamOwner) and is_team_sku(metadata.subscription.sku):
            data.pop("locked_licenses", None)
            data["team_subscription"] = {
                key: data.pop(key) for key in TEAM_SUBSCRIPTION_PROPERTIES if key in data
            }

        owner_id = team_owner_id_of(metadata)
        if owner_id:
            await self._delegate_team_subscription(user, owner_id, data, now_ms)

        # Whatever subscription the user ended up with, own or delegated
        effective = subscription_of(parse_metadata(data))
        if (
            effective is not None
            and effective.expiry is not None
            and effective.expiry < now_ms - EXPIRED_DATA_CUTOFF_MS
        ):
            for key in SUBSCRIPTION_PROPERTIES:
                data.pop(key, None)

        return data

    async def _delegate_team_subscription(
        self, user: User, owner_id: str, data: dict[str, Any], now_ms: int
    ) -> None:
        if owner_id == user.id:
            owner = user
        else:
            try:
                owner = await self.store.get_user(owner_id)
            except AccountsError as e:
                self.report_error(e)
                return

        owner_metadata = owner.metadata
        if not isinstance(owner_metadata, TeamOwner) or not is_team_sku(
            owner_metadata.subscription.sku
        ):
            return

        capacity = max(owner_metadata.capacity(now_ms), 0)
        if user.id in owner_metadata.members[:capacity]:
            owner_data = _with_plan_id(dict(owner.app_metadata))
            for key in DELEGATED_PROPERTIES:
                if key in owner_data:
                    data[key] = owner_data[key]
                else:
                    data.pop(key, None)
        else:
            self.report_error(f"Inconsistent team membership for {user.id}")
            data.pop("subscription_owner_id", None)

    async def get_billing_data(self, user_id: str) -> dict[str, Any]:
        """The user's own subscription, plus their team members or team owner."""
        user = await self.store.get_user(user_id)
        now_ms = to_millis(self.clock())

        data = _with_plan_id(
            {
                key: value
                for key, value in user.app_metadata.items()
                if key not in BILLING_OMITTED_FIELDS
            }
        )
        data["email"] = user.email

        team_members, team_owner = await asyncio.gather(
            self._get_team_members(user, now_ms),
            self._get_team_owner(user, now_ms),
        )
        if team_members is not None:
            data["team_members"] = team_members
        if team_owner is not None:
            data["team_owner"] = team_owner

        metadata = user.metadata
        if isinstance(metadata, TeamOwner) and metadata.locked_licenses is not None:
            data["locked_license_expiries"] = lock_expiries(metadata.locked_licenses, now_ms)

        return data

    async def _get_team_members(self, user: User, now_ms: int) -> list[dict[str, Any]] | None:
        metadata = user.metadata
        if not isinstance(metadata, TeamOwner) or not is_team_sku(metadata.subscription.sku):
            return None

        member_ids = list(metadata.members)

        def position(member: User) -> float:
            # Stable against quantity changes: who is past the limit follows list order
            return member_ids.index(member.id) if member.id in member_ids else float("inf")

        members = sorted(await self.store.search_members_by_owner(user.id), key=position)
        capacity = metadata.capacity(now_ms)

        team_members = []
        for index, member in enumerate(members):
            if member.id not in member_ids:
                error = "inconsistent-member-data"
            elif index >= capacity:
                error = "member-beyond-team-limit"
            else:
                error = None

            if error:
                self.report_error(f"Billing data member issue for {member.id} of team {user.id}: {error}")

            team_members.append(
                {
                    "id": member.id,
                    "name": member.email,
                    "locked": locks_on_removal(joined_team_at_of(member.metadata), now_ms),
                    "error": error,
                }
            )

        if len(team_members) != len(member_ids):
            self.report_error(f"Missing team members for team {user.id}")

        return team_members

    async def _get_team_owner(self, user: User, now_ms: int) -> dict[str, Any] | None:
        owner_id = team_owner_id_of(user.metadata)
        if not owner_id:
            return None

        try:
            owner = user if owner_id == user.id else await self.store.get_user(owner_id)
        except AccountsError as e:
            self.report_error(e)
            return {"id": owner_id, "name": None, "error": "owner-unavailable"}

        owner_metadata = owner.metadata
        if isinstance(owner_metadata, TeamOwner):
            member_ids = owner_metadata.members
            capacity = owner_metadata.capacity(now_ms)
        else:
            member_ids, capacity = (), 0

        if user.id not in member_ids:
            error = "inconsistent-owner-data"
        elif member_ids.index(user.id) >= capacity:
            error = "member-beyond-owner-limit"
        else:
            error = None

        if error:
            self.report_error(f"Billing data owner issue for {user.id}: {error}")

        return {"id": owner_id, "name": owner.email, "error": error}
