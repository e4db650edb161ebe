"""
AppMetadata: the per-user record kept in the external directory.

The stored record is a flat dict whose meaning depends on which optional
fields are set. ``parse_metadata`` is the only place that inspects field
presence; everything else works with the named variants:

- ``NoSubscription``: never subscribed, or nothing subscription-related stored
- ``IndividualSubscriber``: holds a Pro subscription for themselves
- ``TeamOwner``: pays for a team; their subscription applies to the members
- ``TeamMember``: uses a seat on somebody else's team
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Final, TypeVar

from core.domain.events import SubscriptionStatus
from core.domain.licenses import effective_capacity
from core.plans import SKU, is_team_sku, parse_sku

# Store updates treat None as "remove this key" rather than storing a null
DELETE: Final = None

T = TypeVar("T")


@dataclass(frozen=True)
class Subscription:
    """Subscription fields shared by subscribers and team owners."""

    status: str | None = None
    subscription_id: str | None = None
    sku: SKU | None = None
    expiry: int | None = None  # epoch ms
    quantity: int | None = None
    payment_provider: str | None = None

    def is_active(self, now_ms: int) -> bool:
        """Status is active and the paid period has not ended."""
        return (
            self.status == SubscriptionStatus.ACTIVE
            and self.expiry is not None
            and self.expiry > now_ms
        )

    def is_unexpired(self, now_ms: int, margin_ms: int = 0) -> bool:
        return self.expiry is not None and self.expiry + margin_ms > now_ms

    def remaining_ms(self, now_ms: int) -> int | None:
        if self.expiry is None:
            return None
        return self.expiry - now_ms


@dataclass(frozen=True)
class NoSubscription:
    banned: bool = False
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IndividualSubscriber:
    subscription: Subscription
    banned: bool = False
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TeamOwner:
    subscription: Subscription
    # None when the record has never had a member list or lock list
    team_member_ids: tuple[str, ...] | None = None
    locked_licenses: tuple[int, ...] | None = None
    # Owners can be members of their own team
    subscription_owner_id: str | None = None
    joined_team_at: int | None = None
    banned: bool = False
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def members(self) -> tuple[str, ...]:
        return self.team_member_ids or ()

    @property
    def locks(self) -> tuple[int, ...]:
        return self.locked_licenses or ()

    def capacity(self, now_ms: int) -> int:
        """Seats usable right now, after subtracting locked licenses."""
        return effective_capacity(self.subscription.quantity or 0, self.locks, now_ms)


@dataclass(frozen=True)
class TeamMember:
    subscription_owner_id: str
    joined_team_at: int | None = None  # epoch ms; None for old/manual memberships
    # Leftover fields from an earlier individual subscription, if any
    subscription: Subscription | None = None
    banned: bool = False
    raw: dict[str, Any] = field(default_factory=dict)


AppMetadata = NoSubscription | IndividualSubscriber | TeamOwner | TeamMember


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)


def _optional_tuple(values: Any, convert: Callable[[Any], T]) -> tuple[T, ...] | None:
    if values is None:
        return None
    return tuple(convert(value) for value in values)


def _parse_subscription(data: dict[str, Any]) -> Subscription | None:
    if "subscription_status" not in data and "subscription_sku" not in data:
        return None

    subscription_id = data.get("subscription_id")
    return Subscription(
        status=data.get("subscription_status"),
        # Old records store numeric ids; all ids are strings now
        subscription_id=str(subscription_id) if subscription_id is not None else None,
        sku=parse_sku(data.get("subscription_sku")),
        expiry=_optional_int(data.get("subscription_expiry")),
        quantity=_optional_int(data.get("subscription_quantity")),
        payment_provider=data.get("payment_provider"),
    )


def parse_metadata(data: dict[str, Any] | None) -> AppMetadata:
    """Classify a raw metadata dict into its variant."""
    raw = dict(data or {})
    banned = bool(raw.get("banned", False))
    subscription = _parse_subscription(raw)

    if "team_member_ids" in raw or (subscription and is_team_sku(subscription.sku)):
        return TeamOwner(
            subscription=subscription or Subscription(),
            team_member_ids=_optional_tuple(raw.get("team_member_ids"), str),
            locked_licenses=_optional_tuple(raw.get("locked_licenses"), int),
            subscription_owner_id=raw.get("subscription_owner_id") or None,
            joined_team_at=_optional_int(raw.get("joined_team_at")),
            banned=banned,
            raw=raw,
        )

    if raw.get("subscription_owner_id"):
        return TeamMember(
            subscription_owner_id=raw["subscription_owner_id"],
            joined_team_at=_optional_int(raw.get("joined_team_at")),
            subscription=subscription,
            banned=banned,
            raw=raw,
        )

    if subscription is not None:
        return IndividualSubscriber(subscription=subscription, banned=banned, raw=raw)

    return NoSubscription(banned=banned, raw=raw)


def subscription_of(metadata: AppMetadata) -> Subscription | None:
    """The record's own subscription fields, whichever variant it is."""
    if isinstance(metadata, NoSubscription):
        return None
    return metadata.subscription


def team_owner_id_of(metadata: AppMetadata) -> str | None:
    """Id of the team whose seat this record uses, if any."""
    if isinstance(metadata, (TeamMember, TeamOwner)):
        return metadata.subscription_owner_id
    return None


def joined_team_at_of(metadata: AppMetadata) -> int | None:
    """When this record joined the team it has a seat on, if known."""
    if isinstance(metadata, (TeamMember, TeamOwner)):
        return metadata.joined_team_at
    return None
