# Domain Entities
# Pure business objects with no external dependencies
from .events import CanonicalEvent, EventKind, PaymentProvider, SubscriptionStatus
from .metadata import (
    DELETE,
    AppMetadata,
    IndividualSubscriber,
    NoSubscription,
    Subscription,
    TeamMember,
    TeamOwner,
    parse_metadata,
    subscription_of,
    team_owner_id_of,
)
from .user import User

__all__ = [
    "CanonicalEvent",
    "EventKind",
    "PaymentProvider",
    "SubscriptionStatus",
    "DELETE",
    "AppMetadata",
    "NoSubscription",
    "IndividualSubscriber",
    "TeamOwner",
    "TeamMember",
    "Subscription",
    "parse_metadata",
    "subscription_of",
    "team_owner_id_of",
    "User",
]
