"""
Subscription reconciler.

Applies canonical subscription events to the user's stored metadata.
Webhooks can arrive more than once and out of order, so every event is
checked against what is already stored before anything is written:

- events for a different subscription that would move the expiry backwards
  are stale and silently dropped, as are late payments for the same
  subscription that predate one already applied
- a user still on somebody else's active team can't start their own
  subscription
- each event results in at most one write to the user's record
"""

import logging
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from core.clock import Clock, to_millis, utc_now
from core.domain.events import CanonicalEvent, EventKind, SubscriptionStatus
from core.domain.licenses import prune_expired_locks
from core.domain.metadata import (
    DELETE,
    AppMetadata,
    TeamOwner,
    subscription_of,
    team_owner_id_of,
)
from core.domain.user import User
from core.errors import ConflictError, NotFoundError, UpstreamError
from core.interfaces.metadata_store import MetadataStore
from core.plans import is_team_sku
from infrastructure.error_reporting import report_error as default_report_error

logger = logging.getLogger(__name__)

# A different subscription replacing one with more than this left is
# probably a second checkout by mistake
DOUBLE_CHECKOUT_LEEWAY = timedelta(days=5)
DOUBLE_CHECKOUT_LEEWAY_MS = int(DOUBLE_CHECKOUT_LEEWAY.total_seconds() * 1000)

# Events that pay for a period; these only ever move the expiry forwards
EXTENDING_EVENTS = (EventKind.CREATED, EventKind.RENEWED)


class SubscriptionReconciler:
    """Applies canonical events to the metadata store."""

    def __init__(
        self,
        store: MetadataStore,
        clock: Clock = utc_now,
        report_error: Callable[[BaseException | str], None] = default_report_error,
    ):
        self.store = store
        self.clock = clock
        self.report_error = report_error

    async def handle_event(self, event: CanonicalEvent) -> None:
        """Route an event: disputes ban the user, everything else is reconciled."""
        if event.kind == EventKind.DISPUTED:
            await self.ban(event.email)
        else:
            await self.reconcile(event.email, event)

    async def get_or_create_user(self, email: str) -> User:
        """
        Find the single account for an email, creating it if there is none.

        Raises:
            UpstreamError: If the directory holds more than one account for the email
        """
        users = await self.store.get_users_by_email(email)
        if len(users) > 1:
            raise UpstreamError(f"More than one user found for {email}")
        if users:
            return users[0]

        logger.info("Creating user for %s", email)
        return await self.store.create_user(email, {})

    async def ban(self, email: str) -> None:
        """Mark a user as banned after a payment dispute."""
        user = await self.get_or_create_user(email)
        logger.warning("Banning user %s after payment dispute", user.id)
        await self.store.update_metadata(user.id, {"banned": True})

    async def reconcile(self, email: str, event: CanonicalEvent) -> None:
        """
        Apply a subscription event to the user with this email.

        Args:
            email: Lower-cased email of the paying user
            event: The normalized event

        Raises:
            ConflictError: If the user is on another team whose subscription is active
            UpstreamError: If the store fails or is inconsistent
        """
        user = await self.get_or_create_user(email)
        metadata = user.metadata
        now_ms = to_millis(self.clock())

        if self._is_stale(user, metadata, event, now_ms):
            return

        update: dict[str, Any] = event.to_metadata_update()

        owner_id = team_owner_id_of(metadata)
        if owner_id and owner_id != user.id:
            await self._leave_team(user, owner_id, now_ms)
            update["subscription_owner_id"] = DELETE
            update["joined_team_at"] = DELETE

        if is_team_sku(event.sku):
            team = metadata if isinstance(metadata, TeamOwner) else None
            if team is None or team.team_member_ids is None:
                update["team_member_ids"] = []
            update["locked_licenses"] = prune_expired_locks(team.locks if team else (), now_ms)

        logger.info(
            "Applying %s event for subscription %s to user %s",
            event.kind, event.subscription_id, user.id,
            extra={"provider": event.provider.value, "event_kind": event.kind.value},
        )
        await self.store.update_metadata(user.id, update)

    def _is_stale(
        self, user: User, metadata: AppMetadata, event: CanonicalEvent, now_ms: int
    ) -> bool:
        current = subscription_of(metadata)
        if current is None or not current.subscription_id or not event.subscription_id:
            return False

        event_expiry = to_millis(event.expiry) if event.expiry else None

        if current.subscription_id == event.subscription_id:
            # Cancellations and failed payments set their dates verbatim. A payment
            # that arrives after a later one must not shorten the paid period.
            if (
                event.kind in EXTENDING_EVENTS
                and event_expiry is not None
                and current.expiry is not None
                and event_expiry < current.expiry
            ):
                logger.info(
                    "Discarding out-of-order %s event for subscription %s (user %s)",
                    event.kind, event.subscription_id, user.id,
                )
                return True
            return False

        # A different subscription: only accept it if it extends access
        if event_expiry is None or (current.expiry is not None and event_expiry < current.expiry):
            logger.info(
                "Discarding stale %s event for subscription %s (user %s has %s)",
                event.kind, event.subscription_id, user.id, current.subscription_id,
            )
            return True

        remaining = current.remaining_ms(now_ms)
        if (
            current.status != SubscriptionStatus.PAST_DUE
            and remaining is not None
            and remaining > DOUBLE_CHECKOUT_LEEWAY_MS
        ):
            self.report_error(
                f"Likely double checkout: user {user.id} moved from subscription "
                f"{current.subscription_id} to {event.subscription_id} with "
                f"{remaining // 86_400_000} days remaining"
            )
        return False

    async def _leave_team(self, user: User, owner_id: str, now_ms: int) -> None:
        """Take the user off a lapsed team, or refuse if that team is still active."""
        try:
            owner = await self.store.get_user(owner_id)
        except NotFoundError:
            logger.warning("Team owner %s of user %s no longer exists", owner_id, user.id)
            return

        owner_metadata = owner.metadata
        owner_subscription = subscription_of(owner_metadata)
        if owner_subscription is not None and owner_subscription.is_active(now_ms):
            raise ConflictError(
                f"User {user.id} is a member of active team {owner_id} and cannot subscribe"
            )

        if isinstance(owner_metadata, TeamOwner):
            logger.info("Removing user %s from lapsed team %s", user.id, owner_id)
            await self.store.update_metadata(
                owner_id,
                {
                    "team_member_ids": [
                        member_id
                        for member_id in owner_metadata.members
                        if member_id != user.id
                    ],
                    "locked_licenses": prune_expired_locks(
                        owner_metadata.locks, now_ms
                    ),
                },
            )
