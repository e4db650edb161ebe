"""
Team seat management.

Team owners add members by email and remove them by id. Seats are limited
by the purchased quantity, and a seat freed within 48 hours of being
assigned stays locked for 48 hours (see core.domain.licenses).

All validation happens before anything is written. The member updates then
run concurrently and best-effort: every item is attempted, failures are
reported individually and raised together once all have finished.

Owners can also change the number of licenses they pay for. That request
goes to Paddle, and is only complete once Paddle's webhook has updated
the stored quantity.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Generic, TypeVar

from core.clock import Clock, to_millis, utc_now
from core.domain.events import PaymentProvider, SubscriptionStatus
from core.domain.licenses import count_active_locks, locks_on_removal, prune_expired_locks
from core.domain.metadata import (
    DELETE,
    TeamOwner,
    joined_team_at_of,
    subscription_of,
    team_owner_id_of,
)
from core.domain.user import User
from core.errors import ConflictError, ForbiddenError, TeamUpdateError, UpstreamError, ValidationError
from core.interfaces.metadata_store import MetadataStore
from core.interfaces.payment_provider import SeatQuantityClient
from core.plans import is_team_sku
from infrastructure.error_reporting import report_error as default_report_error

logger = logging.getLogger(__name__)

# Slack on expiry checks so slightly late webhooks don't leave users in limbo
SUBSCRIPTION_EXPIRY_MARGIN = timedelta(seconds=60)
SUBSCRIPTION_EXPIRY_MARGIN_MS = int(SUBSCRIPTION_EXPIRY_MARGIN.total_seconds() * 1000)

# How long a seat change waits for the provider to confirm it by webhook
CONFIRMATION_TIMEOUT = timedelta(seconds=30)
CONFIRMATION_POLL_INTERVAL = timedelta(milliseconds=500)

MANUAL_PAYMENT_PROVIDER = "manual"

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of one item in a best-effort fan-out."""

    key: str
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _settle(key: str, operation: Awaitable[T]) -> Result[T]:
    try:
        return Result(key=key, value=await operation)
    except Exception as e:
        return Result(key=key, error=e)


async def fan_out(operations: dict[str, Awaitable[T]]) -> list[Result[T]]:
    """Run operations concurrently, collecting a Result for each."""
    return list(await asyncio.gather(*(_settle(key, op) for key, op in operations.items())))


@dataclass(frozen=True)
class _NewMember:
    email: str
    user: User | None  # None when no account exists yet


class TeamSeatManager:
    """Validates and applies changes to a team's membership."""

    def __init__(
        self,
        store: MetadataStore,
        clock: Clock = utc_now,
        report_error: Callable[[BaseException | str], None] = default_report_error,
        payment_client: SeatQuantityClient | None = None,
        confirmation_timeout: timedelta = CONFIRMATION_TIMEOUT,
        poll_interval: timedelta = CONFIRMATION_POLL_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.clock = clock
        self.report_error = report_error
        self.payment_client = payment_client
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.sleep = sleep

    async def update_team(
        self,
        owner_id: str,
        ids_to_remove: Iterable[str] = (),
        emails_to_add: Iterable[str] = (),
    ) -> list[str]:
        """
        Remove and add team members for a team owner.

        Args:
            owner_id: Id of the paying team owner
            ids_to_remove: User ids of members to remove
            emails_to_add: Emails of people to add; accounts are created as needed

        Returns:
            The team's member ids after the update

        Raises:
            ForbiddenError: If the owner has no current team subscription
            ValidationError: If the same member is removed or added twice
            ConflictError: If the change breaks seat limits (403 when blocked by
                locked seats) or membership rules
            TeamUpdateError: If some member updates failed
        """
        ids_to_remove = list(ids_to_remove)
        emails_to_add = [email.strip().lower() for email in emails_to_add]

        owner, members = await asyncio.gather(
            self.store.get_user(owner_id),
            self.store.search_members_by_owner(owner_id),
        )
        now_ms = to_millis(self.clock())
        team = self._require_team_owner(owner, now_ms)

        logger.info(
            "For team %s: add %s and remove %s",
            owner_id,
            ", ".join(emails_to_add) or "nobody",
            ", ".join(ids_to_remove) or "nobody",
        )

        members_by_id = {member.id: member for member in members}
        self._validate_removals(team, members_by_id, ids_to_remove)
        self._validate_new_emails(members, emails_to_add)

        new_locks = [
            now_ms
            for member_id in ids_to_remove
            if locks_on_removal(joined_team_at_of(members_by_id[member_id].metadata), now_ms)
        ]
        self._validate_seats(team, len(emails_to_add) - len(ids_to_remove), new_locks, now_ms)

        new_members = await self._find_new_members(emails_to_add)
        for new_member in new_members:
            if new_member.user is not None:
                self._check_can_join(owner_id, new_member.user, now_ms)

        await self._unlink_members(ids_to_remove)
        new_member_ids = await self._link_members(owner_id, new_members, now_ms)

        updated_ids = [
            member_id for member_id in team.members if member_id not in ids_to_remove
        ] + new_member_ids
        updated_locks = prune_expired_locks([*team.locks, *new_locks], now_ms)

        await self.store.update_metadata(
            owner_id,
            {"team_member_ids": updated_ids, "locked_licenses": updated_locks},
        )
        return updated_ids

    async def update_team_size(self, owner_id: str, new_team_size: int) -> int:
        """
        Ask the payment provider to change how many licenses a team pays for.

        Upgrades are prorated and billed immediately; downgrades lower the next
        bill. The provider applies the change through its usual webhook, which
        this waits for before returning.

        Args:
            owner_id: Id of the paying team owner
            new_team_size: Number of licenses wanted

        Returns:
            The team's subscription quantity once the provider has confirmed it

        Raises:
            ForbiddenError: If the owner has no active team subscription
            ValidationError: If the size is invalid or unchanged, or the
                subscription is not managed through Paddle
            ConflictError: If the size is below the number of assigned licenses
            UpstreamError: If the provider rejects the change, or it is not
                confirmed in time (504)
        """
        owner = await self.store.get_user(owner_id)
        now_ms = to_millis(self.clock())
        team = self._require_team_owner(owner, now_ms)
        subscription = team.subscription

        if subscription.payment_provider == MANUAL_PAYMENT_PROVIDER:
            raise ValidationError(
                "Cannot update manually managed subscription, please contact billing"
            )
        if subscription.payment_provider != PaymentProvider.PADDLE or self.payment_client is None:
            raise ValidationError("Cannot update non-Paddle team subscription")
        if not subscription.subscription_id:
            raise UpstreamError(f"Team {owner_id} has no subscription id")

        if new_team_size < 1:
            raise ValidationError("Cannot reduce subscription below 1 license")
        if new_team_size == subscription.quantity:
            raise ValidationError("Cannot update subscription to the same number of licenses")
        if new_team_size < len(team.members):
            raise ConflictError(
                "Cannot downgrade subscription below the number of assigned licenses"
            )

        logger.info("For team %s: update quantity to %d", owner_id, new_team_size)

        upgrade = new_team_size > (subscription.quantity or 0)
        try:
            await self.payment_client.update_subscription_quantity(
                subscription.subscription_id,
                new_team_size,
                prorate=upgrade,
                bill_immediately=upgrade,
            )
        except UpstreamError as e:
            self.report_error(e)
            raise

        await self._wait_for_quantity(owner_id, new_team_size)
        return new_team_size

    async def _wait_for_quantity(self, owner_id: str, quantity: int) -> None:
        polls = max(int(self.confirmation_timeout / self.poll_interval), 1)
        for _ in range(polls):
            owner = await self.store.get_user(owner_id)
            subscription = subscription_of(owner.metadata)
            if subscription is not None and subscription.quantity == quantity:
                return
            await self.sleep(self.poll_interval.total_seconds())

        self.report_error(
            f"Team size update accepted but no update applied for team {owner_id}"
        )
        raise UpstreamError(
            "No subscription update received from Paddle before timeout", status_code=504
        )

    def _require_team_owner(self, owner: User, now_ms: int) -> TeamOwner:
        metadata = owner.metadata
        if not isinstance(metadata, TeamOwner) or not is_team_sku(metadata.subscription.sku):
            raise ForbiddenError("Your account does not have a Team subscription")
        # Cancelled and past-due teams keep their members until expiry, frozen as they are
        if not metadata.subscription.is_active(now_ms):
            raise ForbiddenError("Your account does not have an active subscription")
        return metadata

    def _validate_removals(
        self, team: TeamOwner, members_by_id: dict[str, User], ids_to_remove: Sequence[str]
    ) -> None:
        if len(set(ids_to_remove)) != len(ids_to_remove):
            raise ValidationError("Cannot remove a team member more than once")

        # Membership is recorded on both sides; both must agree
        if any(member_id not in members_by_id for member_id in ids_to_remove):
            raise ConflictError(
                "Cannot remove a team member who is not registered as a member of the team"
            )
        if any(member_id not in team.members for member_id in ids_to_remove):
            raise ConflictError(
                "Cannot remove a team member who is not listed as a member of the team"
            )

    def _validate_new_emails(self, members: Sequence[User], emails_to_add: Sequence[str]) -> None:
        if len(set(emails_to_add)) != len(emails_to_add):
            raise ValidationError("Cannot add a team member more than once")

        member_emails = {member.email.lower() for member in members}
        if any(email in member_emails for email in emails_to_add):
            raise ConflictError("Cannot add team member who is already present")

    def _validate_seats(
        self, team: TeamOwner, size_change: int, new_locks: Sequence[int], now_ms: int
    ) -> None:
        quantity = team.subscription.quantity or 0
        new_size = len(team.members) + size_change

        if new_size > quantity:
            raise ConflictError(
                f"The proposed team needs {new_size} licenses but only {quantity} were purchased"
            )

        locked = count_active_locks(team.locks, now_ms) + len(new_locks)
        if new_size > quantity - locked:
            raise ConflictError(
                "The proposed team would use more licenses than you have available, "
                f"as {locked} recently reassigned licenses are locked",
                status_code=403,
            )

    async def _find_new_members(self, emails: Sequence[str]) -> list[_NewMember]:
        matches = await asyncio.gather(*(self.store.get_users_by_email(e) for e in emails))

        new_members = []
        for email, users in zip(emails, matches):
            if len(users) > 1:
                raise UpstreamError(f"More than one user found for email {email}")
            new_members.append(_NewMember(email=email, user=users[0] if users else None))
        return new_members

    def _check_can_join(self, owner_id: str, user: User, now_ms: int) -> None:
        metadata = user.metadata

        if team_owner_id_of(metadata):
            raise ConflictError("Cannot add a user to a team if they already have a team")

        subscription = subscription_of(metadata)
        if subscription is None or subscription.status is None:
            return

        # Recently cancelled subscribers can move straight onto a team
        if subscription.status == SubscriptionStatus.DELETED:
            return

        # Owners can't use their own subscription unless they're a member of their team
        if user.id == owner_id:
            return

        if subscription.is_unexpired(now_ms, margin_ms=SUBSCRIPTION_EXPIRY_MARGIN_MS):
            raise ConflictError("Cannot add a user to a team if they have an active subscription")

    def _raise_failures(self, action: str, results: list[Result[Any]]) -> None:
        failures = [result for result in results if not result.ok]
        if not failures:
            return

        logger.warning("%d errors %s %d team members", len(failures), action, len(results))
        for failure in failures:
            self.report_error(failure.error)
        raise TeamUpdateError(
            f"Failed {action} {len(failures)} of {len(results)} team members",
            [failure.error for failure in failures],
        )

    async def _unlink_members(self, ids_to_remove: Sequence[str]) -> None:
        results = await fan_out(
            {
                member_id: self.store.update_metadata(
                    member_id,
                    {"subscription_owner_id": DELETE, "joined_team_at": DELETE},
                )
                for member_id in ids_to_remove
            }
        )
        self._raise_failures("removing", results)

    async def _link_members(
        self, owner_id: str, new_members: Sequence[_NewMember], now_ms: int
    ) -> list[str]:
        membership = {"subscription_owner_id": owner_id, "joined_team_at": now_ms}

        results = await fan_out(
            {
                member.email: (
                    self.store.update_metadata(member.user.id, membership)
                    if member.user is not None
                    else self.store.create_user(member.email, membership)
                )
                for member in new_members
            }
        )
        self._raise_failures("adding", results)
        return [result.value.id for result in results]
