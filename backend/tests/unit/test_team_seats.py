"""
Unit tests for team seat management.

Tests cover:
- Owner eligibility
- Duplicate and inconsistent removals and additions
- Seat limits and 48 hour license locks
- Which users may join a team
- Best-effort member updates and their aggregate failure
- Changing the number of paid licenses
"""

from datetime import timedelta

import pytest

from conftest import DAY_MS, FakePaymentClient, add_member, no_sleep
from core.errors import ConflictError, ForbiddenError, TeamUpdateError, UpstreamError, ValidationError
from services.team_seats import Result, TeamSeatManager, fan_out


async def _value(value):
    return value


async def _boom(message):
    raise RuntimeError(message)


class TestFanOut:
    """Tests for the best-effort fan-out helper."""

    @pytest.mark.asyncio
    async def test_collects_every_result(self):
        results = await fan_out({"a": _value(1), "b": _boom("nope"), "c": _value(3)})

        assert [r.key for r in results] == ["a", "b", "c"]
        assert [r.ok for r in results] == [True, False, True]
        assert results[0].value == 1
        assert str(results[1].error) == "nope"

    def test_result_ok(self):
        assert Result(key="x", value=None).ok
        assert not Result(key="x", error=ValueError()).ok


class TestMembershipFromParsedRecords:
    """Tests that joining rules follow the parsed record, not raw keys."""

    @pytest.mark.asyncio
    async def test_owner_on_own_team_cannot_join_another(self, seat_manager, store, clock):
        other = store.add_user(
            "other-owner@example.com",
            {
                "subscription_status": "active",
                "subscription_sku": "team-monthly",
                "subscription_expiry": clock.millis + DAY_MS,
                "team_member_ids": [],
            },
        )
        store.users[other.id].app_metadata["subscription_owner_id"] = other.id
        owner = store.add_user(
            "owner2@example.com",
            {
                "subscription_status": "active",
                "subscription_sku": "team-annual",
                "subscription_quantity": 2,
                "subscription_expiry": clock.millis + DAY_MS,
                "payment_provider": "paddle",
            },
        )

        with pytest.raises(ConflictError, match="already have a team"):
            await seat_manager.update_team(owner.id, emails_to_add=[other.email])

    @pytest.mark.asyncio
    async def test_owner_without_member_list_starts_empty(self, seat_manager, store, clock):
        owner = store.add_user(
            "owner2@example.com",
            {
                "subscription_status": "active",
                "subscription_sku": "team-annual",
                "subscription_quantity": 2,
                "subscription_expiry": clock.millis + DAY_MS,
            },
        )

        ids = await seat_manager.update_team(owner.id, emails_to_add=["a@example.com"])

        assert store.metadata_of(owner.id)["team_member_ids"] == ids
        assert store.metadata_of(owner.id)["locked_licenses"] == []


class TestOwnerEligibility:
    """Tests for who may manage a team."""

    @pytest.mark.asyncio
    async def test_individual_subscriber_is_forbidden(self, seat_manager, store, clock):
        user = store.add_user(
            "pro@example.com",
            {"subscription_status": "active", "subscription_sku": "pro-annual",
             "subscription_expiry": clock.millis + DAY_MS},
        )

        with pytest.raises(ForbiddenError):
            await seat_manager.update_team(user.id, emails_to_add=["a@example.com"])

    @pytest.mark.asyncio
    async def test_expired_team_is_forbidden(self, seat_manager, store, clock, team_owner):
        store.users[team_owner.id].app_metadata["subscription_expiry"] = clock.millis - 1

        with pytest.raises(ForbiddenError):
            await seat_manager.update_team(team_owner.id, emails_to_add=["a@example.com"])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["deleted", "past_due"])
    async def test_unexpired_but_inactive_team_is_forbidden(
        self, seat_manager, store, clock, team_owner, status
    ):
        store.users[team_owner.id].app_metadata["subscription_status"] = status

        with pytest.raises(ForbiddenError, match="active subscription"):
            await seat_manager.update_team(team_owner.id, emails_to_add=["a@example.com"])

        assert store.updates == []


class TestAddingMembers:
    """Tests for adding members by email."""

    @pytest.mark.asyncio
    async def test_adds_new_and_existing_users(self, seat_manager, store, clock, team_owner):
        existing = store.add_user("existing@example.com")

        ids = await seat_manager.update_team(
            team_owner.id, emails_to_add=["Existing@Example.com", "new@example.com"]
        )

        assert ids[0] == existing.id
        [created] = await store.get_users_by_email("new@example.com")
        assert ids == [existing.id, created.id]
        assert store.metadata_of(team_owner.id)["team_member_ids"] == ids
        for member_id in ids:
            assert store.metadata_of(member_id) == {
                "subscription_owner_id": team_owner.id,
                "joined_team_at": clock.millis,
            }

    @pytest.mark.asyncio
    async def test_over_quantity_is_conflict(self, seat_manager, store, clock, team_owner):
        store.users[team_owner.id].app_metadata["subscription_quantity"] = 1
        await seat_manager.update_team(team_owner.id, emails_to_add=["a@example.com"])

        with pytest.raises(ConflictError) as exc_info:
            await seat_manager.update_team(team_owner.id, emails_to_add=["b@example.com"])

        assert exc_info.value.status_code == 409
        assert "only 1 were purchased" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_duplicate_email_is_bad_request(self, seat_manager, team_owner):
        with pytest.raises(ValidationError):
            await seat_manager.update_team(
                team_owner.id, emails_to_add=["a@example.com", "A@example.com"]
            )

    @pytest.mark.asyncio
    async def test_existing_member_is_conflict(self, seat_manager, store, clock, team_owner):
        add_member(store, team_owner, "a@example.com", clock.millis)

        with pytest.raises(ConflictError, match="already present"):
            await seat_manager.update_team(team_owner.id, emails_to_add=["a@example.com"])

    @pytest.mark.asyncio
    async def test_member_of_another_team_cannot_join(self, seat_manager, store, team_owner):
        store.add_user("a@example.com", {"subscription_owner_id": "someone-else"})

        with pytest.raises(ConflictError, match="already have a team"):
            await seat_manager.update_team(team_owner.id, emails_to_add=["a@example.com"])

    @pytest.mark.asyncio
    async def test_active_subscriber_cannot_join(self, seat_manager, store, clock, team_owner):
        store.add_user(
            "a@example.com",
            {"subscription_status": "active", "subscription_expiry": clock.millis + DAY_MS},
        )

        with pytest.raises(ConflictError, match="active subscription"):
            await seat_manager.update_team(team_owner.id, emails_to_add=["a@example.com"])

    @pytest.mark.asyncio
    async def test_subscription_within_margin_cannot_join(
        self, seat_manager, store, clock, team_owner
    ):
        store.add_user(
            "a@example.com",
            {"subscription_status": "active", "subscription_expiry": clock.millis - 30_000},
        )

        with pytest.raises(ConflictError):
            await seat_manager.update_team(team_owner.id, emails_to_add=["a@example.com"])

    @pytest.mark.asyncio
    async def test_expired_subscriber_can_join(self, seat_manager, store, clock, team_owner):
        user = store.add_user(
            "a@example.com",
            {"subscription_status": "active", "subscription_expiry": clock.millis - 2 * DAY_MS},
        )

        assert await seat_manager.update_team(team_owner.id, emails_to_add=["a@example.com"]) == [user.id]

    @pytest.mark.asyncio
    async def test_cancelled_subscriber_can_join(self, seat_manager, store, clock, team_owner):
        user = store.add_user(
            "a@example.com",
            {"subscription_status": "deleted", "subscription_expiry": clock.millis + DAY_MS},
        )

        assert await seat_manager.update_team(team_owner.id, emails_to_add=["a@example.com"]) == [user.id]

    @pytest.mark.asyncio
    async def test_owner_can_add_themselves(self, seat_manager, store, team_owner):
        ids = await seat_manager.update_team(team_owner.id, emails_to_add=[team_owner.email])

        assert ids == [team_owner.id]
        assert store.metadata_of(team_owner.id)["subscription_owner_id"] == team_owner.id

    @pytest.mark.asyncio
    async def test_duplicate_accounts_are_upstream_error(self, seat_manager, store, team_owner):
        store.add_user("a@example.com")
        store.add_user("a@example.com")

        with pytest.raises(UpstreamError):
            await seat_manager.update_team(team_owner.id, emails_to_add=["a@example.com"])


class TestRemovingMembers:
    """Tests for removals and the license locks they create."""

    @pytest.mark.asyncio
    async def test_remove_unlinks_member(self, seat_manager, store, clock, team_owner):
        member = add_member(store, team_owner, "a@example.com", clock.millis - 3 * DAY_MS)

        ids = await seat_manager.update_team(team_owner.id, ids_to_remove=[member.id])

        assert ids == []
        assert store.metadata_of(member.id) == {}
        # Joined long ago, so no lock
        assert store.metadata_of(team_owner.id)["locked_licenses"] == []

    @pytest.mark.asyncio
    async def test_recent_removal_locks_the_seat(self, seat_manager, store, clock, team_owner):
        member = add_member(store, team_owner, "a@example.com", clock.millis - 60_000)

        await seat_manager.update_team(team_owner.id, ids_to_remove=[member.id])

        assert store.metadata_of(team_owner.id)["locked_licenses"] == [clock.millis]

    @pytest.mark.asyncio
    async def test_locked_seat_blocks_swap_until_lock_expires(
        self, seat_manager, store, clock, team_owner
    ):
        store.users[team_owner.id].app_metadata["subscription_quantity"] = 1
        member = add_member(store, team_owner, "a@example.com", clock.millis - 60_000)

        with pytest.raises(ConflictError) as exc_info:
            await seat_manager.update_team(
                team_owner.id, ids_to_remove=[member.id], emails_to_add=["b@example.com"]
            )
        assert exc_info.value.status_code == 403
        # Nothing was written
        assert store.updates == []

        await seat_manager.update_team(team_owner.id, ids_to_remove=[member.id])
        with pytest.raises(ConflictError) as exc_info:
            await seat_manager.update_team(team_owner.id, emails_to_add=["b@example.com"])
        assert exc_info.value.status_code == 403

        clock.advance(timedelta(hours=48, minutes=1))
        ids = await seat_manager.update_team(team_owner.id, emails_to_add=["b@example.com"])
        assert len(ids) == 1
        assert store.metadata_of(team_owner.id)["locked_licenses"] == []

    @pytest.mark.asyncio
    async def test_member_without_join_date_never_locks(self, seat_manager, store, team_owner):
        member = add_member(store, team_owner, "a@example.com", None)

        await seat_manager.update_team(team_owner.id, ids_to_remove=[member.id])

        assert store.metadata_of(team_owner.id)["locked_licenses"] == []

    @pytest.mark.asyncio
    async def test_duplicate_removal_is_bad_request(self, seat_manager, store, clock, team_owner):
        member = add_member(store, team_owner, "a@example.com", clock.millis)

        with pytest.raises(ValidationError):
            await seat_manager.update_team(team_owner.id, ids_to_remove=[member.id, member.id])

    @pytest.mark.asyncio
    async def test_removing_stranger_is_conflict(self, seat_manager, store, team_owner):
        stranger = store.add_user("x@example.com")

        with pytest.raises(ConflictError, match="not registered"):
            await seat_manager.update_team(team_owner.id, ids_to_remove=[stranger.id])

    @pytest.mark.asyncio
    async def test_member_missing_from_owner_list_is_conflict(self, seat_manager, store, team_owner):
        orphan = store.add_user("x@example.com", {"subscription_owner_id": team_owner.id})

        with pytest.raises(ConflictError, match="not listed"):
            await seat_manager.update_team(team_owner.id, ids_to_remove=[orphan.id])


class TestPartialFailures:
    """Tests for member updates that fail part way."""

    @pytest.mark.asyncio
    async def test_failed_additions_are_reported_and_raised(
        self, seat_manager, store, team_owner, reported
    ):
        store.failing_emails = {"b@example.com", "c@example.com"}

        with pytest.raises(TeamUpdateError) as exc_info:
            await seat_manager.update_team(
                team_owner.id, emails_to_add=["a@example.com", "b@example.com", "c@example.com"]
            )

        assert len(exc_info.value.errors) == 2
        assert len(reported) == 2
        # The successful item was still applied; the owner record was not
        [added] = await store.get_users_by_email("a@example.com")
        assert added.app_metadata["subscription_owner_id"] == team_owner.id
        assert store.metadata_of(team_owner.id)["team_member_ids"] == []

    @pytest.mark.asyncio
    async def test_failed_removal_stops_before_additions(
        self, seat_manager, store, clock, team_owner, reported
    ):
        member = add_member(store, team_owner, "a@example.com", clock.millis - 3 * DAY_MS)
        store.failing_ids = {member.id}

        with pytest.raises(TeamUpdateError):
            await seat_manager.update_team(
                team_owner.id, ids_to_remove=[member.id], emails_to_add=["b@example.com"]
            )

        assert await store.get_users_by_email("b@example.com") == []
        assert len(reported) == 1


class TestSeatInvariant:
    """Team size never exceeds quantity minus active locks after a successful update."""

    @pytest.mark.asyncio
    async def test_fill_remove_and_refill(self, seat_manager, store, clock, team_owner):
        ids = await seat_manager.update_team(
            team_owner.id, emails_to_add=["a@example.com", "b@example.com", "c@example.com"]
        )
        assert len(ids) == 3

        clock.advance(timedelta(hours=1))
        ids = await seat_manager.update_team(team_owner.id, ids_to_remove=ids[:2])
        owner = store.metadata_of(team_owner.id)
        assert len(owner["team_member_ids"]) == 1
        assert len(owner["locked_licenses"]) == 2
        assert len(owner["team_member_ids"]) <= 3 - len(owner["locked_licenses"])

        with pytest.raises(ConflictError):
            await seat_manager.update_team(team_owner.id, emails_to_add=["d@example.com"])


class TestUpdateTeamSize:
    """Tests for changing the number of licenses a team pays for."""

    @pytest.mark.asyncio
    async def test_upgrade_is_prorated_and_waits_for_confirmation(
        self, seat_manager, store, team_owner, paddle_client
    ):
        quantity = await seat_manager.update_team_size(team_owner.id, 5)

        assert quantity == 5
        assert paddle_client.quantity_updates == [("sub-team-1", 5, True, True)]
        assert store.metadata_of(team_owner.id)["subscription_quantity"] == 5

    @pytest.mark.asyncio
    async def test_downgrade_is_deferred_to_next_bill(
        self, seat_manager, store, clock, team_owner, paddle_client
    ):
        add_member(store, team_owner, "a@example.com", clock.millis)

        await seat_manager.update_team_size(team_owner.id, 1)

        assert paddle_client.quantity_updates == [("sub-team-1", 1, False, False)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [0, -2, 3])
    async def test_invalid_or_unchanged_size_is_bad_request(
        self, seat_manager, team_owner, paddle_client, size
    ):
        with pytest.raises(ValidationError):
            await seat_manager.update_team_size(team_owner.id, size)

        assert paddle_client.quantity_updates == []

    @pytest.mark.asyncio
    async def test_below_assigned_members_is_conflict(
        self, seat_manager, store, clock, team_owner, paddle_client
    ):
        add_member(store, team_owner, "a@example.com", clock.millis)
        add_member(store, team_owner, "b@example.com", clock.millis)

        with pytest.raises(ConflictError, match="assigned licenses") as exc_info:
            await seat_manager.update_team_size(team_owner.id, 1)

        assert exc_info.value.status_code == 409
        assert paddle_client.quantity_updates == []

    @pytest.mark.asyncio
    async def test_inactive_team_is_forbidden(self, seat_manager, store, team_owner):
        store.users[team_owner.id].app_metadata["subscription_status"] = "past_due"

        with pytest.raises(ForbiddenError):
            await seat_manager.update_team_size(team_owner.id, 5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider", ["paypro", "manual"])
    async def test_non_paddle_subscription_is_rejected(
        self, seat_manager, store, team_owner, paddle_client, provider
    ):
        store.users[team_owner.id].app_metadata["payment_provider"] = provider

        with pytest.raises(ValidationError):
            await seat_manager.update_team_size(team_owner.id, 5)

        assert paddle_client.quantity_updates == []

    @pytest.mark.asyncio
    async def test_provider_failure_is_reported(
        self, seat_manager, team_owner, paddle_client, reported
    ):
        paddle_client.fail = True

        with pytest.raises(UpstreamError):
            await seat_manager.update_team_size(team_owner.id, 5)

        assert len(reported) == 1

    @pytest.mark.asyncio
    async def test_missing_confirmation_times_out(self, store, clock, team_owner, reported):
        paddle_client = FakePaymentClient(store, apply_updates=False)
        seat_manager = TeamSeatManager(
            store,
            clock=clock,
            report_error=reported.append,
            payment_client=paddle_client,
            confirmation_timeout=timedelta(seconds=2),
            poll_interval=timedelta(milliseconds=500),
            sleep=no_sleep,
        )

        with pytest.raises(UpstreamError) as exc_info:
            await seat_manager.update_team_size(team_owner.id, 5)

        assert exc_info.value.status_code == 504
        assert store.metadata_of(team_owner.id)["subscription_quantity"] == 3
        assert "no update applied" in reported[0]
