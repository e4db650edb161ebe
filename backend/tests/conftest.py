"""
Pytest configuration and shared fixtures for backend tests.
"""

import sys
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, AsyncGenerator
from uuid import uuid4

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import after path is set
from adapters.directory.database_store import merge_metadata
from infrastructure.database.models import Base
from core.clock import to_millis
from core.domain.user import User
from core.errors import AuthError, NotFoundError, UpstreamError
from core.interfaces.metadata_store import MetadataStore
from core.interfaces.payment_provider import SeatQuantityClient
from core.domain.events import PaymentProvider
from services.access import AccessService
from services.billing import BillingService
from services.reconciler import SubscriptionReconciler
from services.team_seats import TeamSeatManager

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)
DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000

# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FrozenClock:
    """Clock fixed at a given instant until advanced."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta

    @property
    def millis(self) -> int:
        return to_millis(self.now)


class InMemoryMetadataStore(MetadataStore):
    """Metadata store holding users in a dict, with the same merge semantics as Auth0."""

    def __init__(self):
        self.users: dict[str, User] = {}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.failing_ids: set[str] = set()
        self.failing_emails: set[str] = set()

    def add_user(self, email: str, app_metadata: Mapping[str, Any] | None = None, user_id: str | None = None) -> User:
        user = User(id=user_id or f"auth0|{uuid4().hex[:12]}", email=email, app_metadata=dict(app_metadata or {}))
        self.users[user.id] = user
        return user

    def metadata_of(self, user_id: str) -> dict[str, Any]:
        return self.users[user_id].app_metadata

    def _copy(self, user: User) -> User:
        return User(id=user.id, email=user.email, app_metadata=dict(user.app_metadata))

    async def get_user(self, user_id: str) -> User:
        if user_id not in self.users:
            raise NotFoundError(f"User {user_id} not found")
        return self._copy(self.users[user_id])

    async def get_users_by_email(self, email: str) -> list[User]:
        return [self._copy(u) for u in self.users.values() if u.email == email.lower()]

    async def create_user(self, email: str, app_metadata: Mapping[str, Any] | None = None) -> User:
        if email in self.failing_emails:
            raise UpstreamError(f"Could not create {email}")
        return self._copy(self.add_user(email.lower(), merge_metadata({}, app_metadata or {})))

    async def update_metadata(self, user_id: str, update: Mapping[str, Any]) -> User:
        if user_id in self.failing_ids:
            raise UpstreamError(f"Could not update {user_id}")
        if user_id not in self.users:
            raise NotFoundError(f"User {user_id} not found")
        self.updates.append((user_id, dict(update)))
        user = self.users[user_id]
        user.app_metadata = merge_metadata(user.app_metadata, update)
        return self._copy(user)

    async def search_members_by_owner(self, owner_id: str) -> list[User]:
        return [
            self._copy(u)
            for u in self.users.values()
            if u.app_metadata.get("subscription_owner_id") == owner_id
        ]


class FakePaymentClient(SeatQuantityClient):
    """Records provider calls; can fail, or apply a quantity change like the webhook would."""

    def __init__(self, store: InMemoryMetadataStore | None = None, apply_updates: bool = True):
        self.store = store
        self.apply_updates = apply_updates
        self.fail = False
        self.cancelled: list[str] = []
        self.quantity_updates: list[tuple[str, int, bool, bool]] = []

    async def cancel_subscription(self, subscription_id: str) -> None:
        if self.fail:
            raise UpstreamError("Unsuccessful response from provider")
        self.cancelled.append(subscription_id)

    async def update_subscription_quantity(
        self, subscription_id: str, quantity: int, prorate: bool, bill_immediately: bool
    ) -> None:
        if self.fail:
            raise UpstreamError("Unsuccessful response from provider")
        self.quantity_updates.append((subscription_id, quantity, prorate, bill_immediately))
        if self.store is not None and self.apply_updates:
            for user in self.store.users.values():
                if user.app_metadata.get("subscription_id") == subscription_id:
                    user.app_metadata["subscription_quantity"] = quantity


class FakeTokenVerifier:
    """Treats ``token-<user id>`` bearer tokens as valid."""

    async def get_user_id(self, token: str) -> str:
        if not token.startswith("token-"):
            raise AuthError("Invalid or expired token")
        return token.removeprefix("token-")

    async def close(self) -> None:
        pass


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def reported() -> list:
    """Errors passed to the error reporter."""
    return []


@pytest.fixture
def reconciler(store, clock, reported) -> SubscriptionReconciler:
    return SubscriptionReconciler(store, clock=clock, report_error=reported.append)


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def paddle_client(store) -> FakePaymentClient:
    return FakePaymentClient(store)


@pytest.fixture
def paypro_client() -> FakePaymentClient:
    return FakePaymentClient()


@pytest.fixture
def seat_manager(store, clock, reported, paddle_client) -> TeamSeatManager:
    return TeamSeatManager(
        store,
        clock=clock,
        report_error=reported.append,
        payment_client=paddle_client,
        sleep=no_sleep,
    )


@pytest.fixture
def billing_service(store, reported, paddle_client, paypro_client) -> BillingService:
    return BillingService(
        store,
        providers={PaymentProvider.PADDLE: paddle_client, PaymentProvider.PAYPRO: paypro_client},
        report_error=reported.append,
    )


@pytest.fixture
def access_service(store, clock, reported) -> AccessService:
    return AccessService(store, clock=clock, report_error=reported.append)


@pytest.fixture
def team_owner(store, clock) -> User:
    """Owner of an active 3-seat annual team subscription with no members yet."""
    return store.add_user(
        "owner@example.com",
        {
            "subscription_status": "active",
            "subscription_id": "sub-team-1",
            "subscription_sku": "team-annual",
            "subscription_quantity": 3,
            "subscription_expiry": clock.millis + 30 * DAY_MS,
            "payment_provider": "paddle",
            "team_member_ids": [],
            "locked_licenses": [],
        },
        user_id="owner-1",
    )


def add_member(store: InMemoryMetadataStore, owner: User, email: str, joined_at: int | None) -> User:
    """Add a linked member to an owner's team, on both sides."""
    metadata: dict[str, Any] = {"subscription_owner_id": owner.id}
    if joined_at is not None:
        metadata["joined_team_at"] = joined_at
    member = store.add_user(email, metadata)
    store.users[owner.id].app_metadata["team_member_ids"] = [
        *store.users[owner.id].app_metadata.get("team_member_ids", []),
        member.id,
    ]
    return member


@pytest.fixture
async def async_client(
    store, clock, reported, seat_manager, billing_service
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing, wired to the in-memory store."""
    # Import app here so the path is set first
    from main import app
    from services import (
        get_access_service,
        get_billing_service,
        get_reconciler,
        get_team_seat_manager,
        get_token_verifier,
        get_webhook_deduplicator,
    )
    from services.webhook_dedup import WebhookDeduplicator

    app.dependency_overrides[get_reconciler] = lambda: SubscriptionReconciler(
        store, clock=clock, report_error=reported.append
    )
    app.dependency_overrides[get_team_seat_manager] = lambda: seat_manager
    app.dependency_overrides[get_billing_service] = lambda: billing_service
    app.dependency_overrides[get_access_service] = lambda: AccessService(
        store, clock=clock, report_error=reported.append
    )
    app.dependency_overrides[get_token_verifier] = lambda: FakeTokenVerifier()
    app.dependency_overrides[get_webhook_deduplicator] = lambda: WebhookDeduplicator(None)

    # Reset rate limiter state between tests to prevent cross-test 429s
    app.state.limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer token-{user_id}"}
