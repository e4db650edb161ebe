"""
SQL metadata store.

Keeps the directory record in our own ``users`` table, for deployments that
don't use Auth0. Merge semantics match the Auth0 store: keys set to None are
removed from the stored metadata.
"""

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.domain.user import User
from core.errors import NotFoundError, UpstreamError
from core.interfaces.metadata_store import MetadataStore
from infrastructure.database.models import UserRecord

logger = logging.getLogger(__name__)


def merge_metadata(current: Mapping[str, Any], update: Mapping[str, Any]) -> dict[str, Any]:
    """Apply a partial update; None values delete their key."""
    merged = dict(current)
    for key, value in update.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def _to_user(record: UserRecord) -> User:
    return User(id=record.id, email=record.email, app_metadata=dict(record.app_metadata or {}))


class DatabaseMetadataStore(MetadataStore):
    """Metadata store backed by SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_user(self, user_id: str) -> User:
        try:
            async with self._session_factory() as session:
                record = await session.get(UserRecord, user_id)
        except SQLAlchemyError as e:
            raise UpstreamError(f"Database error loading user {user_id}: {e}") from e

        if record is None:
            raise NotFoundError(f"User {user_id} not found")
        return _to_user(record)

    async def get_users_by_email(self, email: str) -> list[User]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(UserRecord).where(UserRecord.email == email.lower())
                )
                return [_to_user(record) for record in result.scalars().all()]
        except SQLAlchemyError as e:
            raise UpstreamError(f"Database error searching users: {e}") from e

    async def create_user(self, email: str, app_metadata: Mapping[str, Any] | None = None) -> User:
        record = UserRecord(email=email.lower(), app_metadata=merge_metadata({}, app_metadata or {}))
        try:
            async with self._session_factory() as session:
                session.add(record)
                await session.commit()
        except SQLAlchemyError as e:
            raise UpstreamError(f"Database error creating user: {e}") from e

        logger.info("Created user %s", record.id)
        return _to_user(record)

    async def update_metadata(self, user_id: str, update: Mapping[str, Any]) -> User:
        try:
            async with self._session_factory() as session:
                record = await session.get(UserRecord, user_id, with_for_update=True)
                if record is None:
                    raise NotFoundError(f"User {user_id} not found")
                # Reassign so the JSON column is marked dirty
                record.app_metadata = merge_metadata(record.app_metadata or {}, update)
                await session.commit()
        except SQLAlchemyError as e:
            raise UpstreamError(f"Database error updating user {user_id}: {e}") from e

        return _to_user(record)

    async def search_members_by_owner(self, owner_id: str) -> list[User]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(UserRecord).where(
                        UserRecord.app_metadata["subscription_owner_id"].as_string() == owner_id
                    )
                )
                return [_to_user(record) for record in result.scalars().all()]
        except SQLAlchemyError as e:
            raise UpstreamError(f"Database error searching team members: {e}") from e
