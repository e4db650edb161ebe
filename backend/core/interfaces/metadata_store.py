"""Metadata store interface."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from ..domain.user import User


class MetadataStore(ABC):
    """Abstract per-user key-value record store (the system of record).

    ``update_metadata`` merges the given keys into the stored record; a
    value of None removes the key.
    """

    @abstractmethod
    async def get_user(self, user_id: str) -> User:
        """Get user by ID. Raises NotFoundError if missing."""
        ...

    @abstractmethod
    async def get_users_by_email(self, email: str) -> list[User]:
        """Get all users registered with an email address."""
        ...

    @abstractmethod
    async def create_user(self, email: str, app_metadata: Mapping[str, Any] | None = None) -> User:
        """Create a new user with the given initial metadata."""
        ...

    @abstractmethod
    async def update_metadata(self, user_id: str, update: Mapping[str, Any]) -> User:
        """Merge a partial update into a user's metadata."""
        ...

    @abstractmethod
    async def search_members_by_owner(self, owner_id: str) -> list[User]:
        """Get users whose subscription_owner_id is ``owner_id``."""
        ...
