"""
User database model.

Mirrors a directory user record: identity plus the free-form app metadata
dict, used when the database is the metadata store.
"""

from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class UserRecord(Base, TimestampMixin):
    """User account and its app metadata."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    # Not unique: the directory can hold duplicate accounts, which callers detect
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    app_metadata: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<UserRecord(id={self.id}, email={self.email})>"
