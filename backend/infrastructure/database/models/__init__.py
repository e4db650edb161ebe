"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin
from .user import UserRecord

__all__ = [
    "Base",
    "TimestampMixin",
    "UserRecord",
]
