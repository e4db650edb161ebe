"""Database layer.

The engine lives in ``connection`` and is only imported when the database
metadata store is selected, so the Auth0 deployment never needs a driver.
"""

from .models import Base, UserRecord

__all__ = [
    "Base",
    "UserRecord",
]
