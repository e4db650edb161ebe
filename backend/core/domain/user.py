"""Directory user entity."""

from dataclasses import dataclass, field
from typing import Any

from .metadata import AppMetadata, parse_metadata


@dataclass
class User:
    """A user as held by the metadata store: identity plus raw app metadata."""

    id: str
    email: str
    app_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def metadata(self) -> AppMetadata:
        """Typed view of ``app_metadata``."""
        return parse_metadata(self.app_metadata)
