"""User directory (metadata store) adapters."""

from .auth0_adapter import Auth0MetadataStore, Auth0TokenVerifier, create_auth0_store
from .database_store import DatabaseMetadataStore, merge_metadata

__all__ = [
    "Auth0MetadataStore",
    "Auth0TokenVerifier",
    "DatabaseMetadataStore",
    "create_auth0_store",
    "merge_metadata",
]
