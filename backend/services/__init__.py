"""
Service layer for business logic.

Collaborators are built once per process here and handed to the services;
the API layer reaches them through ``api.dependencies``.
"""

from datetime import timedelta
from functools import lru_cache

from adapters.directory.auth0_adapter import Auth0TokenVerifier
from adapters.payments.paddle_api import PaddleApiClient, create_paddle_api_client
from adapters.payments.paypro_api import PayProApiClient, create_paypro_api_client
from core.domain.events import PaymentProvider
from core.interfaces.metadata_store import MetadataStore
from infrastructure.cache import TTLCache
from infrastructure.config.settings import settings
from services.access import AccessService
from services.billing import BillingService
from services.reconciler import SubscriptionReconciler
from services.team_seats import TeamSeatManager
from services.webhook_dedup import WebhookDeduplicator


@lru_cache
def get_metadata_store() -> MetadataStore:
    """
    Get the singleton metadata store for the configured backend.

    Returns:
        The Auth0 store, or the SQL store when METADATA_STORE_BACKEND=database
    """
    if settings.metadata_store_backend == "database":
        # Imported lazily so Auth0 deployments never create a database engine
        from adapters.directory.database_store import DatabaseMetadataStore
        from infrastructure.database.connection import async_session_maker

        return DatabaseMetadataStore(async_session_maker)

    from adapters.directory.auth0_adapter import create_auth0_store

    return create_auth0_store()


@lru_cache
def get_token_verifier() -> Auth0TokenVerifier:
    """Get the singleton bearer token verifier, with its per-process token cache."""
    cache: TTLCache[str, str] = TTLCache(
        ttl=timedelta(seconds=settings.token_cache_ttl_seconds),
        max_size=settings.token_cache_max_size,
    )
    return Auth0TokenVerifier(cache=cache)


@lru_cache
def get_webhook_deduplicator() -> WebhookDeduplicator:
    return WebhookDeduplicator.from_url(settings.redis_url)


@lru_cache
def get_paddle_api_client() -> PaddleApiClient:
    return create_paddle_api_client()


@lru_cache
def get_paypro_api_client() -> PayProApiClient:
    return create_paypro_api_client()


def get_reconciler() -> SubscriptionReconciler:
    return SubscriptionReconciler(get_metadata_store())


def get_team_seat_manager() -> TeamSeatManager:
    return TeamSeatManager(
        get_metadata_store(),
        payment_client=get_paddle_api_client(),
        confirmation_timeout=timedelta(seconds=settings.team_size_update_timeout_seconds),
        poll_interval=timedelta(seconds=settings.team_size_update_poll_interval_seconds),
    )


def get_access_service() -> AccessService:
    return AccessService(get_metadata_store())


def get_billing_service() -> BillingService:
    return BillingService(
        get_metadata_store(),
        providers={
            PaymentProvider.PADDLE: get_paddle_api_client(),
            PaymentProvider.PAYPRO: get_paypro_api_client(),
        },
    )


__all__ = [
    "AccessService",
    "BillingService",
    "SubscriptionReconciler",
    "TeamSeatManager",
    "WebhookDeduplicator",
    "get_access_service",
    "get_billing_service",
    "get_metadata_store",
    "get_paddle_api_client",
    "get_paypro_api_client",
    "get_reconciler",
    "get_team_seat_manager",
    "get_token_verifier",
    "get_webhook_deduplicator",
]
