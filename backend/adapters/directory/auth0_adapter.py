"""
Auth0 directory adapter.

Implements the metadata store on top of the Auth0 Management API, and
resolves client bearer tokens to user ids through the ``/userinfo``
endpoint. All calls go through a RetryPolicy; failures that survive it are
raised as UpstreamError.
"""

import logging
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

import httpx

from core.clock import Clock, utc_now
from core.domain.user import User
from core.errors import AuthError, NotFoundError, UpstreamError
from core.interfaces.metadata_store import MetadataStore
from infrastructure.cache import TTLCache
from infrastructure.config.settings import settings
from infrastructure.retries import RetryPolicy

logger = logging.getLogger(__name__)

SEARCH_PAGE_SIZE = 100

# Refresh management tokens a little before Auth0 expires them
TOKEN_EXPIRY_MARGIN = timedelta(minutes=1)


class Auth0MetadataStore(MetadataStore):
    """
    Metadata store backed by the Auth0 Management API.

    Auth0 merges ``app_metadata`` updates key by key and removes keys set to
    null, which is exactly the store's update contract.
    """

    def __init__(
        self,
        domain: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        connection: str | None = None,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = utc_now,
    ):
        """
        Initialize the Auth0 store.

        Args:
            domain: Auth0 tenant domain (defaults to settings)
            client_id: Management API client id (defaults to settings)
            client_secret: Management API client secret (defaults to settings)
            connection: Connection new users are created in (defaults to settings)
            retry_policy: Retry policy for every remote call
            http_client: Shared client; one is created if omitted
            clock: Time source for management token expiry
        """
        self.domain = domain or settings.auth0_domain
        self.client_id = client_id or settings.auth0_mgmt_client_id
        self.client_secret = client_secret or settings.auth0_mgmt_client_secret
        self.connection = connection or settings.auth0_connection
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
        )
        self._client = http_client or httpx.AsyncClient(timeout=30.0)
        self._tokens: TTLCache[str, str] = TTLCache(ttl=timedelta(hours=1), max_size=1, clock=clock)

    @property
    def base_url(self) -> str:
        return f"https://{self.domain}"

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_management_token(self) -> str:
        token = self._tokens.get("management")
        if token:
            return token

        if not self.client_id or not self.client_secret:
            raise UpstreamError("Auth0 management credentials are not configured")

        async def fetch() -> httpx.Response:
            response = await self._client.post(
                f"{self.base_url}/oauth/token",
                json={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "audience": f"{self.base_url}/api/v2/",
                },
            )
            response.raise_for_status()
            return response

        try:
            response = await self.retry_policy.run("auth0.token", fetch)
        except httpx.HTTPError as e:
            logger.error("Failed to get Auth0 management token: %s", e)
            raise UpstreamError(f"Auth0 token request failed: {e}") from e

        data = response.json()
        token = data["access_token"]
        lifetime = timedelta(seconds=int(data.get("expires_in", 3600)))
        self._tokens.ttl = max(lifetime - TOKEN_EXPIRY_MARGIN, timedelta(seconds=1))
        self._tokens.set("management", token)
        return token

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """
        Make a Management API request with retries.

        Raises:
            NotFoundError: If Auth0 returns 404
            UpstreamError: For any other failure
        """
        token = await self._get_management_token()

        async def send() -> httpx.Response:
            response = await self._client.request(
                method,
                f"{self.base_url}/api/v2{path}",
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
            return response

        try:
            response = await self.retry_policy.run(f"auth0 {method} {path}", send)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise NotFoundError(f"Auth0 resource not found: {path}") from e
            logger.error("Auth0 API error %d for %s %s", e.response.status_code, method, path)
            raise UpstreamError(f"Auth0 API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("Auth0 request failed for %s %s: %s", method, path, e)
            raise UpstreamError(f"Auth0 request failed: {e}") from e

        return response.json()

    @staticmethod
    def _to_user(data: dict[str, Any]) -> User:
        return User(
            id=data["user_id"],
            email=data.get("email", ""),
            app_metadata=data.get("app_metadata") or {},
        )

    async def get_user(self, user_id: str) -> User:
        data = await self._request("GET", f"/users/{user_id}")
        return self._to_user(data)

    async def get_users_by_email(self, email: str) -> list[User]:
        data = await self._request("GET", "/users-by-email", params={"email": email.lower()})
        return [self._to_user(item) for item in data]

    async def create_user(self, email: str, app_metadata: Mapping[str, Any] | None = None) -> User:
        logger.info("Creating Auth0 user for %s", email)
        data = await self._request(
            "POST",
            "/users",
            json={
                "email": email.lower(),
                "connection": self.connection,
                # Skips the verification email for accounts we create
                "email_verified": True,
                "app_metadata": dict(app_metadata or {}),
            },
        )
        return self._to_user(data)

    async def update_metadata(self, user_id: str, update: Mapping[str, Any]) -> User:
        data = await self._request(
            "PATCH", f"/users/{user_id}", json={"app_metadata": dict(update)}
        )
        return self._to_user(data)

    async def search_members_by_owner(self, owner_id: str) -> list[User]:
        users: list[User] = []
        page = 0
        while True:
            data = await self._request(
                "GET",
                "/users",
                params={
                    "q": f'app_metadata.subscription_owner_id:"{owner_id}"',
                    "search_engine": "v3",
                    "per_page": SEARCH_PAGE_SIZE,
                    "page": page,
                },
            )
            users.extend(self._to_user(item) for item in data)
            if len(data) < SEARCH_PAGE_SIZE:
                return users
            page += 1


class Auth0TokenVerifier:
    """Resolves client bearer tokens to user ids via Auth0 ``/userinfo``."""

    def __init__(
        self,
        cache: TTLCache[str, str],
        domain: str | None = None,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.domain = domain or settings.auth0_domain
        self.cache = cache
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
        )
        self._client = http_client or httpx.AsyncClient(timeout=10.0)

    async def close(self) -> None:
        await self._client.aclose()

    async def get_user_id(self, token: str) -> str:
        """
        Get the id of the user a bearer token belongs to.

        Raises:
            AuthError: If Auth0 rejects the token
            UpstreamError: If Auth0 cannot be reached
        """
        cached = self.cache.get(token)
        if cached:
            return cached

        async def fetch() -> httpx.Response:
            response = await self._client.get(
                f"https://{self.domain}/userinfo",
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
            return response

        try:
            response = await self.retry_policy.run("auth0.userinfo", fetch)
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                raise AuthError("Invalid or expired token") from e
            raise UpstreamError(f"Auth0 userinfo error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Auth0 userinfo request failed: {e}") from e

        user_id = response.json().get("sub")
        if not user_id:
            raise AuthError("Token has no subject")

        self.cache.set(token, user_id)
        return user_id


def create_auth0_store(http_client: httpx.AsyncClient | None = None) -> Auth0MetadataStore:
    """Create an Auth0 metadata store configured from settings."""
    return Auth0MetadataStore(http_client=http_client)
