"""
Paddle vendor API client.

Used for the subscription changes we start ourselves: cancellations and
seat quantity updates. Paddle applies them and then confirms through the
usual webhooks, so nothing here touches user metadata.

Every call is a form-encoded POST authenticated with the vendor id and
auth code. Paddle answers ``{"success": true, "response": ...}`` or
``{"success": false, "error": {...}}``, even for some failures it reports
with a 200 status.
"""

import logging
from typing import Any

import httpx

from core.errors import UpstreamError
from core.interfaces.payment_provider import SeatQuantityClient
from infrastructure.config.settings import settings
from infrastructure.retries import RetryPolicy

logger = logging.getLogger(__name__)


class PaddleApiClient(SeatQuantityClient):
    """Client for the Paddle vendor subscription API."""

    def __init__(
        self,
        vendor_id: str | None = None,
        vendor_auth_code: str | None = None,
        base_url: str | None = None,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the Paddle API client.

        Args:
            vendor_id: Paddle vendor id (defaults to settings)
            vendor_auth_code: Paddle vendor auth code (defaults to settings)
            base_url: Vendor API base URL (defaults to settings)
            retry_policy: Retry policy for every call
            http_client: Shared client; one is created if omitted
        """
        self.vendor_id = vendor_id or settings.paddle_vendor_id
        self.vendor_auth_code = vendor_auth_code or settings.paddle_vendor_auth_code
        self.base_url = (base_url or settings.paddle_api_base_url).rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
        )
        self._client = http_client or httpx.AsyncClient(timeout=30.0)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, path: str, data: dict[str, str]) -> Any:
        """
        Make a vendor API request with retries.

        Raises:
            UpstreamError: If the request fails or Paddle reports it unsuccessful
        """
        if not self.vendor_id or not self.vendor_auth_code:
            raise UpstreamError("Paddle vendor credentials are not configured")

        form = {"vendor_id": self.vendor_id, "vendor_auth_code": self.vendor_auth_code, **data}

        async def send() -> httpx.Response:
            response = await self._client.post(f"{self.base_url}/api/2.0{path}", data=form)
            response.raise_for_status()
            return response

        try:
            response = await self.retry_policy.run(f"paddle {path}", send)
        except httpx.HTTPStatusError as e:
            logger.error("Paddle API error %d for %s", e.response.status_code, path)
            raise UpstreamError(f"{e.response.status_code} error response from Paddle API") from e
        except httpx.HTTPError as e:
            logger.error("Paddle request failed for %s: %s", path, e)
            raise UpstreamError(f"Paddle request failed: {e}") from e

        body = response.json()
        if not body.get("success"):
            error = body.get("error") or {}
            logger.error("Unsuccessful Paddle response for %s: %s", path, error)
            raise UpstreamError(
                f"Unsuccessful response from Paddle API: {error.get('message', 'unknown error')}"
            )
        return body.get("response")

    async def cancel_subscription(self, subscription_id: str) -> None:
        logger.info("Cancelling Paddle subscription %s", subscription_id)
        await self._request(
            "/subscription/users_cancel", {"subscription_id": str(subscription_id)}
        )

    async def update_subscription_quantity(
        self,
        subscription_id: str,
        quantity: int,
        prorate: bool,
        bill_immediately: bool,
    ) -> None:
        logger.info(
            "Updating Paddle subscription %s to quantity %d (prorate=%s)",
            subscription_id, quantity, prorate,
        )
        await self._request(
            "/subscription/users/update",
            {
                "subscription_id": str(subscription_id),
                "quantity": str(quantity),
                "prorate": str(prorate).lower(),
                "bill_immediately": str(bill_immediately).lower(),
            },
        )


def create_paddle_api_client(http_client: httpx.AsyncClient | None = None) -> PaddleApiClient:
    """Create a Paddle API client configured from settings."""
    return PaddleApiClient(http_client=http_client)
