"""
PayPro Global API client.

PayPro only supports cancellation here. Requests are JSON bodies carrying
the vendor account id and API secret; responses report ``isSuccess``.
"""

import logging
from typing import Any

import httpx

from core.errors import UpstreamError
from core.interfaces.payment_provider import PaymentProviderClient
from infrastructure.config.settings import settings
from infrastructure.retries import RetryPolicy

logger = logging.getLogger(__name__)


class PayProApiClient(PaymentProviderClient):
    """Client for the PayPro Global subscription API."""

    def __init__(
        self,
        vendor_account_id: str | None = None,
        api_secret_key: str | None = None,
        base_url: str | None = None,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.vendor_account_id = vendor_account_id or settings.paypro_vendor_account_id
        self.api_secret_key = api_secret_key or settings.paypro_api_secret_key
        self.base_url = (base_url or settings.paypro_api_base_url).rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
        )
        self._client = http_client or httpx.AsyncClient(timeout=30.0)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, path: str, payload: dict[str, Any]) -> Any:
        if not self.vendor_account_id or not self.api_secret_key:
            raise UpstreamError("PayPro API credentials are not configured")

        body = {
            "vendorAccountId": self.vendor_account_id,
            "apiSecretKey": self.api_secret_key,
            **payload,
        }

        async def send() -> httpx.Response:
            response = await self._client.post(f"{self.base_url}{path}", json=body)
            response.raise_for_status()
            return response

        try:
            response = await self.retry_policy.run(f"paypro {path}", send)
        except httpx.HTTPStatusError as e:
            logger.error("PayPro API error %d for %s", e.response.status_code, path)
            raise UpstreamError(f"Unexpected {e.response.status_code} from PayPro API") from e
        except httpx.HTTPError as e:
            logger.error("PayPro request failed for %s: %s", path, e)
            raise UpstreamError(f"PayPro request failed: {e}") from e

        data = response.json()
        if not data.get("isSuccess"):
            logger.error("PayPro errors for %s: %s", path, data.get("errors"))
            raise UpstreamError("PayPro request was not successful")
        return data

    async def cancel_subscription(self, subscription_id: str) -> None:
        logger.info("Cancelling PayPro subscription %s", subscription_id)
        await self._request(
            "/api/Subscriptions/Terminate",
            {
                "subscriptionId": subscription_id,
                "reasonText": "API cancellation",
                "sendCustomerNotification": True,
            },
        )


def create_paypro_api_client(http_client: httpx.AsyncClient | None = None) -> PayProApiClient:
    """Create a PayPro API client configured from settings."""
    return PayProApiClient(http_client=http_client)
