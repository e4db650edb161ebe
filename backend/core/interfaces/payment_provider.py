"""Payment provider API interfaces."""

from abc import ABC, abstractmethod


class PaymentProviderClient(ABC):
    """Abstract client for a payment provider's subscription API."""

    @abstractmethod
    async def cancel_subscription(self, subscription_id: str) -> None:
        """Cancel a subscription at the end of its paid period."""
        ...

    async def close(self) -> None:
        """Release any connections held by the client."""
        return None


class SeatQuantityClient(PaymentProviderClient):
    """A provider that can also change how many seats a subscription pays for."""

    @abstractmethod
    async def update_subscription_quantity(
        self,
        subscription_id: str,
        quantity: int,
        prorate: bool,
        bill_immediately: bool,
    ) -> None:
        """Change a subscription's quantity. The provider confirms by webhook."""
        ...
