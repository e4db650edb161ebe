"""Canonical subscription lifecycle events."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from core.clock import to_millis
from core.plans import SKU


class EventKind(StrEnum):
    """Provider-independent subscription lifecycle changes."""

    CREATED = "created"
    RENEWED = "renewed"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"
    DISPUTED = "disputed"


class SubscriptionStatus(StrEnum):
    """Valid stored subscription states."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    DELETED = "deleted"


class PaymentProvider(StrEnum):
    """Payment providers that send us webhooks."""

    PADDLE = "paddle"
    PAYPRO = "paypro"


@dataclass(frozen=True)
class CanonicalEvent:
    """A subscription lifecycle change, independent of provider wire format.

    ``expiry`` is None when the provider gave no usable date, in which case
    the stored expiry is left untouched.
    """

    kind: EventKind
    email: str
    provider: PaymentProvider
    subscription_id: str | None = None
    sku: SKU | None = None
    status: SubscriptionStatus | None = None
    quantity: int | None = None
    expiry: datetime | None = None
    provider_user_id: str | None = None
    receipt_url: str | None = None
    update_url: str | None = None
    cancel_url: str | None = None

    def to_metadata_update(self) -> dict[str, Any]:
        """Metadata fields set by this event. Absent values are dropped."""
        fields = {
            "subscription_status": self.status.value if self.status else None,
            "payment_provider": self.provider.value,
            "subscription_id": self.subscription_id,
            "subscription_sku": self.sku.value if self.sku else None,
            "subscription_quantity": self.quantity,
            "subscription_expiry": to_millis(self.expiry) if self.expiry else None,
            # Only Paddle needs its own user id, for transaction lookups
            "paddle_user_id": (
                self.provider_user_id if self.provider == PaymentProvider.PADDLE else None
            ),
            "last_receipt_url": self.receipt_url,
            "update_url": self.update_url,
            "cancel_url": self.cancel_url,
        }
        return {key: value for key, value in fields.items() if value is not None}
