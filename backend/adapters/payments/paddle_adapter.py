"""
Paddle webhook normalizer.

Paddle sends form-encoded "alerts" identified by ``alert_name``. Dates are
plain ``YYYY-MM-DD`` strings, taken as UTC midnight.
"""

import logging
from collections.abc import Mapping

from core.domain.events import CanonicalEvent, EventKind, PaymentProvider, SubscriptionStatus
from core.errors import UnsupportedEventError, ValidationError
from core.plans import get_sku_for_paddle_id

from .base import EXPIRY_SLACK, PaymentNormalizer

logger = logging.getLogger(__name__)

PADDLE_DATE_FORMAT = "%Y-%m-%d"

# Alert names we act on, mapped to the lifecycle change they represent
PADDLE_ALERT_KINDS = {
    "subscription_created": EventKind.CREATED,
    "subscription_updated": EventKind.RENEWED,
    "subscription_payment_succeeded": EventKind.RENEWED,
    "subscription_cancelled": EventKind.CANCELLED,
    "subscription_payment_failed": EventKind.PAYMENT_FAILED,
    "payment_dispute_created": EventKind.DISPUTED,
}


class PaddleNormalizer(PaymentNormalizer):
    """Normalizer for Paddle subscription alerts."""

    provider = PaymentProvider.PADDLE

    def normalize(self, payload: Mapping[str, str]) -> CanonicalEvent:
        """
        Convert a Paddle alert into a CanonicalEvent.

        Args:
            payload: Decoded form fields of the webhook

        Returns:
            The canonical event for this alert

        Raises:
            UnsupportedEventError: If ``alert_name`` is not a handled alert
            ValidationError: If a required field is missing or malformed
        """
        alert_name = payload.get("alert_name")
        kind = PADDLE_ALERT_KINDS.get(alert_name or "")
        if kind is None:
            raise UnsupportedEventError(f"Unsupported Paddle alert: {alert_name}")

        email = self._email(payload, "email")

        if kind == EventKind.DISPUTED:
            return CanonicalEvent(kind=kind, email=email, provider=self.provider)

        plan_id = self._int(payload, "subscription_plan_id")
        sku = get_sku_for_paddle_id(plan_id)
        if sku is None:
            raise ValidationError(f"Unrecognized Paddle plan id: {plan_id}")

        common = {
            "email": email,
            "provider": self.provider,
            "subscription_id": self._require(payload, "subscription_id"),
            "sku": sku,
            "provider_user_id": self._optional(payload, "user_id"),
            "update_url": self._optional(payload, "update_url"),
            "cancel_url": self._optional(payload, "cancel_url"),
        }

        if kind == EventKind.CANCELLED:
            # Cancellations end on the last day of the paid period, no slack
            return CanonicalEvent(
                kind=kind,
                status=SubscriptionStatus.DELETED,
                expiry=self._date(payload, "cancellation_effective_date", PADDLE_DATE_FORMAT),
                **common,
            )

        if kind == EventKind.PAYMENT_FAILED:
            if self._optional(payload, "next_retry_date") is None:
                # No more retries: the subscription is over
                logger.info("Paddle payment failed with no retry for subscription %s",
                            common["subscription_id"])
                return CanonicalEvent(
                    kind=EventKind.CANCELLED,
                    status=SubscriptionStatus.DELETED,
                    **common,
                )

            retry_date = self._date(payload, "next_retry_date", PADDLE_DATE_FORMAT)
            return CanonicalEvent(
                kind=kind,
                status=SubscriptionStatus.PAST_DUE,
                expiry=retry_date + EXPIRY_SLACK,
                **common,
            )

        # Created, updated or paid: the subscription runs until the next bill
        quantity_field = "new_quantity" if "new_quantity" in payload else "quantity"
        next_bill_date = self._date(payload, "next_bill_date", PADDLE_DATE_FORMAT)

        return CanonicalEvent(
            kind=kind,
            status=self._status(payload),
            quantity=self._int(payload, quantity_field, required=False),
            expiry=next_bill_date + EXPIRY_SLACK,
            receipt_url=self._optional(payload, "receipt_url"),
            **common,
        )

    def _status(self, payload: Mapping[str, str]) -> SubscriptionStatus:
        value = self._optional(payload, "status")
        if value is None:
            return SubscriptionStatus.ACTIVE
        try:
            return SubscriptionStatus(value)
        except ValueError as e:
            raise ValidationError(f"Unrecognized Paddle subscription status: {value!r}") from e


def create_paddle_normalizer() -> PaddleNormalizer:
    """Create a Paddle normalizer instance."""
    return PaddleNormalizer()
