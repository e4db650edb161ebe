"""
PayPro Global IPN normalizer.

PayPro posts form-encoded IPN notifications identified by ``IPN_TYPE_NAME``.
The next-charge date uses a US-style 12 hour format like
``4/21/2023 1:45 PM`` (UTC) and is empty once a subscription has ended.
"""

import hashlib
import hmac
import logging
from collections.abc import Mapping

from core.domain.events import CanonicalEvent, EventKind, PaymentProvider, SubscriptionStatus
from core.errors import ForbiddenError, UnsupportedEventError, ValidationError
from core.plans import PLANS, SKU, parse_sku

from .base import EXPIRY_SLACK, PaymentNormalizer

logger = logging.getLogger(__name__)

PAYPRO_NEXT_CHARGE_FORMAT = "%m/%d/%Y %I:%M %p"

PAYPRO_IPN_KINDS = {
    "OrderCharged": EventKind.CREATED,
    "SubscriptionRenewed": EventKind.RENEWED,
    "SubscriptionChargeSucceed": EventKind.RENEWED,
    "SubscriptionTerminated": EventKind.CANCELLED,
    "SubscriptionSuspended": EventKind.CANCELLED,
    "SubscriptionFinished": EventKind.CANCELLED,
    "SubscriptionChargeFailed": EventKind.PAYMENT_FAILED,
    "OrderChargedBack": EventKind.DISPUTED,
}


class PayProNormalizer(PaymentNormalizer):
    """Normalizer for PayPro Global IPN notifications."""

    provider = PaymentProvider.PAYPRO

    def __init__(self, validation_key: str | None = None):
        """
        Initialize the PayPro normalizer.

        Args:
            validation_key: IPN validation key used to check SIGNATURE. When
                unset, signatures are not checked.
        """
        self.validation_key = validation_key

    def verify_signature(self, payload: Mapping[str, str]) -> None:
        """
        Check the IPN SIGNATURE field against our validation key.

        PayPro signs only a handful of fields: sha256 over order id, order
        status, order total, customer email, the key, test mode and IPN type.

        Raises:
            ForbiddenError: If the signature does not match
        """
        if not self.validation_key:
            return

        key = "".join(
            [
                payload.get("ORDER_ID", ""),
                payload.get("ORDER_STATUS", ""),
                payload.get("ORDER_TOTAL_AMOUNT", ""),
                payload.get("CUSTOMER_EMAIL", ""),
                self.validation_key,
                payload.get("TEST_MODE", ""),
                payload.get("IPN_TYPE_NAME", ""),
            ]
        )
        expected = hashlib.sha256(key.encode("utf-8")).hexdigest()

        if not hmac.compare_digest(expected, payload.get("SIGNATURE", "")):
            logger.warning("PayPro IPN signature verification failed")
            raise ForbiddenError("PayPro IPN signature did not match")

    def normalize(self, payload: Mapping[str, str]) -> CanonicalEvent:
        """
        Convert a PayPro IPN into a CanonicalEvent.

        Raises:
            UnsupportedEventError: If ``IPN_TYPE_NAME`` is not a handled type
            ValidationError: If a required field is missing or malformed
        """
        ipn_type = payload.get("IPN_TYPE_NAME")
        kind = PAYPRO_IPN_KINDS.get(ipn_type or "")
        if kind is None:
            raise UnsupportedEventError(f"Unsupported PayPro IPN type: {ipn_type}")

        email = self._email(payload, "CUSTOMER_EMAIL")

        if kind == EventKind.DISPUTED:
            return CanonicalEvent(kind=kind, email=email, provider=self.provider)

        common = {
            "email": email,
            "provider": self.provider,
            "subscription_id": self._require(payload, "SUBSCRIPTION_ID"),
            "sku": self._sku(payload),
        }

        if kind == EventKind.CANCELLED:
            # PayPro gives no end date here, so the stored expiry stays put
            return CanonicalEvent(kind=kind, status=SubscriptionStatus.DELETED, **common)

        if kind == EventKind.PAYMENT_FAILED:
            if self._optional(payload, "SUBSCRIPTION_NEXT_CHARGE_DATE") is None:
                return CanonicalEvent(
                    kind=EventKind.CANCELLED,
                    status=SubscriptionStatus.DELETED,
                    **common,
                )

            retry_date = self._date(
                payload, "SUBSCRIPTION_NEXT_CHARGE_DATE", PAYPRO_NEXT_CHARGE_FORMAT
            )
            return CanonicalEvent(
                kind=kind,
                status=SubscriptionStatus.PAST_DUE,
                expiry=retry_date + EXPIRY_SLACK,
                **common,
            )

        next_charge = self._date(payload, "SUBSCRIPTION_NEXT_CHARGE_DATE", PAYPRO_NEXT_CHARGE_FORMAT)
        return CanonicalEvent(
            kind=kind,
            status=SubscriptionStatus.ACTIVE,
            quantity=self._int(payload, "PRODUCT_QUANTITY", required=False),
            expiry=next_charge + EXPIRY_SLACK,
            provider_user_id=self._optional(payload, "CUSTOMER_ID"),
            receipt_url=self._optional(payload, "INVOICE_LINK"),
            **common,
        )

    def _sku(self, payload: Mapping[str, str]) -> SKU:
        value = self._require(payload, "ORDER_ITEM_SKU")
        sku = parse_sku(value)
        if sku is None or PLANS[sku]["paypro_id"] is None:
            raise ValidationError(f"Unrecognized PayPro SKU: {value!r}")
        return sku


def create_paypro_normalizer(validation_key: str | None = None) -> PayProNormalizer:
    """Create a PayPro normalizer instance."""
    return PayProNormalizer(validation_key=validation_key)
