"""
Shared pieces of the payment webhook normalizers.

Each provider sends form-encoded webhooks in its own vocabulary. A normalizer
turns one such payload into a CanonicalEvent, or raises ValidationError when
the payload is missing or has malformed fields.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta

from core.domain.events import CanonicalEvent, PaymentProvider
from core.errors import ValidationError

# Next-charge dates are extended by a day so access survives a slow renewal
EXPIRY_SLACK = timedelta(days=1)


class PaymentNormalizer(ABC):
    """Converts one provider's raw webhook payloads into canonical events."""

    provider: PaymentProvider

    @abstractmethod
    def normalize(self, payload: Mapping[str, str]) -> CanonicalEvent:
        """
        Convert a raw webhook payload into a CanonicalEvent.

        Raises:
            UnsupportedEventError: If the event type is not one we act on
            ValidationError: If a required field is missing or malformed
        """
        ...

    def _require(self, payload: Mapping[str, str], field: str) -> str:
        value = payload.get(field)
        if value is None or str(value).strip() == "":
            raise ValidationError(f"{self.provider} webhook is missing {field}")
        return str(value).strip()

    def _optional(self, payload: Mapping[str, str], field: str) -> str | None:
        value = payload.get(field)
        if value is None or str(value).strip() == "":
            return None
        return str(value).strip()

    def _email(self, payload: Mapping[str, str], field: str) -> str:
        return self._require(payload, field).lower()

    def _int(self, payload: Mapping[str, str], field: str, required: bool = True) -> int | None:
        value = self._require(payload, field) if required else self._optional(payload, field)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError as e:
            raise ValidationError(f"{self.provider} webhook has invalid {field}: {value!r}") from e

    def _date(self, payload: Mapping[str, str], field: str, fmt: str) -> datetime:
        value = self._require(payload, field)
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=UTC)
        except ValueError as e:
            raise ValidationError(f"{self.provider} webhook has invalid {field}: {value!r}") from e
