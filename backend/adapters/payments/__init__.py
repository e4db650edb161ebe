"""Payment provider webhook normalizers and API clients."""

from .base import EXPIRY_SLACK, PaymentNormalizer
from .paddle_adapter import PaddleNormalizer, create_paddle_normalizer
from .paddle_api import PaddleApiClient, create_paddle_api_client
from .paypro_adapter import PayProNormalizer, create_paypro_normalizer
from .paypro_api import PayProApiClient, create_paypro_api_client

__all__ = [
    "EXPIRY_SLACK",
    "PaymentNormalizer",
    "PaddleApiClient",
    "PaddleNormalizer",
    "PayProApiClient",
    "PayProNormalizer",
    "create_paddle_api_client",
    "create_paddle_normalizer",
    "create_paypro_api_client",
    "create_paypro_normalizer",
]
