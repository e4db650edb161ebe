# Interfaces (Abstract Contracts)
# Adapters implement these interfaces
from .metadata_store import MetadataStore
from .payment_provider import PaymentProviderClient, SeatQuantityClient

__all__ = [
    "MetadataStore",
    "PaymentProviderClient",
    "SeatQuantityClient",
]
