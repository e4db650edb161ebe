"""
Webhook deduplication.

Providers redeliver webhooks until they get a 2xx, so the same payload can
arrive several times. Processed payloads are remembered in Redis for 24
hours. Reconciling is idempotent anyway, so when Redis is unconfigured or
unavailable we carry on without deduplication.
"""

import hashlib
import logging

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

# Covers the providers' retry windows
DEDUP_TTL_SECONDS = 86400


def webhook_key(provider: str, body: bytes) -> str:
    """Redis key identifying one delivered payload."""
    return f"webhook:processed:{provider}:{hashlib.sha256(body).hexdigest()}"


class WebhookDeduplicator:
    """Remembers processed webhook payloads in Redis."""

    def __init__(self, redis_client: aioredis.Redis | None, ttl_seconds: int = DEDUP_TTL_SECONDS):
        self._redis = redis_client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, redis_url: str | None) -> "WebhookDeduplicator":
        """Create a deduplicator; a missing URL disables deduplication."""
        if not redis_url:
            return cls(None)
        return cls(aioredis.from_url(redis_url))

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def already_processed(self, key: str) -> bool:
        if self._redis is None:
            return False
        try:
            return bool(await self._redis.exists(key))
        except Exception as e:
            logger.warning("Webhook idempotency check unavailable (Redis error): %s", e)
            return False

    async def mark_processed(self, key: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.setex(key, self.ttl_seconds, "1")
        except Exception as e:
            logger.warning("Could not record processed webhook (Redis error): %s", e)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
