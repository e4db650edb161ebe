"""
Retry policy for remote calls.

Applied at the boundary where we call a collaborator (the directory
management API, the userinfo endpoint). Transient failures are retried
with exponential backoff plus jitter; anything else fails immediately.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOO_MANY_REQUESTS = 429


def is_transient_http_error(error: BaseException) -> bool:
    """Connection errors, timeouts, 429 and 5xx are worth retrying. Other 4xx are not."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == TOO_MANY_REQUESTS or status >= 500
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """How many times, and how patiently, to retry a failing call."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 1.0
    is_retryable: Callable[[BaseException], bool] = is_transient_http_error
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = self.base_delay * (2 ** (attempt - 1)) + random.uniform(0, self.jitter)
        return min(delay, self.max_delay)

    async def run(self, name: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Call ``fn`` until it succeeds, fails permanently, or attempts run out.

        Args:
            name: Operation name, for logs
            fn: Zero-argument factory returning a fresh awaitable per attempt

        Returns:
            The result of the first successful attempt

        Raises:
            The last error raised by ``fn``
        """
        attempt = 1
        while True:
            try:
                return await fn()
            except Exception as e:
                if attempt >= self.max_attempts or not self.is_retryable(e):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Transient error in %s (attempt %d/%d), retrying in %.1fs: %s",
                    name, attempt, self.max_attempts, delay, str(e),
                )
                await self.sleep(delay)
                attempt += 1


NO_RETRY = RetryPolicy(max_attempts=1)
