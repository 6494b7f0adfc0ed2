"""Fixed-window request counter backed by Redis.

Each client key gets one counter per window, ``ratelimit:{key}:{window_start}``.
The counter is bumped with an atomic ``INCR``; only the increment that creates
it sets the expiry, so a window can never be extended by later traffic.

The limiter fails open: if Redis errors or times out, the request is allowed
and a warning is logged.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0
    # False when the store could not be consulted (fail-open)
    metered: bool = True


class RateLimiter:
    def __init__(
        self,
        limit: int,
        window_seconds: int = 60,
        redis_client=None,
        key_prefix: str = "ratelimit",
        store_timeout: float = 1.0,
    ):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self.store_timeout = store_timeout
        self._redis = redis_client

    async def _client(self):
        if self._redis is None:
            from fileswift.services.redis_manager import get_async_client
            self._redis = await get_async_client()
        return self._redis

    def window_start(self, now: float) -> int:
        return int(now // self.window_seconds) * self.window_seconds

    def counter_key(self, client_key: str, now: float) -> str:
        return f"{self.key_prefix}:{client_key}:{self.window_start(now)}"

    async def _increment(self, key: str) -> int:
        r = await self._client()
        count = await r.incr(key)
        if count == 1:
            await r.expire(key, self.window_seconds)
        return int(count)

    async def check(self, client_key: str, now: Optional[float] = None) -> RateLimitDecision:
        """Count one request for ``client_key`` and decide whether it may proceed."""
        now = time.time() if now is None else now
        key = self.counter_key(client_key, now)
        try:
            count = await asyncio.wait_for(self._increment(key), timeout=self.store_timeout)
        except Exception as e:
            logger.warning(f"Rate limit store unavailable, allowing request from {client_key}: {e!r}")
            return RateLimitDecision(
                allowed=True, limit=self.limit, remaining=self.limit, metered=False
            )

        remaining = max(0, self.limit - count)
        if count > self.limit:
            logger.info(f"Rate limit exceeded for {client_key} ({count}/{self.limit})")
            return RateLimitDecision(
                allowed=False,
                limit=self.limit,
                remaining=0,
                retry_after=self.window_seconds,
            )
        return RateLimitDecision(allowed=True, limit=self.limit, remaining=remaining)
