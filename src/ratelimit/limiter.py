"""
Sliding-window rate limiter over Redis sorted sets.

Each key holds one sorted-set member per request scored by its epoch
timestamp. A check trims members older than the window, records the
current request, and counts what remains. Rejected requests are counted
too, so a caller hammering a closed window keeps it closed.

The limiter is a protective layer, never a dependency: if Redis is
unreachable the check allows the request and logs a warning.
"""

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

import redis.asyncio as redis

from src.observability.metrics import get_metrics
from src.ratelimit.config import RateLimitConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one check.

    Attributes:
        allowed: Whether the request may proceed.
        remaining: Requests left in the current window (0 when rejected).
        retry_after_seconds: Seconds until the oldest counted request leaves
            the window; 0 when allowed.
    """

    allowed: bool
    remaining: int
    retry_after_seconds: int = 0


class SlidingWindowRateLimiter:
    """
    Check-and-increment limiter keyed by arbitrary strings.

    Usage:
        limiter = SlidingWindowRateLimiter(redis_client)
        result = await limiter.check(f"jobs:{user_id}", limit=10, window_seconds=60)
        if not result.allowed:
            raise RateLimitExceededError(key, result.retry_after_seconds)
    """

    def __init__(
        self,
        redis_client: redis.Redis | None,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis_client
        self._config = config or RateLimitConfig()
        self._clock = clock

    async def check(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Record a request against ``key`` and report whether it fits the window."""
        if not self._config.enabled or self._redis is None:
            return RateLimitResult(allowed=True, remaining=limit)

        now = self._clock()
        window_start = now - window_seconds
        redis_key = f"{self._config.key_prefix}:{key}"
        member = f"{now:.6f}:{uuid.uuid4().hex[:8]}"

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(redis_key, 0, window_start)
                pipe.zadd(redis_key, {member: now})
                pipe.zcard(redis_key)
                pipe.zrange(redis_key, 0, 0, withscores=True)
                pipe.expire(redis_key, window_seconds)
                _, _, count, oldest, _ = await pipe.execute()
        except Exception as e:
            # Fail open
            logger.warning("Rate limiter unavailable for %s, allowing: %s", key, e)
            get_metrics().record_rate_limit_fail_open()
            return RateLimitResult(allowed=True, remaining=limit)

        if count <= limit:
            return RateLimitResult(allowed=True, remaining=limit - count)

        oldest_score = oldest[0][1] if oldest else now
        retry_after = max(1, int(oldest_score + window_seconds - now + 0.999))
        get_metrics().record_rate_limit_rejection(key.split(":", 1)[0])
        logger.info("Rate limit hit for %s (%d/%d in %ds)", key, count, limit, window_seconds)
        return RateLimitResult(allowed=False, remaining=0, retry_after_seconds=retry_after)
