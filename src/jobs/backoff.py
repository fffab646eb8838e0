"""
Backoff for worker poll loops.

Job retry delays are a property of each job (``BackoffPolicy`` on the
record). This module covers the other kind of waiting: a worker whose
``lease()`` call keeps failing because the job store is unreachable.
"""

import random


class ExponentialBackoff:
    """
    Exponential backoff with jitter for store outages.

    Delay for the n-th consecutive failure is
    ``min(base * multiplier^n, max_delay)`` plus up to ``jitter_range``
    of that value in either direction, so a fleet of workers does not
    reconnect in lockstep.

    Usage:
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=30.0)
        while running:
            try:
                job = await store.lease(kind, lease_seconds)
                backoff.reset()
            except RedisError:
                await asyncio.sleep(backoff.next_delay())
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
        jitter_range: float = 0.25,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter_range = jitter_range
        self._failures = 0

    @property
    def failures(self) -> int:
        """Consecutive failures since the last reset."""
        return self._failures

    def next_delay(self) -> float:
        delay = min(self.base_delay * (self.multiplier ** self._failures), self.max_delay)
        delay += delay * random.uniform(-self.jitter_range, self.jitter_range)
        self._failures += 1
        return max(0.0, delay)

    def reset(self) -> None:
        self._failures = 0
