"""Page-speed test processor."""

import logging
from datetime import datetime, timedelta, timezone

from src.cache.redis_cache import Cache, NullCache, site_cache_prefix
from src.jobs.exceptions import RateLimitExceededError
from src.jobs.idempotency import IdempotencyGuard
from src.jobs.schemas import Job, JobKind, PageSpeedPayload, ProcessResult
from src.performance.config import PageSpeedConfig
from src.performance.repository import PerformanceRepository
from src.performance.schemas import PageSpeedResult, PerfSnapshot
from src.performance.vitals import summarize_cwv
from src.processors.base import JobProcessor
from src.providers.pagespeed import PageSpeedClient
from src.ratelimit.config import RateLimitConfig
from src.ratelimit.limiter import SlidingWindowRateLimiter
from src.sites.repository import SiteRepository
from src.sites.schemas import Site

logger = logging.getLogger(__name__)


def pagespeed_cache_key(url: str, device: str, day: str) -> str:
    return f"psi:{url}:{device}:{day}"


class PageSpeedProcessor(JobProcessor):
    """
    Runs one PageSpeed test and records it.

    Steps:
    1. Skip when a snapshot for (site, device) exists inside the guard window
    2. Check the per-site API budget (``psi:<site_id>``)
    3. Reuse a cached result for (url, device, day) or call the API
    4. Insert the snapshot and recompute the device and ALL daily rows
    """

    kind = JobKind.PAGESPEED_TEST

    def __init__(
        self,
        sites: SiteRepository,
        performance: PerformanceRepository,
        client: PageSpeedClient,
        guard: IdempotencyGuard,
        limiter: SlidingWindowRateLimiter | None = None,
        cache: Cache | None = None,
        config: PageSpeedConfig | None = None,
        rate_config: RateLimitConfig | None = None,
    ) -> None:
        super().__init__(sites)
        self._performance = performance
        self._client = client
        self._guard = guard
        self._limiter = limiter
        self._cache = cache or NullCache()
        self._config = config or PageSpeedConfig()
        self._rate_config = rate_config or RateLimitConfig()

    async def run(self, job: Job, payload: PageSpeedPayload, site: Site) -> ProcessResult:
        device = payload.device
        if await self._guard.recently_applied(
            self.kind,
            site.id,
            device,
            within=timedelta(minutes=self._config.guard_window_minutes),
        ):
            return ProcessResult.skipped("recently_applied", device=device)

        now = datetime.now(timezone.utc)
        cache_key = pagespeed_cache_key(payload.url, device, now.date().isoformat())
        cached = await self._cache.get(cache_key)

        if cached is not None:
            result = PageSpeedResult.from_dict(cached)
            logger.info("Using cached PageSpeed result for %s (%s)", payload.url, device)
        else:
            await self._check_budget(site.id)
            result = await self._client.run(payload.url, device)
            await self._cache.set(cache_key, result.to_dict(), self._config.cache_ttl_seconds)

        snapshot = PerfSnapshot(site_id=site.id, result=result, taken_at=now)
        await self._performance.insert_snapshot(snapshot)
        await self._performance.upsert_daily(site.id, now.date(), device)
        await self._cache.invalidate_prefix(site_cache_prefix(site.id))

        return ProcessResult.ok(
            snapshot_id=snapshot.id,
            device=device,
            score=result.score,
            cwv=summarize_cwv(result.lcp_ms, result.inp_ms, result.cls),
        )

    async def _check_budget(self, site_id: str) -> None:
        if self._limiter is None:
            return
        key = f"psi:{site_id}"
        check = await self._limiter.check(
            key,
            self._rate_config.pagespeed_site_limit,
            self._rate_config.pagespeed_site_window_seconds,
        )
        if not check.allowed:
            raise RateLimitExceededError(key, check.retry_after_seconds)
