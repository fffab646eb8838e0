"""Job processors, one per job kind, and the registry that wires them."""

import redis.asyncio as redis

from src.cache.redis_cache import RedisCache
from src.config.settings import Settings, get_settings
from src.crawl.repository import CrawlReportRepository
from src.jobs.idempotency import IdempotencyGuard
from src.jobs.schemas import JobKind
from src.performance.repository import PerformanceRepository
from src.processors.base import SITE_NOT_FOUND, JobProcessor
from src.processors.crawl import CrawlProcessor
from src.processors.pagespeed import PageSpeedProcessor
from src.processors.score import ScoreProcessor
from src.processors.search_sync import SearchSyncProcessor
from src.providers.pagespeed import PageSpeedClient
from src.providers.search_analytics import build_search_provider
from src.ratelimit.limiter import SlidingWindowRateLimiter
from src.scoring.repository import ScoreRepository
from src.search.repository import SearchStatsRepository
from src.sites.repository import SiteRepository
from src.storage.database import Database


def build_processors(
    database: Database,
    redis_client: redis.Redis | None,
    settings: Settings | None = None,
) -> dict[JobKind, JobProcessor]:
    """Wire every processor against one database and one Redis client."""
    settings = settings or get_settings()
    sites = SiteRepository(database)
    stats = SearchStatsRepository(database)
    performance = PerformanceRepository(database)
    reports = CrawlReportRepository(database)
    cache = RedisCache(redis_client)
    limiter = SlidingWindowRateLimiter(redis_client)
    guard = IdempotencyGuard(
        {
            JobKind.PAGESPEED_TEST: performance.latest_snapshot_at,
            JobKind.SITE_CRAWL: reports.latest_completed_at,
        }
    )

    return {
        JobKind.SEARCH_SYNC: SearchSyncProcessor(
            sites, stats, build_search_provider(settings), cache=cache
        ),
        JobKind.PAGESPEED_TEST: PageSpeedProcessor(
            sites,
            performance,
            PageSpeedClient(settings.pagespeed_api_key or "", redis_client=redis_client),
            guard,
            limiter=limiter,
            cache=cache,
        ),
        JobKind.SITE_CRAWL: CrawlProcessor(sites, reports, guard, cache=cache),
        JobKind.SCORE_CALCULATION: ScoreProcessor(
            sites, stats, performance, ScoreRepository(database), cache=cache
        ),
    }


__all__ = [
    "CrawlProcessor",
    "JobProcessor",
    "PageSpeedProcessor",
    "SITE_NOT_FOUND",
    "ScoreProcessor",
    "SearchSyncProcessor",
    "build_processors",
]
