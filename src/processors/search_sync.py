"""Search-data sync processor."""

import logging
from datetime import datetime, timedelta, timezone

from src.cache.redis_cache import Cache, NullCache, site_cache_prefix
from src.jobs.schemas import Job, JobKind, ProcessResult, SearchSyncPayload
from src.processors.base import JobProcessor
from src.providers.search_analytics import SearchAnalyticsProvider
from src.search.config import SearchSyncConfig
from src.search.repository import SearchStatsRepository
from src.sites.repository import SiteRepository
from src.sites.schemas import Site

logger = logging.getLogger(__name__)


class SearchSyncProcessor(JobProcessor):
    """
    Pulls ``days`` days of search rows and upserts them.

    The range ends ``end_offset_days`` before today because the provider
    reports with a delay. Overlapping re-runs rewrite the same keys.
    """

    kind = JobKind.SEARCH_SYNC

    def __init__(
        self,
        sites: SiteRepository,
        stats: SearchStatsRepository,
        provider: SearchAnalyticsProvider,
        config: SearchSyncConfig | None = None,
        cache: Cache | None = None,
    ) -> None:
        super().__init__(sites)
        self._stats = stats
        self._provider = provider
        self._config = config or SearchSyncConfig()
        self._cache = cache or NullCache()

    async def run(self, job: Job, payload: SearchSyncPayload, site: Site) -> ProcessResult:
        if not site.search_configured:
            return ProcessResult.skipped("search_not_configured")

        now = datetime.now(timezone.utc)
        end = now.date() - timedelta(days=self._config.end_offset_days)
        start = end - timedelta(days=payload.days - 1)

        rows = await self._provider.query(site.search_property_url, start, end)
        written = await self._stats.upsert_rows(site.id, rows)
        await self._sites.mark_search_synced(site.id, site.organization_id, now)
        await self._cache.invalidate_prefix(site_cache_prefix(site.id))

        logger.info(
            "Synced %d search rows for site %s (%s..%s, provider=%s)",
            written,
            site.id,
            start,
            end,
            self._provider.name,
        )
        return ProcessResult.ok(
            rows=written,
            start=start.isoformat(),
            end=end.isoformat(),
            provider=self._provider.name,
        )
