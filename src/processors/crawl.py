"""Site crawl processor."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from src.cache.redis_cache import Cache, NullCache, site_cache_prefix
from src.crawl.analyzer import summarize
from src.crawl.config import CrawlConfig
from src.crawl.crawler import SiteCrawler
from src.crawl.repository import CrawlReportRepository
from src.crawl.schemas import CrawlReport
from src.jobs.idempotency import IdempotencyGuard
from src.jobs.schemas import CrawlPayload, Job, JobKind, ProcessResult
from src.processors.base import JobProcessor
from src.sites.repository import SiteRepository
from src.sites.schemas import Site

logger = logging.getLogger(__name__)


class CrawlProcessor(JobProcessor):
    """
    Crawls a site and stores a report.

    The report row is created RUNNING up front. It becomes COMPLETED only
    when the crawl finishes, FAILED on error and CANCELLED when the task is
    cancelled (lease revoked, worker shutdown). Re-running starts a new
    report from scratch.
    """

    kind = JobKind.SITE_CRAWL

    def __init__(
        self,
        sites: SiteRepository,
        reports: CrawlReportRepository,
        guard: IdempotencyGuard,
        config: CrawlConfig | None = None,
        cache: Cache | None = None,
        crawler_factory: Callable[[], SiteCrawler] | None = None,
    ) -> None:
        super().__init__(sites)
        self._reports = reports
        self._guard = guard
        self._config = config or CrawlConfig()
        self._cache = cache or NullCache()
        self._crawler_factory = crawler_factory or (lambda: SiteCrawler(self._config))

    async def run(self, job: Job, payload: CrawlPayload, site: Site) -> ProcessResult:
        if not payload.force and await self._guard.recently_applied(
            self.kind,
            site.id,
            within=timedelta(days=self._config.min_interval_days),
        ):
            return ProcessResult.skipped("recently_crawled")

        report = CrawlReport(
            site_id=site.id,
            seed_url=payload.url,
            max_pages=payload.max_pages,
            job_id=job.job_id,
        )
        await self._reports.create_running(report)

        try:
            async with self._crawler_factory() as crawler:
                pages = await crawler.crawl(payload.url, payload.max_pages)

            summary = summarize(pages, self._config)
            report.pages_crawled = len(pages)
            report.health_score = summary.health_score
            report.totals = summary.totals
            report.top_issues = summary.top_issues
            report.recommendations = summary.recommendations
            report.finished_at = datetime.now(timezone.utc)
            await self._reports.complete(report, site.organization_id)
        except asyncio.CancelledError:
            await asyncio.shield(self._reports.mark_cancelled(report.id))
            raise
        except Exception as e:
            await self._reports.mark_failed(report.id, f"{type(e).__name__}: {e}")
            raise

        await self._cache.invalidate_prefix(site_cache_prefix(site.id))
        logger.info(
            "Crawl of site %s finished: %d pages, health score %s",
            site.id,
            report.pages_crawled,
            report.health_score,
        )
        return ProcessResult.ok(
            report_id=report.id,
            pages=report.pages_crawled,
            health_score=report.health_score,
            errors=report.totals.get("errors", 0),
            warnings=report.totals.get("warnings", 0),
        )
