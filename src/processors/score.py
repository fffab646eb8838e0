"""Score recalculation processor."""

import logging
from datetime import datetime, timedelta, timezone

from src.cache.redis_cache import Cache, NullCache, site_cache_prefix
from src.jobs.schemas import Job, JobKind, ProcessResult, ScorePayload
from src.performance.repository import PerformanceRepository
from src.processors.base import JobProcessor
from src.scoring.calculator import calculate_score
from src.scoring.repository import ScoreRepository
from src.scoring.schemas import ScoreInputs
from src.search.repository import SearchStatsRepository
from src.sites.repository import SiteRepository
from src.sites.schemas import Site

logger = logging.getLogger(__name__)

PERIOD_DAYS = 30


class ScoreProcessor(JobProcessor):
    """Scores a site from the last two 30-day search periods and the latest mobile test."""

    kind = JobKind.SCORE_CALCULATION

    def __init__(
        self,
        sites: SiteRepository,
        stats: SearchStatsRepository,
        performance: PerformanceRepository,
        scores: ScoreRepository,
        cache: Cache | None = None,
    ) -> None:
        super().__init__(sites)
        self._stats = stats
        self._performance = performance
        self._scores = scores
        self._cache = cache or NullCache()

    async def run(self, job: Job, payload: ScorePayload, site: Site) -> ProcessResult:
        now = datetime.now(timezone.utc)
        target = payload.target_date or now.date()

        current_start = target - timedelta(days=PERIOD_DAYS - 1)
        previous_end = current_start - timedelta(days=1)
        previous_start = previous_end - timedelta(days=PERIOD_DAYS - 1)

        current = await self._stats.period_totals(site.id, current_start, target)
        previous = await self._stats.period_totals(site.id, previous_start, previous_end)
        mobile = await self._performance.latest_snapshot(site.id, "MOBILE")

        score = calculate_score(
            site.id,
            target,
            ScoreInputs(
                current=current,
                previous=previous,
                perf_score=mobile.result.score if mobile else None,
            ),
        )
        await self._scores.upsert(score)
        await self._sites.update_cached_score(
            site.id, site.organization_id, score.overall, score.grade, now
        )
        await self._cache.invalidate_prefix(site_cache_prefix(site.id))

        logger.info("Site %s scored %d (%s) for %s", site.id, score.overall, score.grade, target)
        return ProcessResult.ok(
            score=score.overall,
            grade=score.grade,
            date=target.isoformat(),
            components=score.component_scores(),
        )
