"""Crawl report persistence.

A report row is created RUNNING before the first fetch and flipped to
COMPLETED in the same transaction that writes its totals and stamps the
site, so readers filtering on COMPLETED never see a partial report.
"""

import json
import logging
from datetime import datetime, timezone

from src.crawl.schemas import CrawlReport, CrawlStatus, TopIssue
from src.storage.database import Database

logger = logging.getLogger(__name__)

_REPORT_COLUMNS = """
    id, site_id, job_id, status, seed_url, max_pages, pages_crawled,
    health_score, totals, top_issues, recommendations, error, started_at, finished_at
"""


def _json(value):
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_to_report(row) -> CrawlReport:
    return CrawlReport(
        id=row["id"],
        site_id=row["site_id"],
        job_id=row["job_id"],
        status=CrawlStatus(row["status"]),
        seed_url=row["seed_url"],
        max_pages=row["max_pages"],
        pages_crawled=row["pages_crawled"],
        health_score=row["health_score"],
        totals=_json(row["totals"]) or {},
        top_issues=[TopIssue(**t) for t in _json(row["top_issues"]) or []],
        recommendations=list(_json(row["recommendations"]) or []),
        error=row["error"],
        started_at=row["started_at"],
        finished_at=row["finished_at"],
    )


class CrawlReportRepository:
    """Lifecycle writes and reads for ``crawl_reports``."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_running(self, report: CrawlReport) -> None:
        await self._db.execute(
            "INSERT INTO crawl_reports (id, site_id, job_id, status, seed_url, max_pages, started_at) "
            "VALUES ($1, $2, $3, $4, $5, $6, $7)",
            report.id,
            report.site_id,
            report.job_id,
            CrawlStatus.RUNNING.value,
            report.seed_url,
            report.max_pages,
            report.started_at,
        )

    async def complete(self, report: CrawlReport, organization_id: str) -> None:
        """Write the finished report and stamp ``sites.last_crawled_at`` atomically."""
        finished_at = report.finished_at or datetime.now(timezone.utc)
        async with self._db.transaction() as conn:
            await conn.execute(
                "UPDATE crawl_reports SET status = $2, pages_crawled = $3, health_score = $4, "
                "totals = $5, top_issues = $6, recommendations = $7, finished_at = $8 "
                "WHERE id = $1 AND status = 'RUNNING'",
                report.id,
                CrawlStatus.COMPLETED.value,
                report.pages_crawled,
                report.health_score,
                json.dumps(report.totals),
                json.dumps([t.to_dict() for t in report.top_issues]),
                json.dumps(report.recommendations),
                finished_at,
            )
            await conn.execute(
                "UPDATE sites SET last_crawled_at = $3 WHERE id = $1 AND organization_id = $2",
                report.site_id,
                organization_id,
                finished_at,
            )
        report.status = CrawlStatus.COMPLETED
        report.finished_at = finished_at

    async def mark_failed(self, report_id: str, error: str) -> None:
        await self._finish(report_id, CrawlStatus.FAILED, error[:1000])

    async def mark_cancelled(self, report_id: str) -> None:
        await self._finish(report_id, CrawlStatus.CANCELLED, "lease revoked or worker shutdown")

    async def _finish(self, report_id: str, status: CrawlStatus, error: str) -> None:
        await self._db.execute(
            "UPDATE crawl_reports SET status = $2, error = $3, finished_at = NOW() "
            "WHERE id = $1 AND status = 'RUNNING'",
            report_id,
            status.value,
            error,
        )
        logger.info("Crawl report %s marked %s", report_id, status.value)

    async def latest_completed_at(self, site_id: str, device: str | None = None) -> datetime | None:
        """Finish time of the site's newest COMPLETED report. Idempotency lookup."""
        return await self._db.fetchval(
            "SELECT MAX(finished_at) FROM crawl_reports "
            "WHERE site_id = $1 AND status = 'COMPLETED'",
            site_id,
        )

    async def get_latest_completed(self, site_id: str) -> CrawlReport | None:
        row = await self._db.fetchrow(
            f"SELECT {_REPORT_COLUMNS} FROM crawl_reports "
            "WHERE site_id = $1 AND status = 'COMPLETED' "
            "ORDER BY finished_at DESC LIMIT 1",
            site_id,
        )
        return _row_to_report(row) if row else None
