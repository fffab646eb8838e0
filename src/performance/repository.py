"""Snapshots and daily aggregates for page-speed data."""

import logging
from datetime import date, datetime, time, timedelta, timezone

from src.performance.schemas import MetricSeriesPoint, PageSpeedResult, PerfSnapshot
from src.performance.vitals import aggregate_daily
from src.storage.database import Database

logger = logging.getLogger(__name__)

_INSERT_SNAPSHOT_SQL = """
INSERT INTO perf_snapshots (
    id, site_id, url, device, perf_score, lcp_ms, inp_ms, cls, ttfb_ms,
    fcp_ms, speed_index_ms, field_lcp_p75, field_inp_p75, field_cls_p75,
    lighthouse_version, taken_at
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
ON CONFLICT (id) DO NOTHING
"""

_SNAPSHOT_COLUMNS = """
    id, site_id, url, device, perf_score, lcp_ms, inp_ms, cls, ttfb_ms,
    fcp_ms, speed_index_ms, field_lcp_p75, field_inp_p75, field_cls_p75,
    lighthouse_version, taken_at
"""

_UPSERT_DAILY_SQL = """
INSERT INTO site_perf_daily (
    site_id, date, device, perf_score_avg, lcp_pctl, inp_pctl, cls_pctl, pages_measured
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
ON CONFLICT (site_id, date, device) DO UPDATE SET
    perf_score_avg = EXCLUDED.perf_score_avg,
    lcp_pctl = EXCLUDED.lcp_pctl,
    inp_pctl = EXCLUDED.inp_pctl,
    cls_pctl = EXCLUDED.cls_pctl,
    pages_measured = EXCLUDED.pages_measured,
    updated_at = NOW()
"""


def _row_to_snapshot(row) -> PerfSnapshot:
    return PerfSnapshot(
        id=row["id"],
        site_id=row["site_id"],
        taken_at=row["taken_at"],
        result=PageSpeedResult(
            url=row["url"],
            strategy=row["device"],
            score=row["perf_score"],
            lcp_ms=row["lcp_ms"],
            inp_ms=row["inp_ms"],
            cls=row["cls"],
            ttfb_ms=row["ttfb_ms"],
            fcp_ms=row["fcp_ms"],
            speed_index_ms=row["speed_index_ms"],
            field_lcp_p75=row["field_lcp_p75"],
            field_inp_p75=row["field_inp_p75"],
            field_cls_p75=row["field_cls_p75"],
            lighthouse_version=row["lighthouse_version"],
        ),
    )


def _row_to_point(row) -> MetricSeriesPoint:
    return MetricSeriesPoint(
        date=row["date"],
        device=row["device"],
        lcp_pctl=row["lcp_pctl"],
        inp_pctl=row["inp_pctl"],
        cls_pctl=row["cls_pctl"],
        perf_score_avg=row["perf_score_avg"],
        pages_measured=row["pages_measured"],
    )


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class PerformanceRepository:
    """Reads and writes ``perf_snapshots`` and ``site_perf_daily``."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def insert_snapshot(self, snapshot: PerfSnapshot) -> None:
        r = snapshot.result
        await self._db.execute(
            _INSERT_SNAPSHOT_SQL,
            snapshot.id,
            snapshot.site_id,
            r.url,
            r.strategy,
            r.score,
            r.lcp_ms,
            r.inp_ms,
            r.cls,
            r.ttfb_ms,
            r.fcp_ms,
            r.speed_index_ms,
            r.field_lcp_p75,
            r.field_inp_p75,
            r.field_cls_p75,
            r.lighthouse_version,
            snapshot.taken_at,
        )

    async def snapshots_for_day(
        self, site_id: str, day: date, device: str | None = None
    ) -> list[PerfSnapshot]:
        """Snapshots taken on ``day`` (UTC), optionally for one device."""
        start, end = _day_bounds(day)
        if device is None:
            rows = await self._db.fetch(
                f"SELECT {_SNAPSHOT_COLUMNS} FROM perf_snapshots "
                "WHERE site_id = $1 AND taken_at >= $2 AND taken_at < $3 "
                "ORDER BY taken_at DESC",
                site_id,
                start,
                end,
            )
        else:
            rows = await self._db.fetch(
                f"SELECT {_SNAPSHOT_COLUMNS} FROM perf_snapshots "
                "WHERE site_id = $1 AND device = $2 AND taken_at >= $3 AND taken_at < $4 "
                "ORDER BY taken_at DESC",
                site_id,
                device,
                start,
                end,
            )
        return [_row_to_snapshot(r) for r in rows]

    async def upsert_daily(self, site_id: str, day: date, device: str) -> list[MetricSeriesPoint]:
        """
        Recompute the daily rows for ``device`` and for ``ALL`` from the
        day's snapshots. Re-running converges on the same rows.
        """
        snapshots = await self.snapshots_for_day(site_id, day)
        device_points = [s for s in snapshots if s.device == device]

        points = [
            aggregate_daily(day, device, device_points),
            aggregate_daily(day, "ALL", snapshots),
        ]
        async with self._db.transaction() as conn:
            for p in points:
                await conn.execute(
                    _UPSERT_DAILY_SQL,
                    site_id,
                    p.date,
                    p.device,
                    p.perf_score_avg,
                    p.lcp_pctl,
                    p.inp_pctl,
                    p.cls_pctl,
                    p.pages_measured,
                )
        logger.debug("Upserted daily perf for site %s on %s (%s + ALL)", site_id, day, device)
        return points

    async def latest_snapshot(self, site_id: str, device: str) -> PerfSnapshot | None:
        row = await self._db.fetchrow(
            f"SELECT {_SNAPSHOT_COLUMNS} FROM perf_snapshots "
            "WHERE site_id = $1 AND device = $2 ORDER BY taken_at DESC LIMIT 1",
            site_id,
            device,
        )
        return _row_to_snapshot(row) if row else None

    async def latest_snapshot_at(self, site_id: str, device: str | None) -> datetime | None:
        """When a snapshot for (site, device) was last taken. Idempotency lookup."""
        if device is None:
            return await self._db.fetchval(
                "SELECT MAX(taken_at) FROM perf_snapshots WHERE site_id = $1", site_id
            )
        return await self._db.fetchval(
            "SELECT MAX(taken_at) FROM perf_snapshots WHERE site_id = $1 AND device = $2",
            site_id,
            device,
        )

    async def get_series_for_sites(
        self, site_ids: list[str], since: date
    ) -> dict[str, list[MetricSeriesPoint]]:
        """Daily points on or after ``since`` for each site, newest first."""
        if not site_ids:
            return {}
        rows = await self._db.fetch(
            "SELECT site_id, date, device, perf_score_avg, lcp_pctl, inp_pctl, "
            "cls_pctl, pages_measured FROM site_perf_daily "
            "WHERE site_id = ANY($1::text[]) AND date >= $2 "
            "ORDER BY site_id, date DESC",
            site_ids,
            since,
        )
        series: dict[str, list[MetricSeriesPoint]] = {sid: [] for sid in site_ids}
        for row in rows:
            series.setdefault(row["site_id"], []).append(_row_to_point(row))
        return series
