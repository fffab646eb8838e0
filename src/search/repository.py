"""Daily search-analytics rows, keyed by (site, date, page, query, device, country)."""

import logging
from datetime import date

from src.search.schemas import PeriodTotals, SearchRow
from src.storage.database import Database

logger = logging.getLogger(__name__)

# Plain assignment on conflict: re-syncing an overlapping range converges
_UPSERT_SQL = """
INSERT INTO search_stats_daily (
    site_id, date, page, query, device, country,
    clicks, impressions, ctr, position
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
ON CONFLICT (site_id, date, page, query, device, country) DO UPDATE SET
    clicks = EXCLUDED.clicks,
    impressions = EXCLUDED.impressions,
    ctr = EXCLUDED.ctr,
    position = EXCLUDED.position,
    updated_at = NOW()
"""

_PERIOD_TOTALS_SQL = """
SELECT
    COALESCE(SUM(clicks), 0)      AS clicks,
    COALESCE(SUM(impressions), 0) AS impressions,
    AVG(position)                 AS avg_position
FROM search_stats_daily
WHERE site_id = $1 AND date >= $2 AND date <= $3
"""


class SearchStatsRepository:
    """Upserts and aggregates over ``search_stats_daily``."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def upsert_rows(self, site_id: str, rows: list[SearchRow]) -> int:
        """Upsert rows for one site. Returns the number of rows written."""
        if not rows:
            return 0
        await self._db.executemany(
            _UPSERT_SQL,
            [
                (
                    site_id,
                    r.date,
                    r.page,
                    r.query,
                    r.device,
                    r.country,
                    r.clicks,
                    r.impressions,
                    r.ctr,
                    r.position,
                )
                for r in rows
            ],
        )
        logger.debug("Upserted %d search rows for site %s", len(rows), site_id)
        return len(rows)

    async def period_totals(self, site_id: str, start: date, end: date) -> PeriodTotals:
        """Totals over ``[start, end]`` inclusive."""
        row = await self._db.fetchrow(_PERIOD_TOTALS_SQL, site_id, start, end)
        if row is None:
            return PeriodTotals()
        avg_position = row["avg_position"]
        return PeriodTotals(
            clicks=int(row["clicks"]),
            impressions=int(row["impressions"]),
            avg_position=float(avg_position) if avg_position is not None else None,
        )
