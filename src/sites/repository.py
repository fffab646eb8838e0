"""Tenant-scoped site lookups and the few site columns processors stamp."""

import logging
from datetime import datetime

from src.sites.schemas import Site
from src.storage.database import Database

logger = logging.getLogger(__name__)

_SITE_COLUMNS = """
    id, organization_id, url, name, is_active, search_property_url,
    search_last_synced_at, last_crawled_at, seo_score, seo_grade
"""


def _row_to_site(row) -> Site:
    return Site(
        id=row["id"],
        organization_id=row["organization_id"],
        url=row["url"],
        name=row["name"],
        is_active=row["is_active"],
        search_property_url=row["search_property_url"],
        search_last_synced_at=row["search_last_synced_at"],
        last_crawled_at=row["last_crawled_at"],
        seo_score=row["seo_score"],
        seo_grade=row["seo_grade"],
    )


class SiteRepository:
    """Reads sites scoped by organization and stamps processor results.

    Every lookup used by job processors filters on
    ``(id, organization_id, is_active)`` so stale queue data can never
    reach a site that moved to another tenant or was deactivated.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def get_active_site(self, site_id: str, organization_id: str) -> Site | None:
        """Return the site only if it is active and owned by the organization."""
        row = await self._db.fetchrow(
            f"SELECT {_SITE_COLUMNS} FROM sites "
            "WHERE id = $1 AND organization_id = $2 AND is_active = TRUE",
            site_id,
            organization_id,
        )
        return _row_to_site(row) if row else None

    async def list_active(self, organization_id: str | None = None) -> list[Site]:
        """List active sites, optionally for one organization."""
        if organization_id is None:
            rows = await self._db.fetch(
                f"SELECT {_SITE_COLUMNS} FROM sites WHERE is_active = TRUE ORDER BY id"
            )
        else:
            rows = await self._db.fetch(
                f"SELECT {_SITE_COLUMNS} FROM sites "
                "WHERE is_active = TRUE AND organization_id = $1 ORDER BY id",
                organization_id,
            )
        return [_row_to_site(r) for r in rows]

    async def get_many(self, site_ids: list[str]) -> dict[str, Site]:
        """Batch lookup of active sites keyed by id."""
        if not site_ids:
            return {}
        rows = await self._db.fetch(
            f"SELECT {_SITE_COLUMNS} FROM sites "
            "WHERE id = ANY($1::text[]) AND is_active = TRUE",
            site_ids,
        )
        return {r["id"]: _row_to_site(r) for r in rows}

    async def mark_search_synced(
        self, site_id: str, organization_id: str, synced_at: datetime
    ) -> None:
        await self._db.execute(
            "UPDATE sites SET search_last_synced_at = $3 "
            "WHERE id = $1 AND organization_id = $2",
            site_id,
            organization_id,
            synced_at,
        )

    async def update_cached_score(
        self,
        site_id: str,
        organization_id: str,
        score: int,
        grade: str,
        updated_at: datetime,
    ) -> None:
        await self._db.execute(
            "UPDATE sites SET seo_score = $3, seo_grade = $4, score_updated_at = $5 "
            "WHERE id = $1 AND organization_id = $2",
            site_id,
            organization_id,
            score,
            grade,
            updated_at,
        )
