"""Site dataclass mapping to the sites table."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Site:
    """A monitored website owned by one organization.

    Attributes:
        id: Site identifier.
        organization_id: Owning tenant.
        url: Canonical site URL (seed for crawls and page-speed tests).
        name: Display name used in notifications.
        is_active: Inactive sites are skipped by every processor.
        search_property_url: Search-analytics property, None when not connected.
        search_last_synced_at: Last successful search-data sync.
        last_crawled_at: Finish time of the last completed crawl.
        seo_score: Cached overall score for fast reads.
        seo_grade: Letter grade for ``seo_score``.
    """

    id: str
    organization_id: str
    url: str
    name: str = ""
    is_active: bool = True
    search_property_url: str | None = None
    search_last_synced_at: datetime | None = None
    last_crawled_at: datetime | None = None
    seo_score: int | None = None
    seo_grade: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.url

    @property
    def search_configured(self) -> bool:
        return bool(self.search_property_url)
