"""Search-analytics rows and period aggregates."""

from dataclasses import dataclass
from datetime import date

# Dimensions requested per day; the date is implied by the one-day range
DEFAULT_DIMENSIONS: tuple[str, ...] = ("page", "query", "device", "country")


@dataclass(frozen=True)
class SearchRow:
    """One (date, page, query, device, country) row.

    ``ctr`` is a percentage (0-100), ``position`` the average rank.
    """

    date: date
    page: str
    query: str
    device: str
    country: str
    clicks: int = 0
    impressions: int = 0
    ctr: float = 0.0
    position: float = 0.0

    @property
    def key(self) -> tuple[date, str, str, str, str]:
        return (self.date, self.page, self.query, self.device, self.country)


@dataclass(frozen=True)
class PeriodTotals:
    """Clicks/impressions summed over a date range, position averaged."""

    clicks: int = 0
    impressions: int = 0
    avg_position: float | None = None

    @property
    def ctr(self) -> float:
        """Click-through rate as a percentage."""
        if self.impressions <= 0:
            return 0.0
        return self.clicks / self.impressions * 100
