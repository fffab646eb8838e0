"""Search-analytics rows: schemas, persistence and sync configuration."""

from src.search.config import SearchSyncConfig
from src.search.repository import SearchStatsRepository
from src.search.schemas import DEFAULT_DIMENSIONS, PeriodTotals, SearchRow

__all__ = [
    "DEFAULT_DIMENSIONS",
    "PeriodTotals",
    "SearchRow",
    "SearchStatsRepository",
    "SearchSyncConfig",
]
