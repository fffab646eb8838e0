"""Page-speed snapshots, Core Web Vitals ratings and daily aggregates."""

from src.performance.config import PageSpeedConfig
from src.performance.repository import PerformanceRepository
from src.performance.schemas import MetricSeriesPoint, PageSpeedResult, PerfSnapshot
from src.performance.vitals import aggregate_daily, rate_metric, summarize_cwv

__all__ = [
    "MetricSeriesPoint",
    "PageSpeedConfig",
    "PageSpeedResult",
    "PerfSnapshot",
    "PerformanceRepository",
    "aggregate_daily",
    "rate_metric",
    "summarize_cwv",
]
