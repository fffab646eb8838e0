"""Site crawling, on-page issue analysis and crawl reports."""

from src.crawl.analyzer import CrawlSummary, parse_page, summarize
from src.crawl.config import CrawlConfig
from src.crawl.crawler import SiteCrawler
from src.crawl.repository import CrawlReportRepository
from src.crawl.schemas import CrawlIssue, CrawlReport, CrawlStatus, PageResult, TopIssue

__all__ = [
    "CrawlConfig",
    "CrawlIssue",
    "CrawlReport",
    "CrawlReportRepository",
    "CrawlStatus",
    "CrawlSummary",
    "PageResult",
    "SiteCrawler",
    "TopIssue",
    "parse_page",
    "summarize",
]
