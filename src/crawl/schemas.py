"""Crawl report data structures."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

IssueSeverity = Literal["error", "warning", "info"]

VALID_SEVERITIES: frozenset[str] = frozenset({"error", "warning", "info"})
VALID_CATEGORIES: frozenset[str] = frozenset(
    {"title", "description", "headings", "images", "content", "performance", "technical"}
)

SEVERITY_RANK = {"error": 0, "warning": 1, "info": 2}


class CrawlStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class CrawlIssue:
    """One finding on one page. ``code`` groups identical findings across pages."""

    code: str
    severity: IssueSeverity
    category: str
    message: str
    url: str
    recommendation: str = ""

    def __post_init__(self) -> None:
        if self.severity not in VALID_SEVERITIES:
            raise ValueError(
                f"Invalid severity {self.severity!r}. Must be one of: {sorted(VALID_SEVERITIES)}"
            )
        if self.category not in VALID_CATEGORIES:
            raise ValueError(
                f"Invalid category {self.category!r}. Must be one of: {sorted(VALID_CATEGORIES)}"
            )


@dataclass
class PageResult:
    """What the crawler saw on one page."""

    url: str
    status_code: int
    load_time_ms: float
    title: str | None = None
    meta_description: str | None = None
    h1: list[str] = field(default_factory=list)
    h2: list[str] = field(default_factory=list)
    images_total: int = 0
    images_without_alt: int = 0
    internal_links: list[str] = field(default_factory=list)
    word_count: int = 0
    issues: list[CrawlIssue] = field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


@dataclass
class TopIssue:
    code: str
    severity: IssueSeverity
    category: str
    message: str
    recommendation: str
    pages: int
    sample_urls: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity,
            "category": self.category,
            "message": self.message,
            "recommendation": self.recommendation,
            "pages": self.pages,
            "sample_urls": self.sample_urls,
        }


@dataclass
class CrawlReport:
    """
    A crawl of one site.

    Rows start RUNNING and only become COMPLETED once totals, issues and
    score are written together; FAILED and CANCELLED rows carry no totals.
    """

    site_id: str
    seed_url: str
    max_pages: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    job_id: str | None = None
    status: CrawlStatus = CrawlStatus.RUNNING
    pages_crawled: int = 0
    health_score: int | None = None
    totals: dict[str, Any] = field(default_factory=dict)
    top_issues: list[TopIssue] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
