"""
On-page SEO analysis.

Turns fetched HTML into a ``PageResult`` with its issues, and rolls a
set of pages up into report totals, a ranked top-issues list, a health
score and recommendations.
"""

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

from src.crawl.config import CrawlConfig
from src.crawl.schemas import SEVERITY_RANK, CrawlIssue, PageResult, TopIssue

_WHITESPACE = re.compile(r"\s+")

_SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:", "data:")


def _text(node) -> str:
    return _WHITESPACE.sub(" ", node.get_text(" ")).strip() if node else ""


def same_host(url: str, base_url: str) -> bool:
    return urlparse(url).netloc.lower() == urlparse(base_url).netloc.lower()


def extract_internal_links(soup: BeautifulSoup, page_url: str) -> list[str]:
    """Absolute, fragment-free links on the same host, in document order."""
    links: list[str] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith("#") or href.lower().startswith(_SKIPPED_SCHEMES):
            continue
        absolute, _ = urldefrag(urljoin(page_url, href))
        if urlparse(absolute).scheme not in ("http", "https"):
            continue
        if not same_host(absolute, page_url) or absolute in seen:
            continue
        seen.add(absolute)
        links.append(absolute)
    return links


def parse_page(
    html: str,
    url: str,
    status_code: int,
    load_time_ms: float,
    config: CrawlConfig | None = None,
) -> PageResult:
    """Extract on-page signals from ``html`` and attach the page's issues."""
    config = config or CrawlConfig()
    soup = BeautifulSoup(html or "", "html.parser")

    title = _text(soup.title) or None
    meta = soup.find("meta", attrs={"name": re.compile(r"^description$", re.I)})
    description = (meta.get("content") or "").strip() if meta else ""

    images = soup.find_all("img")
    without_alt = sum(1 for img in images if not (img.get("alt") or "").strip())

    body = soup.body or soup
    word_count = len(_text(body).split()) if body else 0

    page = PageResult(
        url=url,
        status_code=status_code,
        load_time_ms=load_time_ms,
        title=title,
        meta_description=description or None,
        h1=[_text(h) for h in soup.find_all("h1")],
        h2=[_text(h) for h in soup.find_all("h2")],
        images_total=len(images),
        images_without_alt=without_alt,
        internal_links=extract_internal_links(soup, url),
        word_count=word_count,
    )
    page.issues = page_issues(page, config)
    return page


def page_issues(page: PageResult, config: CrawlConfig | None = None) -> list[CrawlIssue]:
    """Apply the on-page rules to one page."""
    config = config or CrawlConfig()
    issues: list[CrawlIssue] = []

    def add(code: str, severity: str, category: str, message: str, recommendation: str) -> None:
        issues.append(CrawlIssue(code, severity, category, message, page.url, recommendation))

    if page.is_error:
        add(
            "http_error",
            "error",
            "technical",
            f"HTTP error: {page.status_code}",
            "Fix server errors and broken pages",
        )

    if not page.title:
        add(
            "title_missing",
            "error",
            "title",
            "Missing title tag",
            "Add a unique, descriptive title tag to help search engines understand the page",
        )
    elif len(page.title) < 30:
        add(
            "title_short",
            "warning",
            "title",
            "Title tag is too short",
            "Write a more descriptive title between 30-60 characters",
        )
    elif len(page.title) > 60:
        add(
            "title_long",
            "warning",
            "title",
            "Title tag is too long",
            "Shorten title to 30-60 characters to avoid truncation",
        )

    if not page.meta_description:
        add(
            "description_missing",
            "warning",
            "description",
            "Missing meta description",
            "Add a compelling meta description between 120-160 characters",
        )
    elif len(page.meta_description) < 120:
        add(
            "description_short",
            "info",
            "description",
            "Meta description is quite short",
            "Consider expanding meta description for better visibility",
        )
    elif len(page.meta_description) > 160:
        add(
            "description_long",
            "warning",
            "description",
            "Meta description is too long",
            "Shorten meta description to 120-160 characters",
        )

    if not page.h1:
        add(
            "h1_missing",
            "error",
            "headings",
            "Missing H1 tag",
            "Add an H1 tag to clearly define the main topic of the page",
        )
    elif len(page.h1) > 1:
        add(
            "h1_multiple",
            "warning",
            "headings",
            f"Multiple H1 tags found ({len(page.h1)})",
            "Use only one H1 tag per page for better SEO structure",
        )

    if page.images_without_alt:
        add(
            "images_missing_alt",
            "warning",
            "images",
            f"{page.images_without_alt} image(s) missing alt text",
            "Add descriptive alt text to all images for better accessibility and SEO",
        )

    if page.load_time_ms > config.slow_page_ms:
        add(
            "slow_page",
            "warning",
            "performance",
            f"Slow page load time ({round(page.load_time_ms)}ms)",
            "Optimize page loading speed for better user experience",
        )

    if not page.is_error and page.word_count < config.thin_content_words:
        add(
            "thin_content",
            "info",
            "content",
            "Content is quite short",
            f"Consider adding more valuable content (aim for {config.thin_content_words}+ words)",
        )

    return issues


@dataclass
class CrawlSummary:
    totals: dict[str, Any]
    top_issues: list[TopIssue]
    health_score: int
    recommendations: list[str] = field(default_factory=list)


def rank_issues(pages: list[PageResult], limit: int = 10) -> list[TopIssue]:
    """Group issues by code; errors first, then by number of affected pages."""
    grouped: dict[str, TopIssue] = {}
    for page in pages:
        for issue in page.issues:
            top = grouped.get(issue.code)
            if top is None:
                top = grouped[issue.code] = TopIssue(
                    code=issue.code,
                    severity=issue.severity,
                    category=issue.category,
                    message=issue.message,
                    recommendation=issue.recommendation,
                    pages=0,
                )
            top.pages += 1
            if len(top.sample_urls) < 5:
                top.sample_urls.append(issue.url)

    ranked = sorted(
        grouped.values(),
        key=lambda t: (SEVERITY_RANK[t.severity], -t.pages, t.code),
    )
    return ranked[:limit]


def health_score(pages: list[PageResult]) -> int:
    """100 minus weighted penalties, each scaled by the share of pages affected."""
    total = len(pages)
    if total == 0:
        return 0

    severities = Counter(i.severity for p in pages for i in p.issues)
    score = 100.0
    score -= sum(1 for p in pages if p.is_error) / total * 20
    score -= sum(1 for p in pages if not p.title) / total * 15
    score -= sum(1 for p in pages if not p.h1) / total * 10
    score -= sum(1 for p in pages if any(i.code == "slow_page" for i in p.issues)) / total * 10
    score -= min(severities["error"] / total * 10, 20)
    score -= min(severities["warning"] / total * 5, 15)
    return max(0, round(score))


def build_recommendations(totals: dict[str, Any], score: int) -> list[str]:
    recommendations: list[str] = []
    pages = totals["pages"]

    if score < 50:
        recommendations.append("Critical: Site has major SEO issues that need immediate attention")
    elif score < 75:
        recommendations.append("Site has several SEO improvement opportunities")

    if totals["error_pages"]:
        recommendations.append(f"Fix {totals['error_pages']} pages returning error status codes")
    if totals["pages_without_title"]:
        recommendations.append(f"Add title tags to {totals['pages_without_title']} pages")
    if totals["pages_without_description"] > pages * 0.5:
        recommendations.append(
            "Add meta descriptions to improve click-through rates from search results"
        )
    if totals["pages_without_h1"]:
        recommendations.append(
            f"Add H1 headings to {totals['pages_without_h1']} pages for better content structure"
        )
    if totals["avg_load_time_ms"] > 3000:
        recommendations.append("Optimize page loading speed - average load time is over 3 seconds")
    if totals["images_without_alt"] > 10:
        recommendations.append(
            f"Add alt text to {totals['images_without_alt']} images for better accessibility"
        )
    if pages and totals["avg_word_count"] < 300:
        recommendations.append(
            "Consider adding more content to pages - average word count is quite low"
        )
    return recommendations


def summarize(pages: list[PageResult], config: CrawlConfig | None = None) -> CrawlSummary:
    """Roll crawled pages up into report totals, ranking and score."""
    config = config or CrawlConfig()
    total = len(pages)
    severities = Counter(i.severity for p in pages for i in p.issues)
    by_category = Counter(i.category for p in pages for i in p.issues)

    totals: dict[str, Any] = {
        "pages": total,
        "errors": severities["error"],
        "warnings": severities["warning"],
        "info": severities["info"],
        "by_category": dict(sorted(by_category.items())),
        "error_pages": sum(1 for p in pages if p.is_error),
        "pages_without_title": sum(1 for p in pages if not p.title),
        "pages_without_description": sum(1 for p in pages if not p.meta_description),
        "pages_without_h1": sum(1 for p in pages if not p.h1),
        "images_without_alt": sum(p.images_without_alt for p in pages),
        "avg_load_time_ms": round(sum(p.load_time_ms for p in pages) / total) if total else 0,
        "avg_word_count": round(sum(p.word_count for p in pages) / total) if total else 0,
    }
    score = health_score(pages)
    return CrawlSummary(
        totals=totals,
        top_issues=rank_issues(pages, config.top_issues_limit),
        health_score=score,
        recommendations=build_recommendations(totals, score),
    )
