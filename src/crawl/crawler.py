"""
Breadth-first site crawler.

Follows same-host links from a seed URL up to ``max_depth`` levels and
``max_pages`` pages, pausing between fetches. The crawl stays on the host
the seed finally resolves to; pages that redirect elsewhere are dropped. Every fetch is a suspension
point, so cancelling the surrounding task stops the crawl promptly.
"""

import asyncio
import logging
import time
from collections import deque
from urllib.parse import urldefrag

import httpx

from src.crawl.analyzer import parse_page, same_host
from src.crawl.config import CrawlConfig
from src.crawl.schemas import PageResult
from src.jobs.exceptions import TransientExternalError

logger = logging.getLogger(__name__)

_HTML_TYPES = ("text/html", "application/xhtml+xml")


class SiteCrawler:
    """
    Crawls one site.

    Example:
        async with SiteCrawler() as crawler:
            pages = await crawler.crawl("https://example.com", max_pages=50)
    """

    def __init__(
        self,
        config: CrawlConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or CrawlConfig()
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "SiteCrawler":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                follow_redirects=True,
                headers={"User-Agent": self._config.user_agent},
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def crawl(self, seed_url: str, max_pages: int) -> list[PageResult]:
        """
        Crawl from ``seed_url``.

        Pages that fail to fetch are logged and skipped.

        Raises:
            TransientExternalError: The seed URL itself could not be fetched.
        """
        if self._client is None:
            raise RuntimeError("SiteCrawler must be used as async context manager")

        seed, _ = urldefrag(seed_url)
        site_url = seed
        queue: deque[tuple[str, int]] = deque([(seed, 0)])
        visited: set[str] = set()
        pages: list[PageResult] = []

        while queue and len(pages) < max_pages:
            url, depth = queue.popleft()
            if url in visited or depth > self._config.max_depth:
                continue
            visited.add(url)

            if len(visited) > 1 and self._config.delay_seconds > 0:
                await asyncio.sleep(self._config.delay_seconds)

            try:
                page = await self.fetch_page(url)
            except httpx.HTTPError as e:
                if url == seed:
                    raise TransientExternalError(
                        f"Could not fetch seed URL {url}: {type(e).__name__}"
                    ) from e
                logger.warning("Failed to fetch %s: %s", url, e)
                continue

            if page is None:
                continue
            if url == seed:
                # Host of the seed after redirects, e.g. apex to www
                site_url = page.url
            elif not same_host(page.url, site_url):
                logger.info("Dropping %s: redirected off-site to %s", url, page.url)
                continue
            pages.append(page)
            logger.debug("Crawled %s (depth %d, status %d)", url, depth, page.status_code)

            if depth < self._config.max_depth:
                for link in page.internal_links:
                    if link not in visited and same_host(link, site_url):
                        queue.append((link, depth + 1))

        logger.info("Crawled %d pages from %s", len(pages), seed)
        return pages

    async def fetch_page(self, url: str) -> PageResult | None:
        """Fetch and analyze one page. Returns None for non-HTML responses.

        At most ``max_body_bytes`` of the body are read; the rest of the
        stream is discarded unread.
        """
        started = time.monotonic()
        async with self._client.stream("GET", url) as response:
            content_type = response.headers.get("content-type", "").lower()
            if response.status_code < 400 and not content_type.startswith(_HTML_TYPES):
                logger.debug("Skipping non-HTML %s (%s)", url, content_type)
                return None

            limit = self._config.max_body_bytes
            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) >= limit:
                    break
            load_time_ms = (time.monotonic() - started) * 1000
            html = bytes(body[:limit]).decode(response.encoding or "utf-8", errors="replace")
            final_url = str(response.url)

        return parse_page(html, final_url, response.status_code, load_time_ms, self._config)
