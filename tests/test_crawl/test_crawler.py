"""Tests for the breadth-first site crawler."""

import httpx
import pytest
import respx

from src.crawl.config import CrawlConfig
from src.crawl.crawler import SiteCrawler
from src.jobs.exceptions import TransientExternalError

HTML = {"content-type": "text/html; charset=utf-8"}


def _page(title, *links):
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    return f"<html><head><title>{title}</title></head><body><h1>{title}</h1>{anchors}</body></html>"


@pytest.fixture
def config():
    return CrawlConfig(delay_seconds=0, max_depth=2)


class TestCrawl:

    @pytest.mark.asyncio
    @respx.mock
    async def test_follows_internal_links_breadth_first(self, config):
        respx.get("https://example.com/").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("Home", "/a", "/b", "https://other.com/"))
        )
        respx.get("https://example.com/a").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("A", "/c"))
        )
        respx.get("https://example.com/b").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("B", "/"))
        )
        respx.get("https://example.com/c").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("C"))
        )
        other = respx.get("https://other.com/")

        async with SiteCrawler(config) as crawler:
            pages = await crawler.crawl("https://example.com/", max_pages=10)

        assert [p.url for p in pages] == [
            "https://example.com/",
            "https://example.com/a",
            "https://example.com/b",
            "https://example.com/c",
        ]
        assert not other.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_max_pages_limit(self, config):
        respx.get("https://example.com/").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("Home", "/a", "/b", "/c"))
        )
        respx.get(url__regex=r"https://example\.com/[abc]").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("Leaf"))
        )

        async with SiteCrawler(config) as crawler:
            pages = await crawler.crawl("https://example.com/", max_pages=2)

        assert len(pages) == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_depth_limit(self):
        respx.get("https://example.com/").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("Home", "/a"))
        )
        deep = respx.get("https://example.com/a")

        async with SiteCrawler(CrawlConfig(delay_seconds=0, max_depth=0)) as crawler:
            pages = await crawler.crawl("https://example.com/", max_pages=10)

        assert len(pages) == 1
        assert not deep.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_seed_failure_is_transient(self, config):
        respx.get("https://example.com/").mock(side_effect=httpx.ConnectError("refused"))

        async with SiteCrawler(config) as crawler:
            with pytest.raises(TransientExternalError):
                await crawler.crawl("https://example.com/", max_pages=10)

    @pytest.mark.asyncio
    @respx.mock
    async def test_failed_child_is_skipped(self, config):
        respx.get("https://example.com/").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("Home", "/a", "/b"))
        )
        respx.get("https://example.com/a").mock(side_effect=httpx.ReadTimeout("slow"))
        respx.get("https://example.com/b").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("B"))
        )

        async with SiteCrawler(config) as crawler:
            pages = await crawler.crawl("https://example.com/", max_pages=10)

        assert [p.url for p in pages] == ["https://example.com/", "https://example.com/b"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_html_skipped_but_error_pages_kept(self, config):
        respx.get("https://example.com/").mock(
            return_value=httpx.Response(
                200, headers=HTML, text=_page("Home", "/report.pdf", "/missing")
            )
        )
        respx.get("https://example.com/report.pdf").mock(
            return_value=httpx.Response(200, headers={"content-type": "application/pdf"}, content=b"%PDF")
        )
        respx.get("https://example.com/missing").mock(
            return_value=httpx.Response(404, headers={"content-type": "text/plain"}, text="gone")
        )

        async with SiteCrawler(config) as crawler:
            pages = await crawler.crawl("https://example.com/", max_pages=10)

        assert [p.url for p in pages] == ["https://example.com/", "https://example.com/missing"]
        assert pages[1].is_error

    @pytest.mark.asyncio
    async def test_requires_context_manager(self, config):
        with pytest.raises(RuntimeError):
            await SiteCrawler(config).crawl("https://example.com/", max_pages=1)


class TestRedirects:

    @pytest.mark.asyncio
    @respx.mock
    async def test_link_redirecting_off_site_is_dropped(self, config):
        respx.get("https://example.com/").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("Home", "/out", "/about"))
        )
        respx.get("https://example.com/out").mock(
            return_value=httpx.Response(302, headers={"location": "https://other.com/"})
        )
        respx.get("https://example.com/about").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("About"))
        )
        other = respx.get("https://other.com/").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("Other", "/x"))
        )
        other_child = respx.get("https://other.com/x")

        async with SiteCrawler(config) as crawler:
            pages = await crawler.crawl("https://example.com/", max_pages=10)

        assert [p.url for p in pages] == ["https://example.com/", "https://example.com/about"]
        assert other.called
        assert not other_child.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_seed_redirect_sets_the_crawl_host(self, config):
        respx.get("https://example.com/").mock(
            return_value=httpx.Response(301, headers={"location": "https://www.example.com/"})
        )
        respx.get("https://www.example.com/").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("Home", "/a"))
        )
        respx.get("https://www.example.com/a").mock(
            return_value=httpx.Response(200, headers=HTML, text=_page("A"))
        )

        async with SiteCrawler(config) as crawler:
            pages = await crawler.crawl("https://example.com/", max_pages=10)

        assert [p.url for p in pages] == ["https://www.example.com/", "https://www.example.com/a"]


class TestBodyLimit:

    @pytest.mark.asyncio
    @respx.mock
    async def test_body_read_stops_at_limit(self):
        padding = "<p>" + "x" * 4000 + "</p>"
        html = f"<html><head><title>Home</title></head><body>{padding}<h1>Late</h1></body></html>"
        respx.get("https://example.com/").mock(
            return_value=httpx.Response(200, headers=HTML, text=html)
        )

        async with SiteCrawler(CrawlConfig(delay_seconds=0, max_body_bytes=1024)) as crawler:
            pages = await crawler.crawl("https://example.com/", max_pages=1)

        assert pages[0].title == "Home"
        assert pages[0].h1 == []
