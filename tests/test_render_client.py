"""Tests for browser rendering logic that does not need a real browser."""

import pytest
from playwright.async_api import Error as PlaywrightError

from shopcrawl.config import SourceConfig
from shopcrawl.ingest.fetchers.headless import RenderClient, has_next_page

LISTING = "https://shop.example.com/c/phones"
FULL_PAGE = "<html><body>" + "<div class='item'>phone</div>" * 60 + "<a class='next'>Next</a></body></html>"
LAST_PAGE = "<html><body>" + "<div class='item'>phone</div>" * 60 + "</body></html>"


class ScriptedRenderClient(RenderClient):
    def __init__(self, pages: dict):
        super().__init__(source="test")
        self.pages = pages
        self.rendered: list[str] = []

    async def render_page(self, url, wait_seconds=None):
        self.rendered.append(url)
        return self.pages.get(url)


class FakePage:
    """Page whose scroll height follows a fixed sequence."""

    def __init__(self, heights):
        self.heights = list(heights)
        self.scrolls = 0

    async def evaluate(self, script):
        if "scrollTo" in script:
            self.scrolls += 1
            return None
        return self.heights.pop(0) if len(self.heights) > 1 else self.heights[0]


def test_has_next_page():
    assert has_next_page(FULL_PAGE, "a.next") is True
    assert has_next_page(LAST_PAGE, "a.next") is False


class TestRenderPaginated:
    @pytest.mark.asyncio
    async def test_stops_after_consecutive_empty_pages(self):
        client = ScriptedRenderClient({LISTING: FULL_PAGE, LISTING + "?page=2": "<html></html>"})

        pages = await client.render_paginated(LISTING, SourceConfig(name="test"))

        assert [p.page for p in pages] == [1]
        assert len(client.rendered) == 4

    @pytest.mark.asyncio
    async def test_stops_when_next_link_missing(self):
        client = ScriptedRenderClient({LISTING: FULL_PAGE, LISTING + "?page=2": LAST_PAGE})
        config = SourceConfig(name="test", has_next_selector="a.next")

        pages = await client.render_paginated(LISTING, config)

        assert [p.url for p in pages] == [LISTING, LISTING + "?page=2"]
        assert len(client.rendered) == 2

    @pytest.mark.asyncio
    async def test_stops_at_max_pages(self, sleeps):
        client = ScriptedRenderClient({
            LISTING: FULL_PAGE,
            LISTING + "?page=2": FULL_PAGE,
            LISTING + "?page=3": FULL_PAGE,
        })

        pages = await client.render_paginated(LISTING, SourceConfig(name="test", max_pages=2))

        assert len(pages) == 2
        assert len(client.rendered) == 2
        # One settle delay between the two pages
        assert len(sleeps) == 1
        assert 3 <= sleeps[0] <= 6


class TestRenderFailures:
    @pytest.mark.asyncio
    async def test_render_error_returns_none(self, monkeypatch):
        client = RenderClient(source="test")

        async def broken_open(url, wait_until="domcontentloaded"):
            raise PlaywrightError("net::ERR_CONNECTION_RESET")

        monkeypatch.setattr(client, "_open", broken_open)

        assert await client.render_page(LISTING) is None
        assert await client.render_infinite_scroll(LISTING) is None
        assert await client.execute_script(LISTING, "() => 1") is None
        assert await client.take_screenshot(LISTING, "shot.png") is False

    @pytest.mark.asyncio
    async def test_fetch_reports_exhausted_on_failure(self):
        client = ScriptedRenderClient({})

        result = await client.fetch(LISTING)

        assert result.ok is False
        assert result.error == "render failed"

    @pytest.mark.asyncio
    async def test_fetch_wraps_html(self):
        client = ScriptedRenderClient({LISTING: FULL_PAGE})

        result = await client.fetch(LISTING)

        assert result.ok is True
        assert result.text == FULL_PAGE


class TestInfiniteScroll:
    @pytest.mark.asyncio
    async def test_stops_when_height_stops_growing(self):
        page = FakePage([1000, 2000, 3000, 3000])

        scrolls = await RenderClient._scroll_to_end(page, scroll_count=10)

        assert scrolls == 3
        assert page.scrolls == 3

    @pytest.mark.asyncio
    async def test_bounded_by_scroll_count(self):
        page = FakePage([1000, 2000, 3000, 4000, 5000])

        scrolls = await RenderClient._scroll_to_end(page, scroll_count=2)

        assert scrolls == 2
