"""Headless browser rendering for JavaScript-driven listing and product pages."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    async_playwright,
)
from selectolax.parser import HTMLParser

from shopcrawl.config import SourceConfig, settings
from shopcrawl.ingest import pacing
from shopcrawl.ingest.base import FetchResult
from shopcrawl.ingest.header_builder import HeaderRotator
from shopcrawl.ingest.pagination import build_page_url
from shopcrawl.ingest.proxy_manager import ProxyInfo, ProxyPool

logger = logging.getLogger(__name__)

STEALTH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-infobars",
    "--disable-extensions",
]

VIEWPORT = {"width": 1920, "height": 1080}

# Seconds to wait after each scroll for lazy-loaded items
SCROLL_SETTLE_SECONDS = 2.0


@dataclass
class RenderedPage:
    """One rendered page of a paginated listing."""

    page: int
    url: str
    html: str


def has_next_page(html: str, selector: str) -> bool:
    """True when the 'next page' element matching `selector` is present."""
    return HTMLParser(html).css_first(selector) is not None


class RenderClient:
    """
    Renders pages in headless Chromium.

    A render failure is logged and reported as no content; nothing here raises
    into the crawl loop. One browser is shared by all renders of a client, each
    render gets its own context with a fresh user agent and the next proxy.
    """

    def __init__(
        self,
        source: str = "default",
        proxy_pool: Optional[ProxyPool] = None,
        header_rotator: Optional[HeaderRotator] = None,
        headless: Optional[bool] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.source = source
        self.proxy_pool = proxy_pool or ProxyPool(source=source)
        self.header_rotator = header_rotator or HeaderRotator()
        self.headless = settings.browser_headless if headless is None else headless
        self.timeout_ms = timeout_ms or settings.render_timeout_ms

        self._playwright = None
        self._browser: Optional[Browser] = None
        self._init_lock = asyncio.Lock()

    async def _ensure_browser(self) -> Browser:
        async with self._init_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            if self._browser is None:
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=STEALTH_ARGS,
                )
            return self._browser

    async def _new_context(self) -> tuple[BrowserContext, Optional[ProxyInfo]]:
        browser = await self._ensure_browser()
        headers = self.header_rotator.session_headers()
        options: dict[str, Any] = {
            "user_agent": headers.pop("User-Agent"),
            "viewport": VIEWPORT,
            "extra_http_headers": {"Accept-Language": headers["Accept-Language"]},
        }
        proxy = await self.proxy_pool.next() if self.proxy_pool.has_any() else None
        if proxy:
            options["proxy"] = proxy.playwright_config
        return await browser.new_context(**options), proxy

    async def _open(self, url: str, wait_until: str = "domcontentloaded") -> tuple[BrowserContext, Page, Optional[ProxyInfo]]:
        context, proxy = await self._new_context()
        try:
            page = await context.new_page()
            await page.goto(url, wait_until=wait_until, timeout=self.timeout_ms)
        except BaseException:
            await context.close()
            raise
        return context, page, proxy

    async def render_page(self, url: str, wait_seconds: Optional[float] = None) -> Optional[str]:
        """
        Render a page and return its HTML.

        Args:
            url: Page URL
            wait_seconds: Extra settle time after DOM load for client-side rendering

        Returns:
            Rendered HTML, or None if the render failed
        """
        wait = settings.render_wait_seconds if wait_seconds is None else wait_seconds
        proxy = None
        try:
            context, page, proxy = await self._open(url)
            try:
                await pacing.pause(wait)
                html = await page.content()
            finally:
                await context.close()
        except PlaywrightError as e:
            logger.error(f"Render failed for {url} (using_proxy={proxy is not None}): {e.__class__.__name__}: {e}")
            if proxy:
                await self.proxy_pool.mark_failed(proxy)
            return None

        logger.debug(f"Rendered {url} ({len(html)} bytes)")
        return html

    async def fetch(self, url: str) -> FetchResult:
        """Render `url` behind the same interface as the HTTP client."""
        html = await self.render_page(url)
        if html is None:
            return FetchResult.exhausted(url, attempts=1, error="render failed")
        return FetchResult.success(url, html.encode("utf-8"), attempts=1)

    async def render_paginated(self, base_url: str, config: SourceConfig,
                               budget: Optional[pacing.RunBudget] = None) -> list[RenderedPage]:
        """
        Render successive listing pages until one of the stop conditions hits.

        Stops at config.max_pages, after settings.render_max_empty_pages
        consecutive pages with no (or near-empty) content, when
        config.has_next_selector is set and missing from a page, or when the
        run budget runs out.
        """
        pages: list[RenderedPage] = []
        page_number = 1
        empty_in_a_row = 0

        while page_number <= config.max_pages:
            if budget is not None and budget.exceeded():
                logger.warning(f"Run budget exhausted, stopping browser pagination at page {page_number}")
                break

            url = build_page_url(base_url, page_number, config.page_param)
            logger.info(f"Rendering page {page_number} of {base_url}")
            html = await self.render_page(url)

            if not html or len(html) < settings.render_min_content_bytes:
                empty_in_a_row += 1
                logger.warning(f"No content or minimal content on page {page_number} ({url})")
                if empty_in_a_row >= settings.render_max_empty_pages:
                    logger.info("Stopping browser pagination after consecutive empty pages")
                    break
                page_number += 1
                continue

            empty_in_a_row = 0
            pages.append(RenderedPage(page=page_number, url=url, html=html))

            if config.has_next_selector and not has_next_page(html, config.has_next_selector):
                logger.info(f"No next page after page {page_number}")
                break

            page_number += 1
            if page_number <= config.max_pages:
                await pacing.random_delay(settings.render_page_delay_range)

        logger.info(f"Browser pagination of {base_url} rendered {len(pages)} pages")
        return pages

    async def render_infinite_scroll(self, url: str, scroll_count: int = 10) -> Optional[str]:
        """
        Load a page and keep scrolling to the bottom to pull in lazy content.

        Returns:
            Final HTML, or None if the render failed
        """
        proxy = None
        try:
            context, page, proxy = await self._open(url, wait_until="networkidle")
            try:
                scrolls = await self._scroll_to_end(page, scroll_count)
                html = await page.content()
            finally:
                await context.close()
        except PlaywrightError as e:
            logger.error(f"Infinite scroll render failed for {url}: {e.__class__.__name__}: {e}")
            if proxy:
                await self.proxy_pool.mark_failed(proxy)
            return None

        logger.info(f"Infinite scroll of {url} finished after {scrolls} scrolls ({len(html)} bytes)")
        return html

    @staticmethod
    async def _scroll_to_end(page: Page, scroll_count: int) -> int:
        """Scroll up to `scroll_count` times; stop once the page height stops growing."""
        last_height = await page.evaluate("() => document.body.scrollHeight")
        scrolls = 0
        while scrolls < scroll_count:
            await page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
            scrolls += 1
            await pacing.pause(SCROLL_SETTLE_SECONDS)
            height = await page.evaluate("() => document.body.scrollHeight")
            if height <= last_height:
                break
            last_height = height
        return scrolls

    async def execute_script(self, url: str, script: str) -> Any:
        """Evaluate a JavaScript expression on a loaded page; None on failure."""
        try:
            context, page, _ = await self._open(url)
            try:
                return await page.evaluate(script)
            finally:
                await context.close()
        except PlaywrightError as e:
            logger.error(f"Script execution failed on {url}: {e}")
            return None

    async def take_screenshot(self, url: str, path: str | Path) -> bool:
        """Save a full-page screenshot; returns False on failure."""
        try:
            context, page, _ = await self._open(url)
            try:
                await page.screenshot(path=str(path), full_page=True)
            finally:
                await context.close()
        except PlaywrightError as e:
            logger.error(f"Screenshot failed for {url}: {e}")
            return False
        return True

    async def close(self):
        """Close browser and cleanup."""
        if self._browser:
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
