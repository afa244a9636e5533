"""Runs one source end to end: listings, items, staleness and the ledger."""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopcrawl import metrics
from shopcrawl.config import ConfigurationError, SourceConfig, settings
from shopcrawl.db.ledger import RunLedger
from shopcrawl.db.models import RUN_FAILED, ScrapeRun
from shopcrawl.db.repository import ProductRepository
from shopcrawl.ingest import pacing
from shopcrawl.ingest.base import Extractor, PageFetcher
from shopcrawl.ingest.fetchers.headless import RenderClient
from shopcrawl.ingest.header_builder import HeaderRotator
from shopcrawl.ingest.http_client import FetchClient
from shopcrawl.ingest.item_processor import ItemProcessor
from shopcrawl.ingest.pagination import PaginationController
from shopcrawl.ingest.proxy_manager import ProxyPool
from shopcrawl.ingest.run_state import RunContext, error_details
from shopcrawl.logging_config import get_logger
from shopcrawl.normalize.sanitizer import Sanitizer

logger = logging.getLogger(__name__)

STRATEGY_HTTP = "http"
STRATEGY_BROWSER = "browser"


class RunCoordinator:
    """
    Orchestrates a single run for one source.

    The coordinator owns the source's proxy pool, header rotator and clients;
    nothing is shared with other sources. Listing URLs are processed in order
    with either plain HTTP pagination or browser rendering, chosen from the
    source config. A source may opt into switching to the browser when HTTP
    keeps returning empty listings.
    """

    def __init__(
        self,
        source_config: SourceConfig,
        extractor: Extractor,
        session_factory: async_sessionmaker[AsyncSession],
        fetch_client: Optional[PageFetcher] = None,
        render_client: Optional[RenderClient] = None,
        sanitizer: Optional[Sanitizer] = None,
        time_budget_seconds: Optional[float] = None,
        staleness_grace_seconds: Optional[float] = None,
    ):
        if not source_config.name:
            raise ConfigurationError("Source config has no name")

        self.config = source_config
        self.source = source_config.name
        self.extractor = extractor
        self.ledger = RunLedger(session_factory)
        self.repository = ProductRepository(session_factory)
        self.sanitizer = sanitizer or Sanitizer()
        self.time_budget_seconds = (
            settings.run_time_budget_seconds if time_budget_seconds is None else time_budget_seconds
        )
        self.staleness_grace = timedelta(
            seconds=settings.staleness_grace_seconds
            if staleness_grace_seconds is None else staleness_grace_seconds
        )

        self.proxy_pool = ProxyPool.from_settings(source=self.source)
        self.header_rotator = HeaderRotator()

        self._owned_fetch_client = fetch_client is None
        self._owned_render_client = render_client is None
        self.fetch_client = fetch_client or FetchClient(
            source=self.source,
            proxy_pool=self.proxy_pool,
            header_rotator=self.header_rotator,
            fixed_headers=source_config.fixed_headers,
        )
        self._render_client = render_client

    @property
    def render_client(self) -> RenderClient:
        """Browser client, started on first use."""
        if self._render_client is None:
            self._render_client = RenderClient(
                source=self.source,
                proxy_pool=self.proxy_pool,
                header_rotator=self.header_rotator,
            )
        return self._render_client

    def initial_strategy(self) -> str:
        return STRATEGY_BROWSER if self.config.use_browser_rendering else STRATEGY_HTTP

    def should_fall_back(self, empty_http_listings: int) -> bool:
        """True once enough consecutive HTTP listings came back without items."""
        threshold = self.config.browser_fallback_after_empty_listings
        return bool(threshold) and empty_http_listings >= threshold

    async def run(self, listing_urls: Optional[list[str]] = None) -> ScrapeRun:
        """
        Run the source and return its final ledger entry.

        Args:
            listing_urls: Listing URLs to crawl; defaults to the configured ones

        Returns:
            The ScrapeRun in its terminal state (completed or partial)

        Raises:
            Exception: Any run-level failure, after the ledger entry is marked failed
        """
        urls = list(listing_urls if listing_urls is not None else self.config.listing_urls)
        run = await self.ledger.start(self.source)
        context = RunContext(self.source, run.id, self.ledger, pacing.RunBudget(self.time_budget_seconds))
        log = get_logger(__name__, source=self.source, run_id=run.id)

        try:
            if not urls:
                raise ConfigurationError(f"No listing URLs configured for {self.source}", source=self.source)

            await self._crawl(urls, context)

            if context.stopped_early:
                log.warning("Run stopped early on time budget, skipping staleness deactivation")
            else:
                cutoff = run.started_at - self.staleness_grace
                context.stats.deactivated = await self.repository.deactivate_stale(self.source, cutoff)

            final = await self.ledger.complete(
                run.id, context.stats.as_ledger_stats(), partial=context.stopped_early
            )
        except Exception as e:
            log.error(f"Run failed: {e.__class__.__name__}: {e}", exc_info=True)
            await self.ledger.fail(
                run.id,
                f"{e.__class__.__name__}: {e}",
                error_details(e, include_traceback=True),
                context.stats.as_ledger_stats(),
            )
            metrics.record_run(self.source, RUN_FAILED)
            raise
        finally:
            await self.close()

        metrics.record_run(self.source, final.status)
        return final

    async def _crawl(self, urls: list[str], context: RunContext) -> None:
        strategy = self.initial_strategy()
        empty_http_listings = 0

        for index, url in enumerate(urls, 1):
            if context.budget.exceeded():
                logger.warning(f"Run time budget exceeded, skipping remaining {len(urls) - index + 1} listings")
                context.stopped_early = True
                break

            logger.info(f"Processing listing {index}/{len(urls)} for {self.source} ({strategy}): {url}")

            if strategy == STRATEGY_BROWSER:
                await self._crawl_with_browser(url, context)
                continue

            items = await self._crawl_with_http(url, context)
            empty_http_listings = empty_http_listings + 1 if items == 0 else 0

            if self.should_fall_back(empty_http_listings):
                logger.warning(
                    f"{empty_http_listings} listings in a row returned no items over HTTP, "
                    f"switching {self.source} to browser rendering"
                )
                strategy = STRATEGY_BROWSER
                if not context.budget.exceeded():
                    await self._crawl_with_browser(url, context)

    def _processor(self, context: RunContext, fetcher: PageFetcher) -> ItemProcessor:
        return ItemProcessor(context, self.extractor, fetcher, self.repository, self.sanitizer)

    async def _crawl_with_http(self, url: str, context: RunContext) -> int:
        controller = PaginationController(
            self.config,
            self.fetch_client,
            self._processor(context, self.fetch_client),
            context,
        )
        result = await controller.run(url)
        return result.items_found

    async def _crawl_with_browser(self, url: str, context: RunContext) -> int:
        client = self.render_client
        processor = self._processor(context, client)

        if self.config.pagination_type == "infinite_scroll":
            html = await client.render_infinite_scroll(url, self.config.scroll_count)
            pages = [(url, html)] if html else []
        else:
            rendered = await client.render_paginated(url, self.config, context.budget)
            pages = [(p.url, p.html) for p in rendered]

        if context.budget.exceeded():
            context.stopped_early = True

        items_found = 0
        for page_url, html in pages:
            try:
                items = await processor.process_page(html, page_url)
            except Exception as e:
                metrics.record_page(self.source, "failed")
                logger.error(f"Error processing rendered page {page_url}: {e.__class__.__name__}: {e}")
                await context.record_error(f"Rendered page failed: {e}", e, url=page_url)
                continue
            context.stats.pages_processed += 1
            metrics.record_page(self.source, "items" if items else "empty")
            items_found += items

        if not pages:
            logger.warning(f"Browser rendering produced no content for {url}")
        return items_found

    async def close(self):
        """Close the clients this coordinator created."""
        if self._owned_fetch_client:
            await self.fetch_client.close()
        if self._owned_render_client and self._render_client is not None:
            await self._render_client.close()
