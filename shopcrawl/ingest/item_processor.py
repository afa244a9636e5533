"""Per-page item handling: discover, fetch, extract, sanitize and store."""

import logging
from typing import Optional

from shopcrawl import metrics
from shopcrawl.config import settings
from shopcrawl.db.repository import ProductRepository, RecordValidationError, UpsertResult
from shopcrawl.ingest import pacing
from shopcrawl.ingest.base import Extractor, PageFetcher
from shopcrawl.ingest.run_state import RunContext
from shopcrawl.normalize.sanitizer import Sanitizer

logger = logging.getLogger(__name__)


class ItemProcessor:
    """
    Processes the items of one listing page, in discovery order.

    Item failures (fetch exhausted, extraction error, validation error) are
    written to the run's error trail and the next item is processed. Only a
    failure to read the listing page itself propagates to the caller.
    """

    def __init__(
        self,
        context: RunContext,
        extractor: Extractor,
        fetcher: PageFetcher,
        repository: ProductRepository,
        sanitizer: Optional[Sanitizer] = None,
        item_delay_range: Optional[tuple[float, float]] = None,
    ):
        self.context = context
        self.extractor = extractor
        self.fetcher = fetcher
        self.repository = repository
        self.sanitizer = sanitizer or Sanitizer()
        self.item_delay_range = item_delay_range or settings.item_delay_range

    @property
    def source(self) -> str:
        return self.context.source

    async def process_page(self, page_content: str, page_url: str) -> int:
        """
        Handle every item listed on a page.

        Args:
            page_content: Listing page HTML
            page_url: URL of the listing page

        Returns:
            Number of item URLs found on the page
        """
        item_urls = list(dict.fromkeys(self.extractor.list_item_urls(page_content, page_url)))
        logger.info(f"Found {len(item_urls)} items on {page_url}")
        for item_url in item_urls:
            await self.process_item(item_url)
            await pacing.random_delay(self.item_delay_range)

        # Counted once the page completes, so a retried page is not counted twice
        self.context.stats.found += len(item_urls)

        return len(item_urls)

    async def process_item(self, item_url: str) -> Optional[UpsertResult]:
        """Fetch, extract and store one item; returns None when the item was skipped."""
        fetched = await self.fetcher.fetch(item_url)
        if not fetched.ok:
            await self.context.record_error(
                f"Failed to fetch item {item_url}",
                url=item_url,
                attempts=fetched.attempts,
                reason=fetched.error,
            )
            return None

        sku = None
        try:
            raw = dict(self.extractor.extract_item(fetched.text, item_url))
            raw.pop("source", None)
            raw.setdefault("url", item_url)
            record = self.sanitizer.sanitize(raw)

            sku = record.pop("sku", None) or Sanitizer.extract_sku(item_url, self.source)
            result = await self.repository.upsert(self.source, sku or "", record)
        except RecordValidationError as e:
            logger.warning(f"Skipping invalid item {item_url}: {e}")
            metrics.record_upsert(self.source, "invalid")
            await self.context.record_error(f"Invalid item {item_url}: {e}", e, url=item_url, sku=sku)
            return None
        except Exception as e:
            logger.error(f"Error processing item {item_url}: {e.__class__.__name__}: {e}")
            await self.context.record_error(f"Error processing item {item_url}: {e}", e, url=item_url, sku=sku)
            return None

        self.context.stats.record_upsert(result.action)
        metrics.record_upsert(self.source, result.action)
        logger.debug(f"{result.action.capitalize()} {self.source}/{sku}")
        return result
