"""Page-number pagination over one listing URL."""

import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from shopcrawl import metrics
from shopcrawl.config import SourceConfig
from shopcrawl.ingest import pacing
from shopcrawl.ingest.base import PageFetcher, PageFetchError

logger = logging.getLogger(__name__)

STOP_MAX_PAGES = "max_pages"
STOP_EMPTY_PAGES = "empty_pages"
STOP_CONSECUTIVE_ERRORS = "consecutive_errors"
STOP_BUDGET = "budget"


def build_page_url(base_url: str, page: int, page_param: str = "page") -> str:
    """
    URL of page `page` of a listing.

    Page 1 is the listing URL itself; later pages set (or replace) the
    page query parameter.
    """
    if page <= 1:
        return base_url
    parts = urlsplit(base_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != page_param]
    query.append((page_param, str(page)))
    return urlunsplit(parts._replace(query=urlencode(query)))


@dataclass
class PaginationResult:
    """Summary of one listing traversal."""

    listing_url: str
    pages_processed: int = 0
    items_found: int = 0
    failed_pages: list[int] = field(default_factory=list)
    stopped_reason: Optional[str] = None


class PaginationController:
    """
    Walks page 1, 2, ... of a listing until a stop condition is reached.

    Each fetched page is handed to the processor, which extracts item URLs,
    fetches and stores each item, and reports how many items it found.
    A page that fails (fetch exhausted, extractor blew up) is remembered for
    an optional retry pass and counted toward the consecutive error limit;
    the walk itself carries on.
    """

    def __init__(self, config: SourceConfig, fetcher: PageFetcher, processor, context):
        self.config = config
        self.fetcher = fetcher
        self.processor = processor
        self.context = context

    async def run(self, listing_url: str) -> PaginationResult:
        """
        Traverse one listing URL.

        Args:
            listing_url: First page of the listing

        Returns:
            PaginationResult with pages processed, items found and failed pages
        """
        result = PaginationResult(listing_url=listing_url)
        empty_pages = 0
        consecutive_errors = 0
        page = 1

        while True:
            if page > self.config.max_pages:
                result.stopped_reason = STOP_MAX_PAGES
                break
            if self.context.budget.exceeded():
                logger.warning(f"Run time budget exceeded, stopping {listing_url} before page {page}")
                self.context.stopped_early = True
                result.stopped_reason = STOP_BUDGET
                break

            try:
                items = await self._process_page(listing_url, page)
            except Exception as e:
                consecutive_errors += 1
                result.failed_pages.append(page)
                metrics.record_page(self.context.source, "failed")
                logger.error(f"Error on page {page} of {listing_url}: {e.__class__.__name__}: {e}")
                await self.context.record_error(f"Page {page} failed: {e}", e, url=listing_url, page=page)

                if consecutive_errors >= self.config.max_consecutive_errors:
                    logger.warning(f"Too many consecutive errors ({consecutive_errors}), stopping {listing_url}")
                    result.stopped_reason = STOP_CONSECUTIVE_ERRORS
                    break
                page += 1
                continue

            result.pages_processed += 1
            result.items_found += items

            if items == 0:
                empty_pages += 1
                logger.info(f"No items on page {page} of {listing_url} ({empty_pages} in a row)")
                if empty_pages >= self.config.max_empty_pages:
                    result.stopped_reason = STOP_EMPTY_PAGES
                    break
            else:
                empty_pages = 0
                consecutive_errors = 0

            page += 1
            if page <= self.config.max_pages:
                await pacing.random_delay(self.config.inter_page_delay_range)

        if result.failed_pages and self.config.retry_failed_pages:
            await self._retry_failed_pages(listing_url, result)

        logger.info(
            f"Finished {listing_url}: {result.pages_processed} pages, {result.items_found} items, "
            f"failed pages {result.failed_pages}, stopped by {result.stopped_reason}"
        )
        return result

    async def _process_page(self, listing_url: str, page: int) -> int:
        url = build_page_url(listing_url, page, self.config.page_param)
        logger.info(f"Fetching page {page}: {url}")

        fetched = await self.fetcher.fetch(url)
        if not fetched.ok:
            raise PageFetchError(url, page=page, attempts=fetched.attempts, reason=fetched.error)

        items = await self.processor.process_page(fetched.text, url)
        self.context.stats.pages_processed += 1
        metrics.record_page(self.context.source, "items" if items else "empty")
        return items

    async def _retry_failed_pages(self, listing_url: str, result: PaginationResult) -> None:
        logger.info(f"Retrying {len(result.failed_pages)} failed pages of {listing_url}")

        for page in list(result.failed_pages):
            for attempt in range(1, self.config.max_retries_per_page + 1):
                if self.context.budget.exceeded():
                    self.context.stopped_early = True
                    return

                await pacing.random_delay(self.config.failed_page_retry_delay_range)
                try:
                    items = await self._process_page(listing_url, page)
                except Exception as e:
                    logger.warning(
                        f"Retry {attempt}/{self.config.max_retries_per_page} of page {page} failed: {e}"
                    )
                    continue

                result.failed_pages.remove(page)
                result.pages_processed += 1
                result.items_found += items
                logger.info(f"Recovered page {page} of {listing_url} ({items} items)")
                break
