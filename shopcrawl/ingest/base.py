"""Shared fetch result type and the pluggable extractor interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Protocol


@dataclass
class FetchResult:
    """Outcome of a bounded fetch: success with a body, or exhausted retries."""

    url: str
    ok: bool
    body: Optional[bytes] = None
    status_code: Optional[int] = None
    attempts: int = 0
    error: Optional[str] = None
    encoding: str = "utf-8"

    @classmethod
    def success(cls, url: str, body: bytes, status_code: int = 200, attempts: int = 1,
                encoding: Optional[str] = None) -> "FetchResult":
        return cls(url=url, ok=True, body=body, status_code=status_code,
                   attempts=attempts, encoding=encoding or "utf-8")

    @classmethod
    def exhausted(cls, url: str, attempts: int, error: Optional[str] = None,
                  status_code: Optional[int] = None) -> "FetchResult":
        return cls(url=url, ok=False, attempts=attempts, error=error, status_code=status_code)

    @property
    def text(self) -> Optional[str]:
        if self.body is None:
            return None
        return self.body.decode(self.encoding, errors="replace")


class PageFetcher(Protocol):
    """Anything that can turn a URL into page content (plain HTTP or a browser)."""

    async def fetch(self, url: str) -> FetchResult:
        ...


class PageFetchError(RuntimeError):
    """Raised when a listing page could not be fetched after all retries."""

    def __init__(self, url: str, page: Optional[int] = None, attempts: int = 0,
                 reason: Optional[str] = None):
        self.url = url
        self.page = page
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Failed to fetch {url} after {attempts} attempt(s)"
            f"{f': {reason}' if reason else ''}"
        )


class Extractor(ABC):
    """Source-specific page parsing.

    Implementations only parse; fetching, retrying and persistence are handled
    by the crawl engine.
    """

    @abstractmethod
    def list_item_urls(self, page_content: str, page_url: str) -> list[str]:
        """
        Find product page URLs on a listing page.

        Args:
            page_content: Raw HTML of the listing page
            page_url: URL the content was fetched from

        Returns:
            Absolute item URLs in page order (empty when the page has none)
        """

    @abstractmethod
    def extract_item(self, page_content: str, item_url: str) -> dict[str, Any]:
        """
        Pull raw field values out of a product page.

        Args:
            page_content: Raw HTML of the product page
            item_url: URL the content was fetched from

        Returns:
            Mapping of field name to raw value; must include 'sku' to be stored
        """
