"""HTTP page fetching with header rotation, proxies and bounded retries."""

from __future__ import annotations

import logging
import time
from typing import Optional

import httpx

from shopcrawl import metrics
from shopcrawl.config import settings
from shopcrawl.ingest import pacing
from shopcrawl.ingest.base import FetchResult
from shopcrawl.ingest.header_builder import HeaderRotator
from shopcrawl.ingest.proxy_manager import ProxyInfo, ProxyPool
from shopcrawl.logging_config import mask_proxy

logger = logging.getLogger(__name__)

# Request errors worth another attempt (timeouts, connection and protocol failures)
RETRYABLE_EXC = (httpx.RequestError,)


class FetchClient:
    """
    GETs pages for one source.

    Each attempt gets fresh headers (the source's fixed headers when configured,
    otherwise random ones) and the next proxy from the pool. Non-200 responses
    and transport errors are retried with exponential backoff; once attempts run
    out the caller gets an exhausted FetchResult instead of an exception.
    """

    def __init__(
        self,
        source: str = "default",
        proxy_pool: Optional[ProxyPool] = None,
        header_rotator: Optional[HeaderRotator] = None,
        fixed_headers: Optional[dict[str, str]] = None,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.source = source
        self.proxy_pool = proxy_pool or ProxyPool(source=source)
        self.header_rotator = header_rotator or HeaderRotator()
        self.fixed_headers = fixed_headers
        self.max_retries = max_retries if max_retries is not None else settings.max_retries
        self.timeout = httpx.Timeout(
            timeout if timeout is not None else settings.request_timeout_seconds,
            connect=connect_timeout if connect_timeout is not None else settings.connect_timeout_seconds,
        )
        self._transport = transport
        self._clients: dict[Optional[str], httpx.AsyncClient] = {}  # proxy url -> client

    def _get_client(self, proxy: Optional[ProxyInfo]) -> httpx.AsyncClient:
        key = proxy.url if proxy else None
        if key not in self._clients:
            kwargs = {"timeout": self.timeout, "follow_redirects": True}
            if self._transport is not None:
                kwargs["transport"] = self._transport
            elif proxy:
                kwargs["proxy"] = proxy.url
            self._clients[key] = httpx.AsyncClient(**kwargs)
        return self._clients[key]

    def _headers(self) -> dict[str, str]:
        if self.fixed_headers:
            return dict(self.fixed_headers)
        return self.header_rotator.random_headers()

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a URL, retrying up to max_retries times.

        Args:
            url: Absolute URL to GET

        Returns:
            FetchResult.success with the body on HTTP 200, otherwise
            FetchResult.exhausted after the last attempt
        """
        last_error: Optional[str] = None
        last_status: Optional[int] = None

        for attempt in range(1, self.max_retries + 1):
            proxy = await self.proxy_pool.next() if self.proxy_pool.has_any() else None
            client = self._get_client(proxy)
            started = time.monotonic()

            try:
                response = await client.get(url, headers=self._headers())
            except RETRYABLE_EXC as e:
                last_error = mask_proxy(f"{e.__class__.__name__}: {e}")
                last_status = None
                metrics.record_fetch_attempt(self.source, "transport_error", time.monotonic() - started)
                logger.warning(
                    f"Request failed for {url} (attempt {attempt}/{self.max_retries}, "
                    f"using_proxy={proxy is not None}): {e.__class__.__name__}"
                )
                if proxy:
                    await self.proxy_pool.mark_failed(proxy)
            else:
                last_status = response.status_code
                if response.status_code == 200:
                    metrics.record_fetch_attempt(self.source, "success", time.monotonic() - started)
                    logger.debug(
                        f"Fetched {url} (attempt {attempt}/{self.max_retries}, "
                        f"using_proxy={proxy is not None})"
                    )
                    return FetchResult.success(
                        url,
                        response.content,
                        status_code=response.status_code,
                        attempts=attempt,
                        encoding=response.encoding,
                    )

                last_error = f"HTTP {response.status_code}"
                metrics.record_fetch_attempt(self.source, "http_error", time.monotonic() - started)
                logger.warning(
                    f"HTTP {response.status_code} for {url} (attempt {attempt}/{self.max_retries}, "
                    f"using_proxy={proxy is not None})"
                )
                if proxy and response.status_code >= 400:
                    await self.proxy_pool.mark_failed(proxy)

            if attempt < self.max_retries:
                await pacing.pause(pacing.backoff_delay(attempt))

        logger.error(f"All {self.max_retries} attempts failed for {url}: {last_error}")
        return FetchResult.exhausted(url, self.max_retries, error=last_error, status_code=last_status)

    async def close(self):
        """Close HTTP clients."""
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
