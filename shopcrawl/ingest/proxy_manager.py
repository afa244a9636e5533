"""Proxy pool with round-robin rotation and fail-open reset."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import urlparse

import httpx

from shopcrawl import metrics
from shopcrawl.config import settings
from shopcrawl.logging_config import mask_proxy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProxyInfo:
    """A proxy endpoint, kept as its full URL."""

    url: str

    @property
    def masked(self) -> str:
        """URL with credentials redacted, safe for logs."""
        return mask_proxy(self.url)

    @property
    def playwright_config(self) -> dict:
        """Get proxy config for Playwright."""
        parsed = urlparse(self.url)
        config = {"server": f"{parsed.scheme or 'http'}://{parsed.hostname}:{parsed.port}"}
        if parsed.username:
            config["username"] = parsed.username
        if parsed.password:
            config["password"] = parsed.password
        return config


def load_proxy_urls(
    env_list: Optional[Iterable[str]] = None,
    proxy_file: Optional[str] = None,
) -> list[str]:
    """
    Collect proxy URLs from the environment list and an optional file.

    Lines starting with '#' in the file are ignored. Order is preserved and
    duplicates are dropped.
    """
    urls: list[str] = list(env_list if env_list is not None else settings.proxy_list)

    path = Path(proxy_file) if proxy_file else None
    if path and path.is_file():
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                urls.append(line)

    return list(dict.fromkeys(u.strip() for u in urls if u.strip()))


class ProxyPool:
    """
    Rotating proxy pool owned by a single run.

    Proxies marked failed are skipped until every proxy has failed, at which
    point the failed set is cleared so fetching never stops for lack of proxies.
    """

    def __init__(self, proxies: Iterable[str] = (), source: str = "default"):
        self.source = source
        self._proxies: list[ProxyInfo] = [ProxyInfo(u) for u in dict.fromkeys(proxies)]
        self._failed: set[str] = set()
        self._current_index: int = 0
        self._lock = asyncio.Lock()

        if self._proxies:
            logger.info(f"Proxy pool for {source} loaded {len(self._proxies)} proxies")

    @classmethod
    def from_settings(cls, source: str = "default") -> "ProxyPool":
        return cls(load_proxy_urls(proxy_file=settings.proxy_file), source=source)

    @property
    def proxy_count(self) -> int:
        return len(self._proxies)

    def has_any(self) -> bool:
        """Check if any proxies are configured."""
        return bool(self._proxies)

    async def next(self) -> Optional[ProxyInfo]:
        """
        Get the next proxy in rotation over the non-failed set.

        Returns:
            ProxyInfo, or None when no proxies are configured
        """
        async with self._lock:
            if not self._proxies:
                return None

            available = [p for p in self._proxies if p.url not in self._failed]
            if not available:
                logger.warning(
                    f"All {len(self._proxies)} proxies for {self.source} marked failed, "
                    f"resetting failed set"
                )
                self._failed.clear()
                metrics.record_proxy_reset(self.source)
                available = list(self._proxies)

            proxy = available[self._current_index % len(available)]
            self._current_index += 1
            return proxy

    async def mark_failed(self, proxy: ProxyInfo) -> None:
        async with self._lock:
            if proxy.url in self._failed:
                return
            self._failed.add(proxy.url)
        metrics.record_proxy_failure(self.source)
        logger.warning(
            f"Marked proxy {proxy.masked} as failed "
            f"({len(self._failed)}/{len(self._proxies)} failed)"
        )

    def stats(self) -> dict:
        """Pool counters for status output."""
        return {
            "total": len(self._proxies),
            "failed": len(self._failed),
            "available": len(self._proxies) - len(self._failed),
            "current_index": self._current_index,
        }

    async def test_proxy(self, proxy: ProxyInfo, timeout: float = 10.0) -> bool:
        """
        Test if a proxy is working.

        Args:
            proxy: Proxy to test
            timeout: Request timeout in seconds

        Returns:
            True if proxy is working, False otherwise
        """
        try:
            async with httpx.AsyncClient(
                proxy=proxy.url,
                timeout=timeout,
                follow_redirects=True,
            ) as client:
                response = await client.get(settings.proxy_test_url)
        except httpx.HTTPError as e:
            logger.warning(f"Proxy {proxy.masked} test failed: {e.__class__.__name__}")
            return False

        if response.status_code == 200:
            logger.info(f"Proxy {proxy.masked} is working")
            return True

        logger.warning(f"Proxy {proxy.masked} returned status {response.status_code}")
        return False

    async def validate(self) -> dict[str, bool]:
        """Test every proxy and mark the broken ones failed."""
        results: dict[str, bool] = {}
        for proxy in list(self._proxies):
            working = await self.test_proxy(proxy)
            results[proxy.masked] = working
            if not working:
                await self.mark_failed(proxy)
        return results
