"""Randomized browser-like request headers.

A HeaderRotator belongs to one run; nothing here is shared between sources.
"""

import logging
import random
from typing import Dict, Optional

from shopcrawl.ingest.user_agent_pool import (
    ACCEPT_ENCODINGS,
    ACCEPT_LANGUAGES,
    UserAgentInfo,
    UserAgentPool,
)

logger = logging.getLogger(__name__)

ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"

SEC_FETCH_SITES = ["none", "same-origin", "cross-site"]
CACHE_CONTROLS = ["max-age=0", "no-cache"]

PLATFORM_HINTS = {
    "windows": '"Windows"',
    "mac": '"macOS"',
    "linux": '"Linux"',
    "android": '"Android"',
    "ios": '"iOS"',
}


class HeaderRotator:
    """Builds a fresh header set for each request attempt."""

    def __init__(self, user_agent_pool: Optional[UserAgentPool] = None):
        self.user_agent_pool = user_agent_pool or UserAgentPool()

    def random_headers(self) -> Dict[str, str]:
        """
        Headers with a random user agent, language and encoding.

        Returns:
            Dict of HTTP headers
        """
        ua = self.user_agent_pool.get_random()
        headers = self._base_headers(ua)
        headers.update({
            "DNT": random.choice(["0", "1"]),
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": random.choice(SEC_FETCH_SITES),
            "Sec-Fetch-User": "?1",
            "Cache-Control": random.choice(CACHE_CONTROLS),
        })
        return headers

    def session_headers(self, referer: Optional[str] = None) -> Dict[str, str]:
        """
        Headers for a browsing session, with optional client hints.

        Args:
            referer: Referer URL to attach, if any

        Returns:
            Dict of HTTP headers
        """
        ua = self.user_agent_pool.get_random()
        headers = self._base_headers(ua)
        headers.update({
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "same-origin" if referer else "none",
            "Sec-Fetch-User": "?1",
        })

        if referer:
            headers["Referer"] = referer

        # Client hints are only sent by Chromium browsers, and not always
        if ua.browser in ("chrome", "edge") and random.random() < 0.5:
            headers.update(self._client_hints(ua))

        return headers

    @staticmethod
    def _base_headers(ua: UserAgentInfo) -> Dict[str, str]:
        return {
            "User-Agent": ua.user_agent,
            "Accept": ACCEPT_HTML,
            "Accept-Language": random.choice(ACCEPT_LANGUAGES),
            "Accept-Encoding": random.choice(ACCEPT_ENCODINGS),
            "Connection": "keep-alive",
            "Upgrade-Insecure-Requests": "1",
        }

    @staticmethod
    def _client_hints(ua: UserAgentInfo) -> Dict[str, str]:
        version = "124"
        marker = "Chrome/"
        if marker in ua.user_agent:
            version = ua.user_agent.split(marker, 1)[1].split(".", 1)[0]
        brand = "Microsoft Edge" if ua.browser == "edge" else "Google Chrome"
        return {
            "Sec-CH-UA": f'"Chromium";v="{version}", "{brand}";v="{version}", "Not-A.Brand";v="99"',
            "Sec-CH-UA-Mobile": "?1" if ua.is_mobile else "?0",
            "Sec-CH-UA-Platform": PLATFORM_HINTS.get(ua.platform, '"Windows"'),
        }
