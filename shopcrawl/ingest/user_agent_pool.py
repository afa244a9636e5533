"""Pools of realistic browser fingerprint values.

User agents cover desktop Chrome, Firefox, Edge and Safari plus common mobile
browsers, alongside matching Accept-Language and Accept-Encoding values.
"""

import random
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class UserAgentInfo:
    """User agent with metadata."""
    user_agent: str
    browser: str  # 'chrome', 'firefox', 'safari', 'edge'
    platform: str  # 'windows', 'mac', 'linux', 'android', 'ios'

    @property
    def is_mobile(self) -> bool:
        return self.platform in ("android", "ios")


ACCEPT_LANGUAGES = [
    "en-US,en;q=0.9",
    "en-GB,en;q=0.9",
    "en-IN,en;q=0.9,hi;q=0.8",
    "en-US,en;q=0.9,hi;q=0.8",
    "en-IN,en-GB;q=0.9,en-US;q=0.8,en;q=0.7",
]

ACCEPT_ENCODINGS = [
    "gzip, deflate, br",
    "gzip, deflate",
    "gzip, deflate, br, zstd",
]


def _build_pool() -> list[UserAgentInfo]:
    pool: list[UserAgentInfo] = []

    for version in (120, 121, 122, 123, 124):
        pool.append(UserAgentInfo(
            f"Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
            f"Chrome/{version}.0.0.0 Safari/537.36", "chrome", "windows"))
        pool.append(UserAgentInfo(
            f"Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
            f"Chrome/{version}.0.0.0 Safari/537.36", "chrome", "mac"))
        pool.append(UserAgentInfo(
            f"Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
            f"Chrome/{version}.0.0.0 Safari/537.36", "chrome", "linux"))
        pool.append(UserAgentInfo(
            f"Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
            f"Chrome/{version}.0.0.0 Safari/537.36 Edg/{version}.0.0.0", "edge", "windows"))
        pool.append(UserAgentInfo(
            f"Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 (KHTML, like Gecko) "
            f"Chrome/{version}.0.0.0 Mobile Safari/537.36", "chrome", "android"))

    for version in (121, 122, 123, 124, 125):
        pool.append(UserAgentInfo(
            f"Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:{version}.0) Gecko/20100101 "
            f"Firefox/{version}.0", "firefox", "windows"))

    for version in ("17.2", "17.3", "17.4"):
        pool.append(UserAgentInfo(
            f"Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) "
            f"Version/{version} Safari/605.1.15", "safari", "mac"))
        pool.append(UserAgentInfo(
            f"Mozilla/5.0 (iPhone; CPU iPhone OS {version.replace('.', '_')} like Mac OS X) "
            f"AppleWebKit/605.1.15 (KHTML, like Gecko) Version/{version} Mobile/15E148 Safari/604.1",
            "safari", "ios"))

    return pool


class UserAgentPool:
    """Uniform random selection over a fixed user agent pool."""

    def __init__(self, user_agents: Optional[list[UserAgentInfo]] = None):
        self._user_agents = user_agents or _build_pool()

    def __len__(self) -> int:
        return len(self._user_agents)

    def get_random(self) -> UserAgentInfo:
        return random.choice(self._user_agents)

    def get_for_browser(self, browser: str) -> UserAgentInfo:
        """Random agent for a browser family, falling back to any agent."""
        matching = [ua for ua in self._user_agents if ua.browser == browser]
        return random.choice(matching or self._user_agents)

    def get_stats(self) -> dict:
        """Count agents per browser family."""
        counts: dict[str, int] = {}
        for ua in self._user_agents:
            counts[ua.browser] = counts.get(ua.browser, 0) + 1
        return {"total": len(self._user_agents), "by_browser": counts}
