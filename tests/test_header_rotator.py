"""Tests for header rotation."""

import random

from shopcrawl.ingest.header_builder import SEC_FETCH_SITES, HeaderRotator
from shopcrawl.ingest.user_agent_pool import ACCEPT_LANGUAGES, UserAgentInfo, UserAgentPool

CHROME = UserAgentInfo(
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/123.0.0.0 Safari/537.36",
    "chrome",
    "windows",
)
FIREFOX = UserAgentInfo(
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:124.0) Gecko/20100101 Firefox/124.0",
    "firefox",
    "windows",
)


class TestHeaderRotator:
    def setup_method(self):
        self.pool = UserAgentPool()
        self.rotator = HeaderRotator(self.pool)

    def test_random_headers(self):
        headers = self.rotator.random_headers()

        known_agents = {ua.user_agent for ua in self.pool._user_agents}
        assert headers["User-Agent"] in known_agents
        assert headers["Accept-Language"] in ACCEPT_LANGUAGES
        assert headers["Sec-Fetch-Site"] in SEC_FETCH_SITES
        assert headers["DNT"] in ("0", "1")
        assert headers["Cache-Control"] in ("max-age=0", "no-cache")

    def test_user_agents_rotate(self):
        agents = {self.rotator.random_headers()["User-Agent"] for _ in range(50)}
        assert len(agents) > 1

    def test_session_headers_with_referer(self):
        headers = self.rotator.session_headers(referer="https://shop.example.com/")
        assert headers["Referer"] == "https://shop.example.com/"
        assert headers["Sec-Fetch-Site"] == "same-origin"

    def test_session_headers_without_referer(self):
        headers = self.rotator.session_headers()
        assert "Referer" not in headers
        assert headers["Sec-Fetch-Site"] == "none"

    def test_client_hints_for_chrome(self, monkeypatch):
        monkeypatch.setattr(random, "random", lambda: 0.1)
        rotator = HeaderRotator(UserAgentPool([CHROME]))

        headers = rotator.session_headers()

        assert '"Google Chrome";v="123"' in headers["Sec-CH-UA"]
        assert headers["Sec-CH-UA-Mobile"] == "?0"
        assert headers["Sec-CH-UA-Platform"] == '"Windows"'

    def test_no_client_hints_for_firefox(self, monkeypatch):
        monkeypatch.setattr(random, "random", lambda: 0.1)
        rotator = HeaderRotator(UserAgentPool([FIREFOX]))

        assert "Sec-CH-UA" not in rotator.session_headers()


class TestUserAgentPool:
    def test_stats(self):
        pool = UserAgentPool()
        stats = pool.get_stats()
        assert stats["total"] == len(pool)
        assert set(stats["by_browser"]) == {"chrome", "edge", "firefox", "safari"}

    def test_get_for_browser(self):
        pool = UserAgentPool()
        assert pool.get_for_browser("firefox").browser == "firefox"
        assert pool.get_for_browser("netscape") is not None
