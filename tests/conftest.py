"""Shared fixtures for the market feed test suite."""

import asyncio
from typing import Any, Dict, List, Tuple

import pytest

from marketfeed.build_id import BuildIdResolver
from marketfeed.cache import TTLCache
from marketfeed.fetch_queue import SerialFetchQueue
from marketfeed.leaderboard import LeaderboardFeed
from marketfeed.markets import MarketFeed


# ── Fakes ────────────────────────────────────────────────

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """Stands in for UpstreamClient.

    Responses are scripted per URL as a list consumed in order; the last one
    repeats. An Exception instance in the list is raised instead of returned.
    """

    def __init__(self):
        self.json_routes: Dict[str, List[Any]] = {}
        self.text_routes: Dict[str, List[Any]] = {}
        self.calls: List[Tuple[str, str, Any]] = []

    def on_json(self, url: str, *responses: Any) -> None:
        self.json_routes[url] = list(responses)

    def on_text(self, url: str, *responses: Any) -> None:
        self.text_routes[url] = list(responses)

    def calls_to(self, url: str) -> List[Tuple[str, str, Any]]:
        return [c for c in self.calls if c[1] == url]

    async def get_json(self, url, params=None):
        self.calls.append(("json", url, params))
        return self._next(self.json_routes, url)

    async def get_text(self, url, params=None):
        self.calls.append(("text", url, params))
        return self._next(self.text_routes, url)

    def close(self):
        pass

    @staticmethod
    def _next(routes, url):
        if url not in routes:
            raise AssertionError(f"unexpected upstream call to {url}")
        script = routes[url]
        response = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(response, Exception):
            raise response
        return response


async def no_sleep(_seconds):
    await asyncio.sleep(0)


def make_events(start: int, count: int, prefix: str = "m") -> List[dict]:
    return [
        {"id": f"{prefix}{i}", "title": f"Market {i}", "volume24hr": str(1000 - i)}
        for i in range(start, start + count)
    ]


# ── Fixtures ─────────────────────────────────────────────

GAMMA = "https://gamma.test"
SITE = "https://site.test"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TTLCache(default_ttl=60, clock=clock)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def queue():
    return SerialFetchQueue(delay=0, sleep=no_sleep)


@pytest.fixture
def feed(upstream, cache, queue):
    return MarketFeed(upstream, cache, queue, api_base=GAMMA, retry_base_delay=0)


@pytest.fixture
def resolver(upstream, cache):
    return BuildIdResolver(upstream, cache, site_base=SITE, ttl=300)


@pytest.fixture
def leaderboard(resolver, cache, queue):
    return LeaderboardFeed(resolver, cache, queue, ttl=60, retry_base_delay=0)
