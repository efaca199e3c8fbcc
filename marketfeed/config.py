"""
Configuration and service setup for the market feed application
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from marketfeed.build_id import BuildIdResolver
from marketfeed.cache import TTLCache
from marketfeed.fetch_queue import SerialFetchQueue
from marketfeed.leaderboard import LeaderboardFeed
from marketfeed.markets import MarketFeed
from marketfeed.upstream import UpstreamClient

logger = logging.getLogger(__name__)


def _env(name: str, default: str) -> str:
    return os.environ.get(f"MARKETFEED_{name}", default).strip()


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(f"MARKETFEED_{name}")
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid MARKETFEED_%s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


class Config:
    """Application configuration"""

    # API settings
    TITLE = "Market Feed API"
    DESCRIPTION = "Cached, rate-limit aware proxy for prediction-market listings"
    VERSION = "1.0.0"
    DOCS_URL = "/docs"
    REDOC_URL = "/redoc"

    # CORS settings
    ALLOW_ORIGINS = ["*"]
    ALLOW_CREDENTIALS = True
    ALLOW_METHODS = ["GET", "OPTIONS"]
    ALLOW_HEADERS = ["*"]

    # Server settings
    HOST = _env("HOST", "0.0.0.0")
    PORT = _env_int("PORT", 8000)
    RELOAD = _env("RELOAD", "false").lower() in ("1", "true", "yes")
    LOG_LEVEL = _env("LOG_LEVEL", "INFO").upper()

    # Upstream
    GAMMA_API_BASE = _env("GAMMA_API_BASE", "https://gamma-api.polymarket.com")
    SITE_BASE = _env("SITE_BASE", "https://polymarket.com")
    REQUEST_TIMEOUT = _env_float("REQUEST_TIMEOUT", 15.0)

    # Cache TTLs (seconds)
    MARKET_CACHE_TTL = _env_float("MARKET_CACHE_TTL", 60.0)
    SEARCH_CACHE_TTL = _env_float("SEARCH_CACHE_TTL", 30.0)
    MARKET_DETAIL_CACHE_TTL = _env_float("MARKET_DETAIL_CACHE_TTL", 300.0)
    LEADERBOARD_CACHE_TTL = _env_float("LEADERBOARD_CACHE_TTL", 60.0)
    BUILD_ID_TTL = _env_float("BUILD_ID_TTL", 300.0)

    # Pacing and retries
    QUEUE_DELAY = _env_float("QUEUE_DELAY", 1.0)
    MAX_RETRY_ATTEMPTS = max(1, _env_int("MAX_RETRY_ATTEMPTS", 3))
    RETRY_BASE_DELAY = _env_float("RETRY_BASE_DELAY", 1.0)

    PAGE_SIZE = _env_int("PAGE_SIZE", 50)


@dataclass
class Services:
    client: UpstreamClient
    cache: TTLCache
    queue: SerialFetchQueue
    resolver: BuildIdResolver
    markets: MarketFeed
    leaderboard: LeaderboardFeed

    def close(self) -> None:
        self.client.close()


def build_services(config=Config) -> Services:
    client = UpstreamClient(timeout=config.REQUEST_TIMEOUT)
    cache = TTLCache(default_ttl=config.MARKET_CACHE_TTL)
    queue = SerialFetchQueue(delay=config.QUEUE_DELAY)
    resolver = BuildIdResolver(client, cache, site_base=config.SITE_BASE, ttl=config.BUILD_ID_TTL)
    markets = MarketFeed(
        client,
        cache,
        queue,
        api_base=config.GAMMA_API_BASE,
        market_ttl=config.MARKET_CACHE_TTL,
        search_ttl=config.SEARCH_CACHE_TTL,
        detail_ttl=config.MARKET_DETAIL_CACHE_TTL,
        max_attempts=config.MAX_RETRY_ATTEMPTS,
        retry_base_delay=config.RETRY_BASE_DELAY,
    )
    leaderboard = LeaderboardFeed(
        resolver,
        cache,
        queue,
        ttl=config.LEADERBOARD_CACHE_TTL,
        max_attempts=config.MAX_RETRY_ATTEMPTS,
        retry_base_delay=config.RETRY_BASE_DELAY,
    )
    return Services(client, cache, queue, resolver, markets, leaderboard)


def get_services() -> Services:
    """Get the process-wide services (cache, queue, feeds)"""
    return _get_cached_services()


@lru_cache(maxsize=1)
def _get_cached_services() -> Services:
    """Create a single set of services per process.

    The TTL cache and serial queue must be shared by every request, otherwise
    the pacing and caching guarantees do not hold.
    """
    return build_services()


def get_market_feed() -> MarketFeed:
    return get_services().markets


def get_leaderboard_feed() -> LeaderboardFeed:
    return get_services().leaderboard
