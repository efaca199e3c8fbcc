"""
Consumer-facing market listing API.

fetch_page/refresh compose the pieces in this order:
cache lookup -> serial queue -> retry -> upstream call -> cache store.
One queue task covers a fetch together with its retries, so the pacing
between upstream requests also holds across retries.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from marketfeed.cache import TTLCache
from marketfeed.errors import FilterValidationError, UpstreamFormatDrift
from marketfeed.fetch_queue import SerialFetchQueue
from marketfeed.filters import FilterState, RequestDescriptor, build_request
from marketfeed.retry import fetch_with_retry
from marketfeed.upstream import UpstreamClient
from marketfeed.utils import parse_float, parse_int, parse_timestamp

logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE = "/placeholder.svg"
DEFAULT_OUTCOME_PRICES = [0.5, 0.5]


@dataclass
class MarketPage:
    items: List[Dict[str, Any]]
    has_more: bool
    offset: int
    limit: int
    sort: str
    total: Optional[int] = None
    cached: bool = False
    received: Optional[int] = None

    @property
    def next_offset(self) -> Optional[int]:
        return self.offset + self.limit if self.has_more else None


def normalize_market(raw: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Normalize one upstream event/market; None when it has no identity"""
    market_id = raw.get("id") or raw.get("conditionId")
    if market_id is None or market_id == "":
        return None

    market = dict(raw)
    market.update(
        id=str(market_id),
        question=raw.get("question") or raw.get("title") or raw.get("description"),
        slug=raw.get("slug") or str(market_id),
        image=raw.get("image") or raw.get("imageUrl") or PLACEHOLDER_IMAGE,
        liquidity=parse_float(raw.get("liquidity")),
        volume=parse_float(raw.get("volume")),
        volume24hr=parse_float(raw.get("volume24hr") or raw.get("volume_24hr")),
        startDate=raw.get("startDate") or raw.get("createdAt"),
        endDate=raw.get("endDate"),
        outcomePrices=raw.get("outcomePrices") or raw.get("outcome_prices") or DEFAULT_OUTCOME_PRICES,
        tags=raw.get("tags") or [],
        category=raw.get("category"),
    )
    return market


def sort_markets(markets: List[Dict[str, Any]], sort: str) -> List[Dict[str, Any]]:
    if sort == "volume":
        return sorted(markets, key=lambda m: m["volume"], reverse=True)
    if sort == "volume24hr":
        return sorted(markets, key=lambda m: m["volume24hr"], reverse=True)
    if sort == "newest":
        return sorted(
            markets,
            key=lambda m: parse_timestamp(m.get("createdAt") or m.get("startDate"), 0.0),
            reverse=True,
        )
    if sort == "ending_soon":
        return sorted(markets, key=lambda m: parse_timestamp(m.get("endDate"), float("inf")))
    return sorted(markets, key=lambda m: m["liquidity"], reverse=True)


def _extract_rows(payload: Any) -> Tuple[List[Any], Optional[bool], Optional[int]]:
    """Pull (rows, has_more, total) out of a listing or search payload"""
    if isinstance(payload, list):
        return payload, None, None
    if not isinstance(payload, dict):
        raise UpstreamFormatDrift(f"Unexpected listing payload type {type(payload).__name__}")

    rows = None
    for key in ("data", "events", "markets"):
        if isinstance(payload.get(key), list):
            rows = payload[key]
            break
    if rows is None:
        raise UpstreamFormatDrift("Listing payload has no data/events/markets list")

    pagination = payload.get("pagination") if isinstance(payload.get("pagination"), dict) else {}
    has_more = payload.get("hasMore", pagination.get("hasMore"))
    total = parse_int(payload.get("total", pagination.get("totalResults", pagination.get("total"))))
    return rows, (bool(has_more) if has_more is not None else None), total


class MarketFeed:
    """Cached, paced, rate-limit aware access to the upstream market listing.

    Both fetch_page and refresh are safe to call concurrently. Failures after
    the retry bound surface as FeedError subclasses, never as empty pages.
    """

    def __init__(
        self,
        client: UpstreamClient,
        cache: TTLCache,
        queue: SerialFetchQueue,
        api_base: str = "https://gamma-api.polymarket.com",
        market_ttl: float = 60.0,
        search_ttl: float = 30.0,
        detail_ttl: float = 300.0,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
    ):
        self._client = client
        self._cache = cache
        self._queue = queue
        self.api_base = api_base.rstrip("/")
        self.market_ttl = market_ttl
        self.search_ttl = search_ttl
        self.detail_ttl = detail_ttl
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay

    async def fetch_page(self, filters: FilterState, offset: int = 0,
                         overrides: Optional[Mapping[str, Any]] = None) -> MarketPage:
        descriptor = build_request(filters, overrides, offset)
        return await self._load(descriptor, force=False)

    async def refresh(self, filters: FilterState,
                      overrides: Optional[Mapping[str, Any]] = None) -> MarketPage:
        """First page, bypassing and then overwriting the cache"""
        descriptor = build_request(filters, overrides, 0)
        return await self._load(descriptor, force=True)

    async def fetch_market(self, slug: str) -> Tuple[Any, bool]:
        slug = (slug or "").strip()
        if not slug:
            raise FilterValidationError("slug is required")

        key = f"market:{slug}"
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Returning cached market for %s", slug)
            return cached, True

        url = f"{self.api_base}/events"
        payload = await self._queued(lambda: self._client.get_json(url, {"slug": slug}))
        self._cache.set(key, payload, ttl=self.detail_ttl)
        return payload, False

    async def _queued(self, call):
        return await self._queue.enqueue(
            lambda: fetch_with_retry(call, self.max_attempts, self.retry_base_delay)
        )

    async def _load(self, descriptor: RequestDescriptor, force: bool) -> MarketPage:
        key = descriptor.cache_key()
        if not force:
            payload = self._cache.get(key)
            if payload is not None:
                return self._to_page(payload, descriptor, cached=True)

        path, params = descriptor.upstream_request()
        url = f"{self.api_base}{path}"
        payload = await self._queued(lambda: self._client.get_json(url, params))

        page = self._to_page(payload, descriptor, cached=False)
        ttl = self.search_ttl if descriptor.is_search else self.market_ttl
        self._cache.set(key, payload, ttl=ttl)
        logger.info("Fetched %d %s market(s) at offset %d",
                    len(page.items), descriptor.mode, descriptor.offset)
        return page

    @staticmethod
    def _to_page(payload: Any, descriptor: RequestDescriptor, cached: bool) -> MarketPage:
        try:
            rows, has_more, total = _extract_rows(payload)
        except UpstreamFormatDrift as exc:
            logger.error("Upstream format drift: %s", exc)
            raise

        items = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            market = normalize_market(row)
            if market is None:
                logger.debug("Skipping upstream row without id")
                continue
            items.append(market)

        if has_more is None:
            has_more = len(rows) >= descriptor.limit

        return MarketPage(
            items=sort_markets(items, descriptor.sort),
            has_more=has_more,
            offset=descriptor.offset,
            limit=descriptor.limit,
            sort=descriptor.sort,
            total=total if total is not None else len(items),
            cached=cached,
            received=len(rows),
        )
