"""
Leaderboard rows by (metric, time window).

The payload lives behind a build-scoped data URL, so every fetch goes through
the BuildIdResolver. Resolution and payload fetch run inside a single queue
task: the resolver never enqueues on its own.
"""

import logging
from typing import Any, Dict, Iterator, List

from marketfeed.build_id import BuildIdResolver
from marketfeed.cache import TTLCache
from marketfeed.errors import FilterValidationError, UpstreamFormatDrift
from marketfeed.fetch_queue import SerialFetchQueue
from marketfeed.retry import fetch_with_retry
from marketfeed.utils import parse_float, parse_int

logger = logging.getLogger(__name__)

# Names the upstream may use for each metric/window inside a query key
METRIC_ALIASES = {
    "volume": ("volume", "vol"),
    "profit": ("profit", "pnl"),
}
WINDOW_ALIASES = {
    "day": ("day", "1d"),
    "week": ("week", "7d"),
    "month": ("month", "30d"),
    "all": ("all",),
}
# Row field holding the metric amount
METRIC_FIELDS = {
    "volume": ("vol", "volume", "amount"),
    "profit": ("pnl", "profit", "amount"),
}

DEFAULT_WINDOW = "week"


def validate_metric(metric: str) -> str:
    metric = (metric or "").strip().lower()
    if metric not in METRIC_ALIASES:
        raise FilterValidationError(
            f"Invalid metric '{metric}', must be one of {', '.join(METRIC_ALIASES)}"
        )
    return metric


def validate_window(window: str) -> str:
    window = (window or DEFAULT_WINDOW).strip().lower()
    if window not in WINDOW_ALIASES:
        raise FilterValidationError(
            f"Invalid period '{window}', must be one of {', '.join(WINDOW_ALIASES)}"
        )
    return window


def _flatten(value: Any) -> Iterator[str]:
    if isinstance(value, (list, tuple)):
        for item in value:
            yield from _flatten(item)
    elif isinstance(value, dict):
        for item in value.values():
            yield from _flatten(item)
    elif value is not None:
        yield str(value).lower()


def _iter_queries(node: Any) -> Iterator[Dict[str, Any]]:
    """Every dict carrying a queryKey, anywhere in the payload"""
    if isinstance(node, dict):
        if "queryKey" in node:
            yield node
        for value in node.values():
            yield from _iter_queries(value)
    elif isinstance(node, list):
        for value in node:
            yield from _iter_queries(value)


def extract_rows(payload: Any, metric: str, window: str) -> List[Dict[str, Any]]:
    """Rows of the dehydrated query keyed by both ``metric`` and ``window``"""
    metric_names = set(METRIC_ALIASES[metric])
    window_names = set(WINDOW_ALIASES[window])

    for query in _iter_queries(payload):
        key_parts = set(_flatten(query.get("queryKey")))
        if not (key_parts & metric_names and key_parts & window_names):
            continue
        state = query.get("state") or {}
        data = state.get("data") if isinstance(state, dict) else None
        if isinstance(data, list):
            return [row for row in data if isinstance(row, dict)]

    logger.error("Upstream format drift: no %s/%s leaderboard query in payload", metric, window)
    raise UpstreamFormatDrift(f"No leaderboard rows for metric={metric} window={window}")


def transform_row(row: Dict[str, Any], metric: str, index: int) -> Dict[str, Any]:
    wallet = row.get("proxyWallet") or row.get("walletAddress") or row.get("address") or ""
    amount = 0.0
    for name in METRIC_FIELDS[metric]:
        if row.get(name) is not None:
            amount = parse_float(row.get(name))
            break

    return {
        "id": f"{metric}-{wallet}",
        "rank": parse_int(row.get("rank")) or index + 1,
        "username": row.get("userName") or row.get("name") or "Anonymous",
        "profileImage": row.get("profileImage") or "",
        "walletAddress": wallet,
        metric: amount,
        "change": 0,
    }


class LeaderboardFeed:
    def __init__(
        self,
        resolver: BuildIdResolver,
        cache: TTLCache,
        queue: SerialFetchQueue,
        ttl: float = 60.0,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        page_path: str = "leaderboard",
    ):
        self._resolver = resolver
        self._cache = cache
        self._queue = queue
        self.ttl = ttl
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.page_path = page_path

    async def fetch(self, metric: str, window: str = DEFAULT_WINDOW) -> List[Dict[str, Any]]:
        metric = validate_metric(metric)
        window = validate_window(window)

        key = ("leaderboard", metric, window)
        rows = self._cache.get(key)
        if rows is not None:
            return rows

        payload = self._cached_payload()
        if payload is None:
            payload = await self._queue.enqueue(self._load_payload)
        rows = [transform_row(row, metric, i) for i, row in enumerate(extract_rows(payload, metric, window))]
        self._cache.set(key, rows, ttl=self.ttl)
        logger.info("Fetched %d %s leaderboard row(s) for %s", len(rows), metric, window)
        return rows

    def _payload_key(self, build_id: str) -> tuple:
        return ("leaderboard-payload", self.page_path, build_id)

    def _cached_payload(self) -> Any:
        build = self._resolver.cached()
        if build is None:
            return None
        return self._cache.get(self._payload_key(build.id))

    async def _load_payload(self) -> Any:
        # one payload carries every metric and window
        payload = self._cached_payload()
        if payload is not None:
            return payload

        payload = await fetch_with_retry(
            lambda: self._resolver.fetch_data(self.page_path),
            self.max_attempts,
            self.retry_base_delay,
        )
        build = self._resolver.cached()
        if build is not None:
            self._cache.set(self._payload_key(build.id), payload, ttl=self.ttl)
        return payload
