"""
Build-identifier resolver.

Some upstream data URLs embed a routing token ("buildId") that only appears in
the server-rendered HTML. The token is scraped from a known page, cached with
its own TTL, and combined into the data URL. The extraction strategy is
pluggable so the regex can be swapped without touching callers.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

from marketfeed.cache import TTLCache
from marketfeed.errors import BuildIdNotFound, UpstreamFormatDrift, UpstreamHTTPError
from marketfeed.upstream import Params, UpstreamClient

logger = logging.getLogger(__name__)

BUILD_ID_CACHE_KEY = "build-id"


@dataclass(frozen=True)
class BuildIdentifier:
    id: str
    resolved_at: float


class BuildIdExtractor:
    """Strategy for pulling the build identifier out of a page"""

    def extract(self, html: str) -> Optional[str]:
        raise NotImplementedError


class RegexBuildIdExtractor(BuildIdExtractor):
    PATTERN = re.compile(r'"buildId"\s*:\s*"([^"]+)"')

    def extract(self, html: str) -> Optional[str]:
        match = self.PATTERN.search(html or "")
        return match.group(1) if match else None


class BuildIdResolver:
    """Resolve, cache and apply the upstream build identifier.

    Usage:
        resolver = BuildIdResolver(client, cache, site_base="https://polymarket.com")
        payload = await resolver.fetch_data("leaderboard")

    A cached id is only used while younger than ``ttl``. Once stale it is
    re-resolved; if that fails the error propagates and the old id is not
    reused.
    """

    def __init__(
        self,
        client: UpstreamClient,
        cache: TTLCache,
        site_base: str,
        page_path: str = "/leaderboard",
        ttl: float = 300.0,
        extractor: Optional[BuildIdExtractor] = None,
    ):
        self._client = client
        self._cache = cache
        self.site_base = site_base.rstrip("/")
        self.page_url = f"{self.site_base}{page_path}"
        self.ttl = float(ttl)
        self._extractor = extractor or RegexBuildIdExtractor()
        self._lock = asyncio.Lock()

    def cached(self) -> Optional[BuildIdentifier]:
        return self._cache.get(BUILD_ID_CACHE_KEY)

    async def resolve(self, force: bool = False) -> str:
        if not force:
            current = self.cached()
            if current is not None:
                return current.id

        async with self._lock:
            # another caller may have resolved while we waited
            current = None if force else self.cached()
            if current is not None:
                return current.id

            html = await self._client.get_text(self.page_url)
            build_id = self._extractor.extract(html)
            if not build_id:
                logger.error("Upstream format drift: buildId missing from %s", self.page_url)
                raise BuildIdNotFound(self.page_url)

            self._cache.set(
                BUILD_ID_CACHE_KEY,
                BuildIdentifier(id=build_id, resolved_at=time.time()),
                ttl=self.ttl,
            )
            logger.info("Resolved buildId %s", build_id)
            return build_id

    def data_url(self, build_id: str, path: str) -> str:
        return f"{self.site_base}/_next/data/{build_id}/{path.strip('/')}.json"

    async def fetch_data(self, path: str, params: Params = None) -> Any:
        """Fetch a build-scoped JSON payload.

        A 404 usually means the id went stale upstream: re-resolve once and
        retry once. A second 404 means the page itself moved.
        """
        build_id = await self.resolve()
        try:
            return await self._client.get_json(self.data_url(build_id, path), params)
        except UpstreamHTTPError as exc:
            if exc.upstream_status != 404:
                raise
            logger.info("buildId %s rejected with 404, re-resolving", build_id)

        build_id = await self.resolve(force=True)
        try:
            return await self._client.get_json(self.data_url(build_id, path), params)
        except UpstreamHTTPError as exc:
            if exc.upstream_status != 404:
                raise
            logger.error("Upstream format drift: %s not found with fresh buildId", path)
            raise UpstreamFormatDrift(
                f"{path} not found upstream with fresh buildId {build_id}"
            ) from exc
