"""
HTTP access to the upstream market-data service.

requests is blocking, so calls run in starlette's threadpool. Every call has
a bounded timeout and every failure is mapped onto the feed error taxonomy.
"""

import logging
from typing import Any, Optional, Sequence, Tuple, Union

import requests
from starlette.concurrency import run_in_threadpool

from marketfeed.errors import (
    RateLimited,
    UpstreamFormatDrift,
    UpstreamHTTPError,
    UpstreamUnavailable,
)
from marketfeed.utils import build_http_session, parse_float

logger = logging.getLogger(__name__)

Params = Union[dict, Sequence[Tuple[str, Any]], None]


class UpstreamClient:
    """Thin async wrapper around a pooled requests.Session"""

    def __init__(self, timeout: float = 15.0, session: Optional[requests.Session] = None):
        self.timeout = float(timeout)
        self._session = session or build_http_session()

    async def get_json(self, url: str, params: Params = None) -> Any:
        response = await run_in_threadpool(self._get, url, params, "application/json")
        try:
            return response.json()
        except ValueError as exc:
            logger.error("Upstream format drift: non-JSON body from %s", url)
            raise UpstreamFormatDrift(f"Expected JSON from {url}") from exc

    async def get_text(self, url: str, params: Params = None) -> str:
        response = await run_in_threadpool(self._get, url, params, "text/html")
        return response.text

    def close(self) -> None:
        self._session.close()

    def _get(self, url: str, params: Params, accept: str) -> requests.Response:
        logger.info("GET %s params=%s", url, params)
        try:
            response = self._session.get(
                url,
                params=params,
                headers={"Accept": accept},
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            logger.warning("Timed out after %.1fs: %s", self.timeout, url)
            raise UpstreamUnavailable(f"Timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            logger.warning("Request to %s failed: %s", url, exc)
            raise UpstreamUnavailable(f"Failed to reach upstream: {type(exc).__name__}") from exc

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimited(url, parse_float(retry_after, None) if retry_after else None)
        if response.status_code >= 400:
            raise UpstreamHTTPError(response.status_code, url, response.reason or "")
        return response
