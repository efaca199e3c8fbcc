"""Bounded exponential-backoff retry for rate-limited upstream calls."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Optional

from marketfeed.errors import RateLimitExhausted, UpstreamUnavailable

logger = logging.getLogger(__name__)

_RATE_LIMIT_PATTERN = re.compile(r"\b429\b|too many requests|rate[ -]?limit", re.IGNORECASE)


def _status_of(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "upstream_status", None)
    if status is None:
        # requests.HTTPError and friends
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_rate_limited(exc: BaseException) -> bool:
    """True if ``exc`` signals throttling, by status code or by message."""
    if isinstance(exc, RateLimitExhausted):
        return False
    status = _status_of(exc)
    if status == 429:
        return True
    if isinstance(exc, UpstreamUnavailable):
        # already classified; only a 429 status counts
        return False
    return bool(_RATE_LIMIT_PATTERN.search(str(exc)))


async def fetch_with_retry(
    operation: Callable[[], Awaitable[Any]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Call ``operation`` until it succeeds, retrying only on rate limits.

    After the n-th failed attempt (0-indexed) we wait ``base_delay * 2**n``
    before trying again. Any other error propagates immediately. When every
    attempt was rate limited, RateLimitExhausted is raised.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Optional[BaseException] = None
    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as exc:
            if not is_rate_limited(exc):
                raise
            last_error = exc
            if attempt + 1 >= max_attempts:
                break
            delay = base_delay * (2 ** attempt)
            logger.warning(
                "Rate limited, retrying in %.2fs (attempt %d/%d)",
                delay, attempt + 1, max_attempts,
            )
            await sleep(delay)

    logger.error("Giving up after %d rate-limited attempt(s)", max_attempts)
    raise RateLimitExhausted(max_attempts, last_error) from last_error
