"""
Error taxonomy for the market feed.

Every error raised by the fetch/cache/aggregation layer derives from FeedError,
so the API layer can map it to an HTTP status without knowing the details.
"""

from typing import Optional


class FeedError(Exception):
    """Base class for market feed errors"""

    status_code = 500
    retryable = False


class CacheMiss(FeedError, KeyError):
    """Key absent, expired or unreadable. Internal only."""

    def __init__(self, key):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"cache miss for {self.key!r}"


class FilterValidationError(FeedError, ValueError):
    """Malformed filter/sort input, rejected before any network call"""

    status_code = 400


class UpstreamUnavailable(FeedError):
    """Network failure or timeout talking to upstream"""

    status_code = 503
    retryable = True


class UpstreamHTTPError(UpstreamUnavailable):
    """Upstream answered with a non-2xx status"""

    def __init__(self, upstream_status: int, url: str, reason: str = ""):
        message = f"Upstream error {upstream_status} for {url}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.upstream_status = upstream_status
        self.url = url


class RateLimited(UpstreamHTTPError):
    """A single 429 Too Many Requests answer"""

    status_code = 429

    def __init__(self, url: str, retry_after: Optional[float] = None):
        super().__init__(429, url, "Too Many Requests")
        self.retry_after = retry_after


class RateLimitExhausted(FeedError):
    """All retry attempts consumed while upstream kept rate limiting"""

    status_code = 429
    retryable = True

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(
            f"Rate limit exceeded after {attempts} attempt(s): {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error

    @property
    def retry_after(self) -> Optional[float]:
        """Seconds upstream asked us to wait on its last 429, if it said"""
        return getattr(self.last_error, "retry_after", None)


class UpstreamFormatDrift(FeedError):
    """Upstream payload or markup no longer matches what we parse"""

    status_code = 502


class BuildIdNotFound(UpstreamFormatDrift):
    """The buildId token is missing from the scraped page"""

    def __init__(self, url: str):
        super().__init__(f"buildId pattern not found in {url}")
        self.url = url
