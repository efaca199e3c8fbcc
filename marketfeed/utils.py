"""Utility functions for the market feed."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


USER_AGENT = "marketfeed/1.0"


def build_http_session(user_agent: str = USER_AGENT) -> requests.Session:
    """Requests session with connection pooling.

    urllib3 only retries failed connects here. Throttling (429) and read
    timeouts are classified and retried by marketfeed.retry.
    """
    session = requests.Session()
    retry = Retry(
        total=2,
        connect=2,
        read=0,
        status=0,
        backoff_factor=0.2,
        allowed_methods=("GET",),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(pool_connections=10, pool_maxsize=10, max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})
    return session


def parse_float(value: Any, default: float = 0.0) -> float:
    """Parse upstream numbers, which arrive as numbers or numeric strings"""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_timestamp(value: Any, default: float) -> float:
    """ISO-8601 string to epoch seconds; ``default`` when missing or invalid"""
    if not value or not isinstance(value, str):
        return default
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return default
