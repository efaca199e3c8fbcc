"""
Filter/sort recombination.

Turns the caller's filter state plus call-time overrides into a request
descriptor carrying exactly one upstream discriminator:

- a non-empty free-text search wins and suppresses category and tag
- category and tag are mutually exclusive; setting one clears the other
- overrides win over ambient state, so callers changing several facets at
  once pass them all in the same call
"""

from dataclasses import asdict, dataclass, replace
from typing import Any, List, Mapping, Optional, Tuple

from marketfeed.errors import FilterValidationError

# Category name -> upstream tag slug
CATEGORY_MAPPINGS = {
    "politics": "politics",
    "crypto": "crypto",
    "tech": "tech",
    "pop-culture": "pop-culture",
    "geopolitics": "geopolitics",
    "sports": "sports",
    "finance": "finance",
    "earnings": "earnings",
    "economy": "economy",
    "elections": "elections",
    "world": "world",
}

TAG_FILTERS = ("trending", "new")

SORT_OPTIONS = ("volume", "volume24hr", "liquidity", "newest", "ending_soon")
SORT_ALIASES = {"volume_24hr": "volume24hr"}

# Upstream "order" parameter per sort; unsupported sorts order by 24h volume
ORDER_PARAMS = {
    "volume24hr": "volume24hr",
    "liquidity": "liquidity",
    "newest": "startDate",
}

# Tag ids hidden from the "new" listing
NEW_EXCLUDED_TAG_IDS = (100639, 102169)

MAX_LIMIT = 500
MAX_SEARCH_LENGTH = 200


@dataclass(frozen=True)
class FilterState:
    search: str = ""
    category: str = ""
    tag: str = ""
    sort: str = "volume24hr"
    limit: int = 50


@dataclass(frozen=True)
class RequestDescriptor:
    mode: str  # "search" | "category" | "tag" | "default"
    value: str
    sort: str
    limit: int
    offset: int

    def cache_key(self) -> str:
        return f"markets:{self.mode}:{self.value}:{self.sort}:{self.limit}:{self.offset}"

    @property
    def is_search(self) -> bool:
        return self.mode == "search"

    def upstream_request(self) -> Tuple[str, List[Tuple[str, Any]]]:
        """Path and query parameters for the upstream listing endpoints"""
        if self.mode == "search":
            # a partly consumed page counts as read
            page = -(-self.offset // self.limit) + 1
            return "/public-search", [
                ("q", self.value),
                ("page", page),
                ("limit_per_type", self.limit),
                ("type", "events"),
                ("events_status", "active"),
                ("sort", "volume_24hr" if self.sort == "volume24hr" else self.sort),
            ]

        params: List[Tuple[str, Any]] = [
            ("limit", self.limit),
            ("offset", self.offset),
            ("active", "true"),
            ("archived", "false"),
            ("closed", "false"),
            ("ascending", "false"),
        ]
        if self.mode == "tag" and self.value == "new":
            params.append(("order", "startDate"))
            params.extend(("exclude_tag_id", tag_id) for tag_id in NEW_EXCLUDED_TAG_IDS)
        elif self.mode == "tag":
            params.append(("order", "volume24hr"))
        else:
            params.append(("order", ORDER_PARAMS.get(self.sort, "volume24hr")))
            if self.mode == "category":
                params.append(("tag_slug", CATEGORY_MAPPINGS[self.value]))
        return "/events/pagination", params


def _clean(value: Any, field_name: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise FilterValidationError(f"{field_name} must be a string")
    return value.strip()


def resolve_filters(current: FilterState,
                    overrides: Optional[Mapping[str, Any]] = None) -> FilterState:
    """Apply ``overrides`` to ``current`` and enforce the facet rules."""
    overrides = dict(overrides or {})
    unknown = set(overrides) - set(asdict(current))
    if unknown:
        raise FilterValidationError(f"Unknown filter field(s): {', '.join(sorted(unknown))}")

    state = replace(current, **overrides)

    search = _clean(state.search, "search")
    category = _clean(state.category, "category").lower()
    tag = _clean(state.tag, "tag").lower()
    sort = _clean(state.sort, "sort").lower() or "volume24hr"
    sort = SORT_ALIASES.get(sort, sort)

    category_set = bool(_clean(overrides.get("category"), "category"))
    tag_set = bool(_clean(overrides.get("tag"), "tag"))
    if category_set and tag_set:
        raise FilterValidationError("category and tag filters are mutually exclusive")
    if category_set:
        tag = ""
    elif tag_set:
        category = ""
    elif category and tag:
        raise FilterValidationError("category and tag filters are mutually exclusive")

    if len(search) > MAX_SEARCH_LENGTH:
        raise FilterValidationError(f"search must be at most {MAX_SEARCH_LENGTH} characters")
    if category and category not in CATEGORY_MAPPINGS:
        raise FilterValidationError(f"Unknown category '{category}'")
    if tag and tag not in TAG_FILTERS:
        raise FilterValidationError(f"Unknown filter '{tag}', must be one of {', '.join(TAG_FILTERS)}")
    if sort not in SORT_OPTIONS:
        raise FilterValidationError(f"Unknown sort '{sort}', must be one of {', '.join(SORT_OPTIONS)}")

    limit = state.limit
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIMIT:
        raise FilterValidationError(f"limit must be an integer between 1 and {MAX_LIMIT}")

    return FilterState(search=search, category=category, tag=tag, sort=sort, limit=limit)


def build_request(current: FilterState,
                  overrides: Optional[Mapping[str, Any]] = None,
                  offset: int = 0) -> RequestDescriptor:
    state = resolve_filters(current, overrides)

    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise FilterValidationError("offset must be a non-negative integer")

    if state.search:
        mode, value = "search", state.search
    elif state.category:
        mode, value = "category", state.category
    elif state.tag:
        mode, value = "tag", state.tag
    else:
        mode, value = "default", ""

    return RequestDescriptor(mode=mode, value=value, sort=state.sort,
                             limit=state.limit, offset=offset)
