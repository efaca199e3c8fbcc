"""
Incremental list aggregator.

Merges paginated market pages into one growing, deduplicated list for a
single list view. Scroll, resize and touch handlers all collapse into
load_more(), which is admitted at most once at a time.

State machine: IDLE -> LOADING -> IDLE on success,
IDLE -> LOADING -> ERROR on failure; retry() leaves ERROR.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set

from marketfeed.errors import FeedError
from marketfeed.filters import FilterState, resolve_filters
from marketfeed.markets import MarketFeed, MarketPage

logger = logging.getLogger(__name__)


class ListState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"


@dataclass
class AggregatorCursor:
    offset: int = 0
    has_more: bool = True
    held_ids: Set[str] = field(default_factory=set)


class IncrementalListAggregator:
    """Owns the items, cursor and load state of one list view.

    Never share an instance between differently filtered views: the held id
    set would make them suppress each other's items.
    """

    def __init__(self, feed: MarketFeed, filters: Optional[FilterState] = None):
        self._feed = feed
        self.filters = resolve_filters(filters or FilterState())
        self.items: List[Dict[str, Any]] = []
        self.cursor = AggregatorCursor()
        self.state = ListState.IDLE
        self.error: Optional[Exception] = None
        self._loading = False
        self._generation = 0
        self._failed_reset = False
        self._failed_force = False

    @property
    def has_more(self) -> bool:
        return self.cursor.has_more

    @property
    def is_loading(self) -> bool:
        return self._loading

    async def change_filters(self, **overrides: Any) -> bool:
        """Apply a filter/sort/search change and load its first page.

        All facets changed together must be passed in this one call.
        Raises FilterValidationError before any network call.
        """
        self.filters = resolve_filters(self.filters, overrides)
        return await self._load(reset=True, force=False)

    async def refresh(self) -> bool:
        return await self._load(reset=True, force=True)

    async def load_more(self) -> bool:
        """Load the next page; a no-op while loading or when exhausted"""
        if self._loading or not self.cursor.has_more:
            return False
        if self.state is ListState.ERROR:
            return await self.retry()
        return await self._load(reset=False, force=False)

    async def retry(self) -> bool:
        if self.state is not ListState.ERROR:
            return False
        return await self._load(reset=self._failed_reset, force=self._failed_force)

    async def _load(self, reset: bool, force: bool) -> bool:
        # check-and-set before the first await
        if self._loading and not reset:
            return False
        self._loading = True
        self._generation += 1
        generation = self._generation
        self.state = ListState.LOADING

        offset = 0 if reset else self.cursor.offset
        try:
            if force:
                page = await self._feed.refresh(self.filters)
            else:
                page = await self._feed.fetch_page(self.filters, offset)
        except FeedError as exc:
            if generation != self._generation:
                return False
            logger.warning("Loading markets at offset %d failed: %s", offset, exc)
            self.error = exc
            self.state = ListState.ERROR
            self._failed_reset = reset
            self._failed_force = force
            return False
        except Exception as exc:
            if generation == self._generation:
                logger.exception("Unexpected error loading markets at offset %d", offset)
                self.error = exc
                self.state = ListState.ERROR
                self._failed_reset = reset
                self._failed_force = force
            raise
        finally:
            if generation == self._generation:
                self._loading = False

        if generation != self._generation:
            # superseded by a newer filter change or refresh
            return False

        if reset:
            self.items = []
            self.cursor = AggregatorCursor()
        self._admit(page)
        self.error = None
        self.state = ListState.IDLE
        return True

    def _admit(self, page: MarketPage) -> None:
        cursor = self.cursor
        fresh = []
        for item in page.items:
            item_id = item.get("id")
            if item_id is None:
                continue
            item_id = str(item_id)
            if item_id in cursor.held_ids:
                continue
            cursor.held_ids.add(item_id)
            fresh.append(item)

        self.items.extend(fresh)
        cursor.offset += len(fresh)

        received = page.received if page.received is not None else len(page.items)
        # a short page ends the list even if upstream claims otherwise
        cursor.has_more = bool(page.has_more) and received >= self.filters.limit
        logger.debug(
            "Admitted %d of %d item(s), offset=%d has_more=%s",
            len(fresh), len(page.items), cursor.offset, cursor.has_more,
        )

    def snapshot(self) -> Mapping[str, Any]:
        return {
            "items": list(self.items),
            "hasMore": self.cursor.has_more,
            "offset": self.cursor.offset,
            "state": self.state.value,
            "error": str(self.error) if self.error else None,
        }
