"""Tests for aggregator.py — dedup, cursor, short pages, load guard, errors."""

import asyncio

import pytest

from marketfeed.aggregator import IncrementalListAggregator, ListState
from marketfeed.errors import FilterValidationError, RateLimitExhausted, UpstreamUnavailable
from marketfeed.filters import FilterState
from marketfeed.markets import MarketFeed, MarketPage

from conftest import GAMMA, make_events

LISTING = f"{GAMMA}/events/pagination"


class FakeFeed:
    """Scripted MarketFeed: each call pops the next page (or error)."""

    def __init__(self, *pages):
        self.pages = list(pages)
        self.requests = []
        self.gate = None

    def _page(self, filters, offset, items_or_error, has_more=True):
        if isinstance(items_or_error, Exception):
            raise items_or_error
        return MarketPage(items=items_or_error, has_more=has_more, offset=offset,
                          limit=filters.limit, sort=filters.sort, received=len(items_or_error))

    async def fetch_page(self, filters, offset=0, overrides=None):
        self.requests.append(("page", filters, offset))
        if self.gate is not None:
            await self.gate.wait()
        return self._page(filters, offset, *self.pages.pop(0))

    async def refresh(self, filters, overrides=None):
        self.requests.append(("refresh", filters, 0))
        if self.gate is not None:
            await self.gate.wait()
        return self._page(filters, 0, *self.pages.pop(0))


def ids(aggregator):
    return [item["id"] for item in aggregator.items]


@pytest.mark.asyncio
async def test_short_page_ends_list_despite_upstream_flag():
    feed = FakeFeed((make_events(0, 50), True), (make_events(50, 30), True))
    agg = IncrementalListAggregator(feed, FilterState(limit=50))

    assert await agg.change_filters()
    assert agg.cursor.offset == 50
    assert agg.has_more is True

    assert await agg.load_more()
    assert feed.requests[1][2] == 50
    assert agg.cursor.offset == 80
    assert agg.has_more is False
    assert await agg.load_more() is False
    assert len(feed.requests) == 2


@pytest.mark.asyncio
async def test_upstream_end_flag_respected_on_full_page():
    feed = FakeFeed((make_events(0, 10), False))
    agg = IncrementalListAggregator(feed, FilterState(limit=10))
    await agg.change_filters()
    assert agg.has_more is False


@pytest.mark.asyncio
async def test_overlapping_pages_are_deduplicated():
    feed = FakeFeed(
        (make_events(0, 10), True),
        (make_events(5, 10), True),    # 5 already held
        (make_events(0, 10), True),    # all already held
    )
    agg = IncrementalListAggregator(feed, FilterState(limit=10))

    await agg.change_filters()
    await agg.load_more()
    assert agg.cursor.offset == 15
    assert feed.requests[1][2] == 10

    await agg.load_more()
    assert feed.requests[2][2] == 15
    assert agg.cursor.offset == 15
    assert len(ids(agg)) == len(set(ids(agg))) == 15


@pytest.mark.asyncio
async def test_same_tick_load_more_makes_one_request():
    feed = FakeFeed((make_events(0, 10), True), (make_events(10, 10), True))
    agg = IncrementalListAggregator(feed, FilterState(limit=10))
    await agg.change_filters()

    feed.gate = asyncio.Event()
    first = asyncio.ensure_future(agg.load_more())
    second = asyncio.ensure_future(agg.load_more())
    await asyncio.sleep(0)
    assert agg.state is ListState.LOADING
    feed.gate.set()

    assert await asyncio.gather(first, second) == [True, False]
    assert len(feed.requests) == 2
    assert agg.cursor.offset == 20


@pytest.mark.asyncio
async def test_sync_guard_set_before_first_await():
    feed = FakeFeed((make_events(0, 10), True), (make_events(10, 10), True))
    agg = IncrementalListAggregator(feed, FilterState(limit=10))
    await agg.change_filters()

    feed.gate = asyncio.Event()
    coro = agg.load_more()
    pending = asyncio.ensure_future(coro)
    await asyncio.sleep(0)
    assert agg.is_loading
    assert await agg.load_more() is False
    feed.gate.set()
    await pending


@pytest.mark.asyncio
async def test_refresh_twice_is_idempotent():
    page = make_events(0, 10)
    feed = FakeFeed((page, True), (make_events(10, 10), True), (page, True), (page, True))
    agg = IncrementalListAggregator(feed, FilterState(limit=10))

    await agg.refresh()
    await agg.load_more()
    await agg.refresh()
    first = ids(agg)
    await agg.refresh()

    assert ids(agg) == first
    assert agg.cursor.offset == 10
    assert [r[0] for r in feed.requests] == ["refresh", "page", "refresh", "refresh"]


@pytest.mark.asyncio
async def test_failure_keeps_items_and_has_more():
    feed = FakeFeed(
        (make_events(0, 10), True),
        (RateLimitExhausted(3),),
        (make_events(10, 10), True),
    )
    agg = IncrementalListAggregator(feed, FilterState(limit=10))
    await agg.change_filters()

    assert await agg.load_more() is False
    assert agg.state is ListState.ERROR
    assert isinstance(agg.error, RateLimitExhausted)
    assert len(agg.items) == 10
    assert agg.has_more is True

    assert await agg.retry()
    assert agg.state is ListState.IDLE
    assert agg.error is None
    assert feed.requests[-1][2] == 10
    assert len(agg.items) == 20


@pytest.mark.asyncio
async def test_failed_filter_change_keeps_previous_items():
    feed = FakeFeed(
        (make_events(0, 10), True),
        (UpstreamUnavailable("timeout"),),
        (make_events(100, 3, prefix="c"), True),
    )
    agg = IncrementalListAggregator(feed, FilterState(limit=10))
    await agg.change_filters()

    assert await agg.change_filters(category="crypto") is False
    assert len(agg.items) == 10
    assert agg.state is ListState.ERROR

    assert await agg.retry()
    assert ids(agg) == ["c100", "c101", "c102"]
    assert feed.requests[-1][2] == 0
    assert agg.has_more is False


@pytest.mark.asyncio
async def test_filter_change_resets_cursor():
    feed = FakeFeed((make_events(0, 10), True), (make_events(0, 10), True))
    agg = IncrementalListAggregator(feed, FilterState(limit=10))
    await agg.change_filters()

    # same ids under a new filter must be admitted again
    await agg.change_filters(tag="trending")
    assert agg.cursor.offset == 10
    assert len(agg.items) == 10
    assert feed.requests[-1][1].tag == "trending"


@pytest.mark.asyncio
async def test_filter_change_supersedes_in_flight_load():
    feed = FakeFeed((make_events(0, 10), True), (make_events(0, 5, prefix="old"), True),
                    (make_events(0, 5, prefix="new"), True))
    agg = IncrementalListAggregator(feed, FilterState(limit=5))
    await agg.change_filters()

    feed.gate = asyncio.Event()
    stale = asyncio.ensure_future(agg.load_more())
    await asyncio.sleep(0)
    fresh = asyncio.ensure_future(agg.change_filters(search="fed"))
    await asyncio.sleep(0)
    feed.gate.set()

    assert await stale is False
    assert await fresh is True
    assert ids(agg) == [f"new{i}" for i in range(5)]
    assert agg.state is ListState.IDLE
    assert not agg.is_loading


@pytest.mark.asyncio
async def test_invalid_filter_change_rejected_without_request():
    feed = FakeFeed()
    agg = IncrementalListAggregator(feed)
    with pytest.raises(FilterValidationError):
        await agg.change_filters(sort="random")
    assert feed.requests == []
    assert agg.state is ListState.IDLE


@pytest.mark.asyncio
async def test_with_real_feed(feed, upstream):
    upstream.on_json(
        LISTING,
        {"data": make_events(0, 4), "pagination": {"hasMore": True}},
        {"data": make_events(2, 4), "pagination": {"hasMore": True}},
    )
    agg = IncrementalListAggregator(feed, FilterState(limit=4))
    await agg.change_filters()
    await agg.load_more()

    assert ids(agg) == [f"m{i}" for i in range(6)]
    assert agg.cursor.offset == 6
    assert upstream.calls[1][2][1] == ("offset", 4)


@pytest.mark.asyncio
async def test_unexpected_error_leaves_error_state():
    feed = FakeFeed((make_events(0, 10), True), (RuntimeError("boom"),), (make_events(10, 10), True))
    agg = IncrementalListAggregator(feed, FilterState(limit=10))
    await agg.change_filters()

    with pytest.raises(RuntimeError):
        await agg.load_more()

    assert agg.state is ListState.ERROR
    assert isinstance(agg.error, RuntimeError)
    assert agg.is_loading is False
    assert len(agg.items) == 10

    assert await agg.load_more()
    assert agg.state is ListState.IDLE
    assert len(agg.items) == 20


class PagedSearchUpstream:
    """Search endpoint that serves rows by page number, not offset."""

    def __init__(self, pages):
        self.pages = pages
        self.requested = []

    async def get_json(self, url, params=None):
        page = dict(params)["page"]
        self.requested.append(page)
        return {"events": self.pages.get(page, []), "hasMore": page < len(self.pages)}


@pytest.mark.asyncio
async def test_search_with_duplicate_row_advances_to_next_page(cache, queue):
    upstream = PagedSearchUpstream({
        1: make_events(0, 9, "s") + make_events(0, 1, "s"),    # s0 twice
        2: make_events(10, 10, "s"),
        3: make_events(20, 10, "s"),
    })
    feed = MarketFeed(upstream, cache, queue, api_base=GAMMA, retry_base_delay=0)
    agg = IncrementalListAggregator(feed, FilterState(limit=10))

    await agg.change_filters(search="fed")
    assert agg.cursor.offset == 9

    for _ in range(5):
        await agg.load_more()

    assert upstream.requested == [1, 2, 3]
    assert len(agg.items) == 29
    assert len(ids(agg)) == len(set(ids(agg)))
    assert agg.has_more is False
