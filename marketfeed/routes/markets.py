"""
Market listing routes for the market feed application
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from marketfeed.config import Config, get_market_feed
from marketfeed.errors import FeedError
from marketfeed.filters import FilterState
from marketfeed.markets import MarketFeed
from marketfeed.models import MarketDetailResponse, MarketModel, MarketPageResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/markets", response_model=MarketPageResponse, tags=["Markets"])
async def list_markets(
    q: str = Query("", description="Free-text search; overrides category and filter"),
    category: str = Query("", description="Category, e.g. politics or crypto"),
    tag: str = Query("", alias="filter", description="Listing filter (trending or new)"),
    sort: str = Query("volume24hr", alias="sortBy", description="Sort order"),
    limit: int = Query(Config.PAGE_SIZE, ge=1, le=500, description="Items per page"),
    offset: int = Query(0, ge=0, description="Items to skip"),
    refresh: bool = Query(False, description="Bypass the cache"),
    feed: MarketFeed = Depends(get_market_feed),
):
    """
    List markets, one page at a time

    - **q**: search text; when set, category and filter are ignored
    - **category** / **filter**: mutually exclusive
    """
    try:
        filters = FilterState(search=q, category=category, tag=tag, sort=sort, limit=limit)
        if refresh and offset == 0:
            page = await feed.refresh(filters)
        else:
            page = await feed.fetch_page(filters, offset)

        return MarketPageResponse(
            data=[MarketModel(**item) for item in page.items],
            hasMore=page.has_more,
            offset=page.offset,
            limit=page.limit,
            total=page.total,
            returned=len(page.items),
            nextOffset=page.next_offset,
            sortedBy=page.sort,
            cached=page.cached,
        )

    except FeedError:
        raise
    except Exception as e:
        logger.exception("Failed to fetch markets")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch markets: {str(e)}"
        )


@router.get("/markets/{slug}", response_model=MarketDetailResponse, tags=["Markets"])
async def get_market(
    slug: str = Path(..., description="Market/event slug"),
    feed: MarketFeed = Depends(get_market_feed),
):
    """
    Get a single market by its slug
    """
    try:
        data, cached = await feed.fetch_market(slug)
        return MarketDetailResponse(data=data, cached=cached)

    except FeedError:
        raise
    except Exception as e:
        logger.exception("Failed to fetch market %s", slug)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch market: {str(e)}"
        )
