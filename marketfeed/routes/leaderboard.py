"""
Leaderboard routes for the market feed application
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from marketfeed.config import get_leaderboard_feed
from marketfeed.errors import FeedError, FilterValidationError
from marketfeed.leaderboard import DEFAULT_WINDOW, LeaderboardFeed
from marketfeed.models import LeaderboardEntryModel, LeaderboardResponse

logger = logging.getLogger(__name__)

router = APIRouter()

LEADERBOARD_TYPES = ("volume", "profit", "both")


@router.get("/leaderboard", response_model=LeaderboardResponse, tags=["Leaderboard"])
async def get_leaderboard(
    type: str = Query(..., description="volume, profit or both"),
    period: str = Query(DEFAULT_WINDOW, description="day, week, month or all"),
    limit: int = Query(20, ge=1, le=100, description="Rows per metric"),
    feed: LeaderboardFeed = Depends(get_leaderboard_feed),
):
    """
    Get the top traders by volume and/or profit for a time window
    """
    if type not in LEADERBOARD_TYPES:
        raise FilterValidationError(
            "Invalid or missing type parameter. Use: volume, profit, or both"
        )

    try:
        metrics = ("volume", "profit") if type == "both" else (type,)
        result = {}
        for metric in metrics:
            rows = await feed.fetch(metric, period)
            result[metric] = [LeaderboardEntryModel(**row) for row in rows[:limit]]
        return LeaderboardResponse(**result)

    except FeedError:
        raise
    except Exception as e:
        logger.exception("Failed to fetch leaderboard")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch leaderboard data: {str(e)}"
        )
