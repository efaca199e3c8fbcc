"""
Pydantic models for the market feed API
"""

from pydantic import BaseModel, ConfigDict
from typing import Any, List, Optional


class MarketModel(BaseModel):
    """Model for one market/event in a listing; upstream fields pass through"""
    model_config = ConfigDict(extra="allow")

    id: str
    question: Optional[str] = None
    slug: Optional[str] = None
    image: Optional[str] = None
    liquidity: float = 0.0
    volume: float = 0.0
    volume24hr: float = 0.0
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    outcomePrices: Any = None
    tags: List[Any] = []
    category: Optional[str] = None


class MarketPageResponse(BaseModel):
    """Model for a page of markets"""
    data: List[MarketModel]
    hasMore: bool
    offset: int
    limit: int
    total: Optional[int] = None
    returned: int
    nextOffset: Optional[int] = None
    sortedBy: str
    cached: bool = False


class MarketDetailResponse(BaseModel):
    """Model for a single market looked up by slug"""
    success: bool = True
    data: Any
    cached: bool = False


class LeaderboardEntryModel(BaseModel):
    """Model for one leaderboard row"""
    id: str
    rank: int
    username: str
    profileImage: str = ""
    walletAddress: str
    volume: Optional[float] = None
    profit: Optional[float] = None
    change: float = 0


class LeaderboardResponse(BaseModel):
    """Model for leaderboard response"""
    volume: List[LeaderboardEntryModel] = []
    profit: List[LeaderboardEntryModel] = []


class ErrorResponse(BaseModel):
    """Model for error responses"""
    detail: str
    error_type: str
