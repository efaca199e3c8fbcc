"""
Root and health routes for the market feed application
"""

from fastapi import APIRouter, Depends

from marketfeed.config import Config, Services, get_services

router = APIRouter()


@router.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Welcome to Market Feed API",
        "upstream": Config.GAMMA_API_BASE,
        "version": Config.VERSION,
        "docs": Config.DOCS_URL,
        "endpoints": {
            "markets": "/markets?q=&category=&filter=&sortBy=&limit=&offset=",
            "market": "/markets/{slug}",
            "leaderboard": "/leaderboard?type=volume|profit|both&period=week"
        }
    }


@router.get("/health", tags=["Health"])
async def health_check(services: Services = Depends(get_services)):
    """Health check endpoint"""
    return {
        "status": "healthy",
        "message": "API is running",
        "queue_backlog": services.queue.pending,
        "queue_busy": services.queue.busy,
        "build_id_cached": services.resolver.cached() is not None,
    }
