"""
Market feed FastAPI application package
"""

import math
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi import HTTPException

from marketfeed.config import Config, get_services
from marketfeed.errors import FeedError, RateLimitExhausted
from marketfeed.models import ErrorResponse
from marketfeed.routes.root import router as root_router
from marketfeed.routes.markets import router as markets_router
from marketfeed.routes.leaderboard import router as leaderboard_router

DEFAULT_RETRY_AFTER = 60


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    get_services().close()


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""

    # Initialize FastAPI app
    app = FastAPI(
        title=Config.TITLE,
        description=Config.DESCRIPTION,
        version=Config.VERSION,
        docs_url=Config.DOCS_URL,
        redoc_url=Config.REDOC_URL,
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=Config.ALLOW_ORIGINS,
        allow_credentials=Config.ALLOW_CREDENTIALS,
        allow_methods=Config.ALLOW_METHODS,
        allow_headers=Config.ALLOW_HEADERS,
    )

    # Include routers
    app.include_router(root_router)
    app.include_router(markets_router)
    app.include_router(leaderboard_router)

    # Exception handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc):
        """Custom HTTP exception handler"""
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                detail=str(exc.detail),
                error_type="HTTPException"
            ).model_dump()
        )

    @app.exception_handler(FeedError)
    async def feed_error_handler(request, exc):
        """Map market feed errors to their HTTP status"""
        headers = None
        if isinstance(exc, RateLimitExhausted):
            wait = exc.retry_after
            if wait is None or not math.isfinite(wait) or wait < 0:
                wait = DEFAULT_RETRY_AFTER
            headers = {"Retry-After": str(math.ceil(wait))}
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                detail=str(exc),
                error_type=type(exc).__name__
            ).model_dump(),
            headers=headers,
        )

    return app
