#!/usr/bin/env python3
"""
Main entry point for the market feed FastAPI application
"""

import logging

import uvicorn
from marketfeed import create_app
from marketfeed.config import Config

logging.basicConfig(
    level=Config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create FastAPI application instance
app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=Config.HOST,
        port=Config.PORT,
        reload=Config.RELOAD
    )
