#!/usr/bin/env python
"""FastAPI server for the trendshorts generation service."""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

# Add src directory to Python path for imports
src_dir = Path(__file__).parent.parent
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from api.dependencies import get_config, init_services, shutdown_services
from api.routers import core, schedules, shorts
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    setup_logging(config.get("log_level", "INFO"), json_output=config.get("log_json", False))
    await init_services()
    logger.info("trendshorts API started")
    try:
        yield
    finally:
        await shutdown_services()
        logger.info("trendshorts API stopped")


app = FastAPI(title="trendshorts API", version="1.0.0", lifespan=lifespan)

# CORS middleware for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],  # Vite default port
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(core.router)
app.include_router(shorts.router)
app.include_router(schedules.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
