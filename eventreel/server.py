"""
EventReel API

FastAPI application entry point: render job submission/status, signed
storage reads and a health check.

Usage:
    uvicorn eventreel.server:app
"""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .api import api_router, storage_router
from .core.config import get_settings
from .db import create_all_tables, get_engine
from .queues import get_redis_connection

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("eventreel.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_all_tables()
    logger.info(f"{settings.app_name} API {settings.version} started")
    yield


app = FastAPI(
    title="EventReel API",
    description="Event video assembly service",
    version=settings.version,
    lifespan=lifespan,
)

# CORS configuration (loaded from environment)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")
app.include_router(storage_router, prefix="/storage", tags=["storage"])


@app.get("/")
async def root():
    """Root endpoint - API info."""
    return {
        "name": "EventReel API",
        "version": settings.version,
        "status": "running",
    }


@app.get("/health")
def health_check():
    """
    Health check endpoint for Docker/orchestration.

    Checks the database (job store) and Redis (dispatch queue).
    """
    checks = {}
    healthy = True

    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy"}
    except Exception as e:
        checks["database"] = {"status": "unhealthy", "error": str(e)}
        healthy = False

    try:
        get_redis_connection().ping()
        checks["redis"] = {"status": "healthy"}
    except Exception as e:
        checks["redis"] = {"status": "unhealthy", "error": str(e)}
        healthy = False

    return {
        "status": "healthy" if healthy else "unhealthy",
        "checks": checks,
        "version": settings.version,
    }
