"""
EventReel API routes package.
"""

from fastapi import APIRouter

from .render import router as render_router
from .storage import router as storage_router

# Routes mounted under /api
api_router = APIRouter()

api_router.include_router(render_router, tags=["render"])

__all__ = [
    "api_router",
    "render_router",
    "storage_router",
]
