"""
API routers for Dashino.
"""

from fastapi import APIRouter

from .events import router as events_router
from .health import router as health_router
from .stream import router as stream_router
from .webhooks import router as webhooks_router

# Mounted under /api by main.py
router = APIRouter()

router.include_router(health_router)
router.include_router(events_router)
router.include_router(webhooks_router)

__all__ = ["router", "stream_router"]
