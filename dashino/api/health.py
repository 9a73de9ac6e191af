"""
Health check endpoints.
"""

from fastapi import APIRouter, Depends

from ..events.hub import BroadcastHub
from ..jobs.supervisor import JobSupervisor
from .dependencies import get_hub, get_supervisor

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health():
    """Simple endpoint to verify server is running."""
    return {"status": "ok"}


@router.get("/status")
async def status(
    hub: BroadcastHub = Depends(get_hub),
    supervisor: JobSupervisor = Depends(get_supervisor),
):
    """Hub counters and the state of every job process."""
    return {
        "hub": hub.stats(),
        "jobs": supervisor.status(),
    }
