"""
FastAPI dependencies for service injection.

Endpoints receive the process-wide hub and supervisor through these so
tests can swap them with app.dependency_overrides.
"""

from ..events.hub import BroadcastHub, get_broadcast_hub
from ..jobs.supervisor import JobSupervisor, get_job_supervisor


def get_hub() -> BroadcastHub:
    """FastAPI dependency that provides the broadcast hub."""
    return get_broadcast_hub()


def get_supervisor() -> JobSupervisor:
    """FastAPI dependency that provides the job supervisor."""
    return get_job_supervisor()
