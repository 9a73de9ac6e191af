"""
Job supervision for Dashino.

Runs every job file in the jobs directory in its own process and relays
what it emits into the broadcast hub.

Usage:
    from dashino.jobs import init_jobs, shutdown_jobs

    supervisor = await init_jobs()
    # ...
    await shutdown_jobs()
"""

import logging

from .definition import (
    EXIT_INVALID_JOB,
    JobDefinition,
    JobDefinitionError,
    JobSpec,
    discover_job_files,
    load_job_spec,
)
from .supervisor import JobSupervisor, JobUnit, get_job_supervisor

logger = logging.getLogger("dashino.jobs")


async def init_jobs() -> JobSupervisor:
    """Start one process per discovered job. Returns the supervisor."""
    supervisor = get_job_supervisor()
    started = await supervisor.start_all()
    logger.info("Job supervisor started %d job process(es)", started)
    return supervisor


async def shutdown_jobs() -> None:
    """Stop all job processes without restarting them."""
    await get_job_supervisor().shutdown_all()


__all__ = [
    "init_jobs",
    "shutdown_jobs",
    "JobSupervisor",
    "JobUnit",
    "get_job_supervisor",
    "JobDefinition",
    "JobDefinitionError",
    "JobSpec",
    "EXIT_INVALID_JOB",
    "discover_job_files",
    "load_job_spec",
]
