"""
Dashino - Live Widget Hub

The main FastAPI application entry point.
"""

# Load .env file FIRST, before any other imports
# .env.local overrides .env for machine-specific settings
from pathlib import Path
from dotenv import load_dotenv
_env_root = Path(__file__).parent.parent
load_dotenv(_env_root / ".env", override=True)
load_dotenv(_env_root / ".env.local", override=True)

import logging
from contextlib import asynccontextmanager
from logging.handlers import TimedRotatingFileHandler

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import router as api_router
from .api import stream_router
from .config import settings
from .events.hub import get_broadcast_hub


def _configure_logging() -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_dir is not None:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            TimedRotatingFileHandler(
                settings.log_dir / "server.log",
                when="midnight",
                backupCount=settings.log_retention_days,
                utc=True,
                encoding="utf-8",
            )
        )
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


# Configure logging
_configure_logging()
logger = logging.getLogger("dashino.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Starts the hub heartbeat and the job processes; on shutdown stops jobs
    first so nothing is emitted into a stopped hub.
    """
    # --- Startup ---
    logger.info("Dashino starting up...")

    hub = get_broadcast_hub()
    await hub.start()

    jobs_started = False
    if settings.jobs.enabled:
        try:
            from .jobs import init_jobs
            supervisor = await init_jobs()
            jobs_started = True
            logger.info("Job supervisor initialized with %d job(s)", supervisor.unit_count)
        except Exception as e:
            # Continue without jobs - ingress and streaming still work
            logger.error("Failed to start jobs: %s", e)

    logger.info("Dashino listening on %s:%d", settings.host, settings.port)

    yield

    # --- Shutdown ---
    logger.info("Dashino shutting down...")

    if jobs_started:
        try:
            from .jobs import shutdown_jobs
            await shutdown_jobs()
            logger.info("Job supervisor shutdown complete")
        except Exception as e:
            logger.error("Error shutting down jobs: %s", e)

    await hub.stop()
    logger.info("Dashino shutdown complete")


# Create the FastAPI application
app = FastAPI(
    title="Dashino",
    description="Live widget updates over server-sent events, fed by supervised jobs.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# JSON API under /api; the event stream lives at the root
app.include_router(api_router, prefix="/api")
app.include_router(stream_router)
