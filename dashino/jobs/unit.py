"""
Job process entry point.

run_unit() is the multiprocessing target for one job. It loads the job
file, announces its defaults, then calls run(emit) immediately and every
``interval`` milliseconds on a fixed-rate APScheduler trigger. Runs are
not serialized: a slow run does not delay the next tick.

A failing run is reported to the supervisor and scheduling continues. The
process ends when the supervisor closes its end of the pipe.
"""

import asyncio
import inspect
import logging
import signal
import sys
from datetime import datetime, timezone
from multiprocessing.connection import Connection
from pathlib import Path
from typing import Any, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from . import protocol
from .definition import EXIT_INVALID_JOB, JobDefinitionError, JobSpec, load_job_spec

logger = logging.getLogger("dashino.jobs.unit")


class UnitRunner:
    """Drives one loaded job inside its own process."""

    def __init__(self, spec: JobSpec, conn: Connection):
        self._spec = spec
        self._conn = conn
        self._stopped: Optional[asyncio.Event] = None
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._reading = False

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()
        loop.add_reader(self._conn.fileno(), self._on_control_readable)
        self._reading = True

        self._send(protocol.meta_message(self._spec.defaults))

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._run_once,
            trigger=IntervalTrigger(seconds=self._spec.interval_ms / 1000),
            id=self._spec.name,
            name=self._spec.name,
            next_run_time=datetime.now(timezone.utc),
            coalesce=False,
            max_instances=sys.maxsize,
            misfire_grace_time=None,
        )
        self._scheduler.start()
        logger.info(
            "Job '%s' scheduled every %sms", self._spec.name, self._spec.interval_ms
        )

        try:
            await self._stopped.wait()
        finally:
            self._stop_reading()
            self._scheduler.shutdown(wait=False)
            logger.info("Job '%s' stopped", self._spec.name)

    def stop(self) -> None:
        self._stop_reading()
        if self._stopped is not None:
            self._stopped.set()

    async def _run_once(self) -> None:
        try:
            result = self._spec.run(self._emit)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._send(protocol.run_error_message(e))

    def _emit(self, message: Any) -> None:
        self._send(protocol.emit_message(message))

    def _send(self, message: dict[str, Any]) -> None:
        """Write to the supervisor; a vanished supervisor stops the job.

        Pickling errors (an unpicklable payload) are not caught here and
        surface as a failed run.
        """
        try:
            self._conn.send(message)
        except (EOFError, OSError):
            logger.warning("Supervisor unreachable; stopping job '%s'", self._spec.name)
            self.stop()

    def _on_control_readable(self) -> None:
        try:
            self._conn.recv()
        except (EOFError, OSError):
            logger.debug("Supervisor disconnected job '%s'", self._spec.name)
            self.stop()

    def _stop_reading(self) -> None:
        if self._reading:
            self._reading = False
            asyncio.get_running_loop().remove_reader(self._conn.fileno())


def run_unit(path: str, conn: Connection, log_level: str = "INFO") -> None:
    """Process target: load the job at *path* and run it until disconnected."""
    # Ctrl+C reaches the whole process group; the supervisor decides when jobs stop.
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        spec = load_job_spec(Path(path))
    except JobDefinitionError as e:
        logger.error("%s (job=%s)", e, path)
        conn.close()
        sys.exit(EXIT_INVALID_JOB)
    except Exception:
        logger.exception("Job runner failed to load %s", path)
        conn.close()
        sys.exit(1)

    try:
        asyncio.run(UnitRunner(spec, conn).run())
    finally:
        conn.close()
