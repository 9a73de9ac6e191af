"""
Job supervisor.

Keeps one OS process running per discovered job file, forever. Each
process reports over a pipe; the supervisor backfills emitted messages
with the job's announced defaults and ingests them into the broadcast
hub. A process that exits is replaced after a fixed delay, with no backoff
growth and no retry limit, so one broken job never takes down the others
or the hub. That includes jobs whose file fails validation (exit code 78)
unless restart_invalid is turned off, in which case they are rejected.
"""

import asyncio
import logging
import multiprocessing
import multiprocessing.forkserver
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from ..config import settings
from ..events.hub import BroadcastHub, get_broadcast_hub
from ..events.models import StreamMessage
from . import protocol
from .definition import EXIT_INVALID_JOB, JobDefinition, discover_job_files
from .protocol import JobDefaults
from .unit import run_unit

logger = logging.getLogger("dashino.jobs.supervisor")

STARTING = "starting"
RUNNING = "running"
CRASHED = "crashed"

# Upper bound on messages drained per readable wakeup so a chatty job
# cannot monopolize the event loop.
MAX_MESSAGES_PER_WAKEUP = 100

# Imported once by the forkserver so each job process starts from a fork
# instead of a fresh interpreter.
FORKSERVER_PRELOAD = ["dashino.jobs.unit"]


@dataclass(eq=False)
class JobUnit:
    """Supervisor-side record for one running job process.

    Replaced, never revived: a crashed unit is dropped from the registry
    and a fresh JobUnit is created on restart.
    """

    definition: JobDefinition
    process: Any
    conn: Any
    fd: int
    state: str = STARTING
    defaults: Optional[JobDefaults] = None
    started_at: float = field(default_factory=time.time)
    restarts: int = 0
    emits: int = 0
    run_errors: int = 0
    detached: bool = False

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state,
            "pid": self.pid,
            "defaults": self.defaults.to_dict() if self.defaults else None,
            "started_at": self.started_at,
            "restarts": self.restarts,
            "emits": self.emits,
            "run_errors": self.run_errors,
        }


class JobSupervisor:
    """Starts, watches and restarts job processes."""

    def __init__(
        self,
        hub: Optional[BroadcastHub] = None,
        directory: Optional[Path] = None,
        restart_delay: Optional[float] = None,
        stop_timeout: Optional[float] = None,
        restart_invalid: Optional[bool] = None,
        start_method: Optional[str] = None,
    ):
        cfg = settings.jobs
        self._hub = hub or get_broadcast_hub()
        self._directory = Path(directory or cfg.directory)
        self._restart_delay = cfg.restart_delay_seconds if restart_delay is None else restart_delay
        self._stop_timeout = stop_timeout or cfg.stop_timeout_seconds
        self._restart_invalid = cfg.restart_invalid if restart_invalid is None else restart_invalid
        self._start_method = start_method or cfg.start_method
        self._ctx = multiprocessing.get_context(self._start_method)
        if self._start_method == "forkserver":
            self._ctx.set_forkserver_preload(FORKSERVER_PRELOAD)
            self.warm_up()
        self._units: dict[str, JobUnit] = {}
        self._restart_counts: dict[str, int] = {}
        self._rejected: set[str] = set()
        self._background_tasks: set[asyncio.Task] = set()
        self._stopping = False

    def warm_up(self) -> None:
        """Start the forkserver now so the first job does not pay for it.

        Blocks for one interpreter startup the first time; a no-op for other
        start methods or once the server is running.
        """
        if self._start_method != "forkserver":
            return
        multiprocessing.forkserver.ensure_running()
        logger.debug("Forkserver ready (preload=%s)", FORKSERVER_PRELOAD)

    @property
    def is_running(self) -> bool:
        return bool(self._units) and not self._stopping

    @property
    def unit_count(self) -> int:
        return len(self._units)

    def get_unit(self, name: str) -> Optional[JobUnit]:
        return self._units.get(name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def discover(self) -> list[JobDefinition]:
        """List job definitions once; files added later need a restart."""
        definitions = discover_job_files(self._directory)
        logger.info("Discovered %d job(s) in %s", len(definitions), self._directory)
        return definitions

    async def start_all(self) -> int:
        """Discover jobs and start one process per definition."""
        self._stopping = False
        started = 0
        for definition in self.discover():
            try:
                self.start(definition)
                started += 1
            except Exception as e:
                logger.error("Failed to start job '%s': %s", definition.name, e)
                self._schedule_restart(definition)
        return started

    def start(self, definition: JobDefinition) -> JobUnit:
        """Launch a job process and begin relaying its messages.

        Must be called on the event loop thread.
        """
        loop = asyncio.get_running_loop()
        parent_conn, child_conn = self._ctx.Pipe(duplex=True)
        process = self._ctx.Process(
            target=run_unit,
            args=(str(definition.path), child_conn, settings.log_level),
            name=f"job:{definition.name}",
        )
        try:
            process.start()
        finally:
            # Only the child holds this end now; its exit closes the pipe.
            child_conn.close()

        unit = JobUnit(
            definition=definition,
            process=process,
            conn=parent_conn,
            fd=parent_conn.fileno(),
            restarts=self._restart_counts.get(definition.name, 0),
        )
        self._units[definition.name] = unit
        loop.add_reader(unit.fd, self._on_readable, unit)
        logger.info("Started job process '%s' (pid=%s)", definition.name, unit.pid)
        return unit

    async def shutdown_all(self) -> None:
        """Stop every job without restarting it. Called once at shutdown."""
        self._stopping = True

        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        units = list(self._units.values())
        self._units.clear()
        for unit in units:
            # Closing our end of the pipe is the stop signal.
            self._detach(unit)

        if units:
            loop = asyncio.get_running_loop()
            await asyncio.gather(
                *(loop.run_in_executor(None, self._stop_process, unit) for unit in units)
            )
        logger.info("Job supervisor stopped (%d job(s))", len(units))

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "directory": str(self._directory),
            "units": [unit.to_dict() for unit in self._units.values()],
            "rejected": sorted(self._rejected),
            "restarts": dict(self._restart_counts),
        }

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    def _on_readable(self, unit: JobUnit) -> None:
        """Drain pending control messages; EOF means the process ended."""
        if unit.detached:
            return
        for _ in range(MAX_MESSAGES_PER_WAKEUP):
            try:
                if not unit.conn.poll():
                    return
                message = unit.conn.recv()
            except (EOFError, OSError):
                self._on_unit_exit(unit)
                return
            except Exception:
                logger.warning("Discarding unreadable message from job '%s'", unit.name, exc_info=True)
                continue
            self._handle_message(unit, message)

    def _handle_message(self, unit: JobUnit, message: Any) -> None:
        if not isinstance(message, dict):
            logger.warning("Ignoring malformed message from job '%s': %r", unit.name, message)
            return

        kind = message.get("type")
        if kind == protocol.META:
            unit.defaults = JobDefaults.from_dict(message.get("defaults"))
            unit.state = RUNNING
            logger.info("Job metadata received: '%s' %s", unit.name, unit.defaults.to_dict())
        elif kind == protocol.EMIT:
            self._forward(unit, message.get("payload"))
        elif kind == protocol.RUN_ERROR:
            unit.run_errors += 1
            logger.error("Job run error in '%s': %s", unit.name, message.get("error"))
        else:
            logger.warning("Ignoring unknown message type %r from job '%s'", kind, unit.name)

    def _forward(self, unit: JobUnit, payload: Any) -> None:
        """Backfill an emitted message from the job defaults and ingest it."""
        if not isinstance(payload, dict):
            logger.warning("Job '%s' emitted a non-object message: %r", unit.name, payload)
            return
        try:
            message = StreamMessage.model_validate(payload)
        except ValidationError as e:
            logger.warning("Job '%s' emitted an invalid message: %s", unit.name, e)
            return

        defaults = unit.defaults or JobDefaults()
        if message.widget_id is None and defaults.widget_id is not None:
            message.widget_id = defaults.widget_id
        if message.type is None and defaults.type is not None:
            message.type = defaults.type
        message.stamp()

        unit.emits += 1
        self._hub.ingest(message)

    # ------------------------------------------------------------------
    # Termination and restart
    # ------------------------------------------------------------------

    def _on_unit_exit(self, unit: JobUnit) -> None:
        self._detach(unit)
        unit.state = CRASHED
        if self._units.get(unit.name) is unit:
            del self._units[unit.name]
        self._spawn_task(self._reap_and_restart(unit), name=f"reap_{unit.name}")

    async def _reap_and_restart(self, unit: JobUnit) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._stop_process, unit)
        exitcode = unit.process.exitcode

        if self._stopping:
            return

        if exitcode == EXIT_INVALID_JOB and not self._restart_invalid:
            self._rejected.add(unit.name)
            logger.error(
                "Job '%s' rejected: interval/run missing or invalid; not restarting",
                unit.name,
            )
            return

        if exitcode == EXIT_INVALID_JOB:
            logger.error(
                "Job '%s' has an invalid definition (interval/run); retrying in %.1fs",
                unit.name, self._restart_delay,
            )
        else:
            logger.warning(
                "Job process exited: '%s' (code=%s); restarting in %.1fs",
                unit.name, exitcode, self._restart_delay,
            )
        await asyncio.sleep(self._restart_delay)
        self._restart(unit.definition)

    def _schedule_restart(self, definition: JobDefinition) -> None:
        async def _later() -> None:
            await asyncio.sleep(self._restart_delay)
            self._restart(definition)

        self._spawn_task(_later(), name=f"restart_{definition.name}")

    def _restart(self, definition: JobDefinition) -> None:
        if self._stopping:
            return
        self._restart_counts[definition.name] = self._restart_counts.get(definition.name, 0) + 1
        try:
            self.start(definition)
        except Exception as e:
            logger.error("Failed to restart job '%s': %s", definition.name, e)
            self._schedule_restart(definition)

    def _detach(self, unit: JobUnit) -> None:
        """Stop watching a unit's pipe and close our end of it."""
        if unit.detached:
            return
        unit.detached = True
        try:
            asyncio.get_running_loop().remove_reader(unit.fd)
        except RuntimeError:
            pass
        unit.conn.close()

    def _stop_process(self, unit: JobUnit) -> None:
        """Blocking: wait for a job process to exit, escalating if it won't."""
        process = unit.process
        process.join(timeout=self._stop_timeout)
        if process.is_alive():
            logger.warning("Job '%s' (pid=%s) did not exit; terminating", unit.name, unit.pid)
            process.terminate()
            process.join(timeout=2)
        if process.is_alive():
            process.kill()
            process.join()

    def _spawn_task(self, coro, *, name: Optional[str] = None) -> asyncio.Task:
        """Spawn a tracked background task."""
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task


_job_supervisor: Optional[JobSupervisor] = None


def get_job_supervisor() -> JobSupervisor:
    """Get the global job supervisor."""
    global _job_supervisor
    if _job_supervisor is None:
        _job_supervisor = JobSupervisor()
    return _job_supervisor
