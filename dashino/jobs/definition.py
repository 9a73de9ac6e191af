"""
Job discovery and loading.

A job is a Python file in the jobs directory that exposes:

    interval = 5000            # milliseconds between runs, > 0
    widget_id = "metric-1"     # optional default channel key
    type = "metric"            # optional default kind

    async def run(emit):       # or a plain function
        emit({"data": {...}})

The supervisor only ever handles JobDefinition (name + path). The file is
imported and validated inside the job's own process by load_job_spec().
"""

import importlib.util
import logging
import math
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Optional

from .protocol import JobDefaults

logger = logging.getLogger("dashino.jobs.definition")

JOB_SUFFIXES = (".py",)

# Exit status of a job process whose file does not satisfy the contract
# (EX_CONFIG from sysexits.h).
EXIT_INVALID_JOB = 78


class JobDefinitionError(Exception):
    """A job file is missing ``interval`` or ``run``, or has bad values."""


@dataclass(frozen=True)
class JobDefinition:
    """Handle for one discovered job file."""

    name: str
    path: Path


@dataclass(frozen=True)
class JobSpec:
    """A loaded, validated job."""

    name: str
    interval_ms: float
    run: Callable[..., Any]
    widget_id: Optional[str] = None
    type: Optional[str] = None

    @property
    def defaults(self) -> JobDefaults:
        return JobDefaults(widget_id=self.widget_id, type=self.type, interval=self.interval_ms)


def discover_job_files(directory: Path) -> list[JobDefinition]:
    """List job files in *directory*, sorted by name.

    Files starting with an underscore are skipped so helpers can live next
    to the jobs that import them.
    """
    if not directory.is_dir():
        logger.warning("No jobs directory found; skipping scheduled jobs (dir=%s)", directory)
        return []

    definitions = []
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix not in JOB_SUFFIXES:
            continue
        if path.name.startswith("_"):
            continue
        definitions.append(JobDefinition(name=path.stem, path=path.resolve()))
    return definitions


def load_job_module(path: Path) -> ModuleType:
    """Import a job file as a standalone module.

    Import errors propagate unchanged; they are treated as a crash, not as
    an invalid definition.
    """
    module_name = "dashino_job_" + re.sub(r"[^0-9a-zA-Z_]", "_", path.stem)
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load job file {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


def _is_positive_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def _optional_str(module: ModuleType, attr: str) -> Optional[str]:
    value = getattr(module, attr, None)
    if value is None:
        return None
    if not isinstance(value, str):
        raise JobDefinitionError(f"'{attr}' must be a string, got {type(value).__name__}")
    return value or None


def load_job_spec(path: Path) -> JobSpec:
    """Load and validate a job file."""
    module = load_job_module(path)

    interval = getattr(module, "interval", None)
    run = getattr(module, "run", None)
    if not _is_positive_number(interval):
        raise JobDefinitionError(f"Job missing interval/run: interval={interval!r}")
    if not callable(run):
        raise JobDefinitionError("Job missing interval/run: run is not callable")

    return JobSpec(
        name=path.stem,
        interval_ms=interval,
        run=run,
        widget_id=_optional_str(module, "widget_id"),
        type=_optional_str(module, "type"),
    )
