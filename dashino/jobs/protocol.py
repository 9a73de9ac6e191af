"""
Control messages sent from a job process to the supervisor.

Three shapes travel over the pipe as plain dicts:

    {"type": "meta", "defaults": {"widgetId": ..., "type": ..., "interval": ...}}
    {"type": "emit", "payload": {...}}
    {"type": "run-error", "error": "..."}

The supervisor never sends anything back; closing its end of the pipe is
the stop signal.
"""

from dataclasses import dataclass
from typing import Any, Optional

META = "meta"
EMIT = "emit"
RUN_ERROR = "run-error"


@dataclass
class JobDefaults:
    """Defaults a job announces once at startup."""

    widget_id: Optional[str] = None
    type: Optional[str] = None
    interval: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {"widgetId": self.widget_id, "type": self.type, "interval": self.interval}

    @classmethod
    def from_dict(cls, raw: Any) -> "JobDefaults":
        if not isinstance(raw, dict):
            return cls()
        widget_id = raw.get("widgetId")
        kind = raw.get("type")
        interval = raw.get("interval")
        return cls(
            widget_id=widget_id if isinstance(widget_id, str) else None,
            type=kind if isinstance(kind, str) else None,
            interval=interval if isinstance(interval, (int, float)) else None,
        )


def meta_message(defaults: JobDefaults) -> dict[str, Any]:
    return {"type": META, "defaults": defaults.to_dict()}


def emit_message(payload: Any) -> dict[str, Any]:
    return {"type": EMIT, "payload": payload}


def run_error_message(error: Any) -> dict[str, Any]:
    return {"type": RUN_ERROR, "error": str(error)}
