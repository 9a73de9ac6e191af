"""Shared time-formatting utilities."""

from datetime import datetime, timezone


def utc_now_iso() -> str:
    """Current UTC time as '2024-05-01T12:00:00.123Z'.

    Millisecond precision with a trailing Z, the form browser clients
    produce with Date.toISOString() and parse back without surprises.
    """
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
