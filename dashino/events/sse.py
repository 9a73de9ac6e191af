"""Server-sent events framing."""

import json
from typing import Any, Optional

# Sent before anything else so buffering proxies flush the response headers.
CONNECTED_COMMENT = ": connected\n\n"


def format_event(event_id: int, data: Any, event: Optional[str] = None) -> str:
    """Encode one SSE frame.

    Every frame ends with a blank line so the browser dispatches it. With no
    ``event`` name, EventSource clients deliver it to their onmessage handler.
    """
    lines = [f"id: {event_id}"]
    if event:
        lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data, separators=(',', ':'), default=str)}")
    return "\n".join(lines) + "\n\n"
