"""
Server-sent events endpoint for display clients.

A client connecting to GET /events receives a connect acknowledgement, the
latest message for every channel key, then every broadcast until it
disconnects. Closing the connection is the only way to unsubscribe.
"""

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ..events.hub import BroadcastHub
from ..events.sse import CONNECTED_COMMENT
from .dependencies import get_hub

logger = logging.getLogger("dashino.api.stream")

router = APIRouter(tags=["stream"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def event_stream(hub: BroadcastHub) -> AsyncIterator[str]:
    """Subscribe on first iteration and stream until cancelled or dropped."""
    subscriber = hub.subscribe()
    try:
        yield CONNECTED_COMMENT
        async for frame in subscriber.frames():
            yield frame
    finally:
        hub.unsubscribe(subscriber)


@router.get("/events")
async def stream_events(hub: BroadcastHub = Depends(get_hub)):
    """Open a live widget update stream."""
    return StreamingResponse(
        event_stream(hub),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
