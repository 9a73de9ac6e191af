"""
Ingress endpoint for externally submitted widget updates.

POST /api/events accepts {type?, data?, widgetId?} and broadcasts it like
any job output. Ingestion is permissive: malformed bodies get defaults
rather than an error, and the response does not wait for delivery.
"""

import logging

from fastapi import APIRouter, Depends, Request

from ..events.hub import BroadcastHub
from ..events.models import IngestRequest
from .dependencies import get_hub

logger = logging.getLogger("dashino.api.events")

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", status_code=202)
async def publish_event(request: Request, hub: BroadcastHub = Depends(get_hub)):
    """Broadcast a message to every connected display."""
    try:
        body = await request.json()
    except ValueError:
        body = None

    message = IngestRequest.from_body(body).to_message()
    hub.ingest(message)
    logger.debug("Event accepted (type=%s, widgetId=%s)", message.type, message.widget_id)
    return {"ok": True}
