"""
Authenticated webhook ingress.

Sources are declared with DASHINO_WEBHOOK_SOURCES=github,grafana. For each
source, with KEY being the upper-cased name with non-alphanumerics as '_':

    DASHINO_WEBHOOK_SECRET_<KEY>      shared secret (required, else 503)
    DASHINO_WEBHOOK_<KEY>_WIDGET_ID   default widgetId
    DASHINO_WEBHOOK_<KEY>_TYPE        default type (defaults to the source)

Callers send the secret in the configured header (x-webhook-secret).
"""

import hmac
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from ..config import settings
from ..events.hub import BroadcastHub
from ..events.models import StreamMessage
from .dependencies import get_hub

logger = logging.getLogger("dashino.api.webhooks")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@dataclass(frozen=True)
class WebhookTarget:
    source: str
    secret_env: str
    widget_id: Optional[str] = None
    type: Optional[str] = None


def normalize_env_key(source: str) -> str:
    return re.sub(r"[^A-Z0-9]+", "_", source.strip().upper())


def build_webhook_targets(
    sources: str, environ: Mapping[str, str] = os.environ
) -> dict[str, WebhookTarget]:
    targets = {}
    for source in (s.strip() for s in sources.split(",")):
        if not source:
            continue
        normalized = source.lower()
        key = normalize_env_key(source)
        targets[normalized] = WebhookTarget(
            source=normalized,
            secret_env=f"DASHINO_WEBHOOK_SECRET_{key}",
            widget_id=environ.get(f"DASHINO_WEBHOOK_{key}_WIDGET_ID") or None,
            type=environ.get(f"DASHINO_WEBHOOK_{key}_TYPE") or normalized,
        )
    return targets


_webhook_targets: Optional[dict[str, WebhookTarget]] = None


def get_webhook_targets() -> dict[str, WebhookTarget]:
    """Targets are read from the environment once per process."""
    global _webhook_targets
    if _webhook_targets is None:
        _webhook_targets = build_webhook_targets(settings.webhooks.sources)
        if _webhook_targets:
            logger.info("Webhook sources: %s", ", ".join(sorted(_webhook_targets)))
    return _webhook_targets


def secrets_match(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def build_webhook_message(target: WebhookTarget, body: Any) -> StreamMessage:
    """Map a webhook body onto a stream message.

    ``data`` is taken from the body when present, otherwise everything in
    the body except widgetId/type becomes the payload.
    """
    payload = body if isinstance(body, dict) else {}
    rest = {k: v for k, v in payload.items() if k not in ("data", "widgetId", "type")}

    widget_id = payload.get("widgetId")
    kind = payload.get("type")
    data = payload["data"] if "data" in payload else rest

    return StreamMessage(
        widget_id=widget_id if isinstance(widget_id, str) and widget_id else target.widget_id,
        type=kind if isinstance(kind, str) and kind else (target.type or target.source),
        data=data,
    ).stamp()


@router.post("/{source}", status_code=202)
async def receive_webhook(
    source: str,
    request: Request,
    hub: BroadcastHub = Depends(get_hub),
):
    """Accept a signed update from a configured external source."""
    source = source.lower()
    target = get_webhook_targets().get(source)
    if target is None:
        raise HTTPException(status_code=404, detail="unknown webhook")

    secret = os.environ.get(target.secret_env)
    if not secret:
        logger.warning("Webhook secret not set; webhook disabled (source=%s, env=%s)", source, target.secret_env)
        raise HTTPException(status_code=503, detail="webhook disabled")

    provided = request.headers.get(settings.webhooks.secret_header, "")
    if not provided or not secrets_match(provided, secret):
        logger.warning("Webhook auth failed (source=%s)", source)
        raise HTTPException(status_code=401, detail="unauthorized")

    try:
        body = await request.json()
    except ValueError:
        body = None

    message = build_webhook_message(target, body)
    hub.ingest(message)
    logger.info("Webhook accepted (source=%s, widgetId=%s, type=%s)", source, message.widget_id, message.type)
    return {"ok": True}
