"""Broadcast hub and message types for the live widget stream."""

from .hub import BroadcastHub, Subscriber, get_broadcast_hub
from .models import IngestRequest, StreamMessage

__all__ = [
    "BroadcastHub",
    "Subscriber",
    "get_broadcast_hub",
    "IngestRequest",
    "StreamMessage",
]
