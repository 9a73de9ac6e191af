"""
In-process broadcast hub with a last-value cache.

Every ingested message is fanned out to all connected SSE subscribers in
call order and, when it has a channel key and a payload, stored as the
latest value for that key. New subscribers get the cache replayed before
any live message.

All state is owned by the event loop thread: ingest() and subscribe() are
synchronous and never await, so fan-out order is the order of ingest calls
and no locking is needed. Callers on other threads must hop onto the loop
(loop.call_soon_threadsafe) before calling in.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from .models import StreamMessage
from .sse import format_event

logger = logging.getLogger("dashino.events.hub")


@dataclass(eq=False)
class Subscriber:
    """One open event stream.

    ``replay`` holds the frames captured at subscribe time (connect
    acknowledgement plus cache dump); ``queue`` receives live frames.
    """

    id: int
    queue: asyncio.Queue
    replay: list[str] = field(default_factory=list)
    closed: bool = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            # Wake a reader blocked on an empty queue.
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def frames(self) -> AsyncIterator[str]:
        """Yield replay frames, then live frames until closed."""
        replay, self.replay = self.replay, []
        for frame in replay:
            yield frame
        while not self.closed:
            frame = await self.queue.get()
            if frame is None:
                break
            yield frame


class BroadcastHub:
    """Single-writer, many-reader fan-out with per-key latest values."""

    def __init__(
        self,
        queue_size: Optional[int] = None,
        heartbeat_seconds: Optional[float] = None,
        ready_event: Optional[str] = None,
    ) -> None:
        self._queue_size = queue_size or settings.hub.subscriber_queue_size
        self._heartbeat_seconds = heartbeat_seconds or settings.hub.heartbeat_seconds
        self._ready_event = ready_event or settings.hub.ready_event
        self._subscribers: dict[int, Subscriber] = {}
        self._cache: dict[str, StreamMessage] = {}
        self._sequence = 0
        self._subscriber_ids = itertools.count(1)
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._messages_ingested = 0
        self._subscribers_dropped = 0

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def sequence(self) -> int:
        return self._sequence

    def cached_messages(self) -> list[StreamMessage]:
        """Snapshot of the last-value cache, one message per channel key."""
        return list(self._cache.values())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the heartbeat ticker."""
        if self._scheduler is not None:
            logger.warning("Broadcast hub already running")
            return

        self._scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )
        self._scheduler.add_job(
            self.send_heartbeat,
            trigger=IntervalTrigger(seconds=self._heartbeat_seconds),
            id="hub_heartbeat",
            name="hub_heartbeat",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Broadcast hub started (heartbeat every %.1fs)", self._heartbeat_seconds)

    async def stop(self) -> None:
        """Stop the ticker and close every open stream."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        for subscriber in list(self._subscribers.values()):
            subscriber.close()
        self._subscribers.clear()
        logger.info("Broadcast hub stopped")

    async def send_heartbeat(self) -> None:
        """Ingest a payload-less tick so idle connections see traffic."""
        self.ingest(StreamMessage(type="tick").stamp())

    # ------------------------------------------------------------------
    # Pub/sub
    # ------------------------------------------------------------------

    def ingest(self, message: StreamMessage, event: Optional[str] = None) -> int:
        """Cache and fan out a message. Returns the event id it was sent with."""
        key = message.channel_key
        if key and message.has_payload:
            self._cache[key] = message

        event_id = self._next_event_id()
        frame = format_event(event_id, message.to_wire(), event)
        for subscriber in list(self._subscribers.values()):
            self._deliver(subscriber, frame)

        self._messages_ingested += 1
        return event_id

    def subscribe(self) -> Subscriber:
        """Register a stream and capture its acknowledgement and cache replay."""
        subscriber = Subscriber(
            id=next(self._subscriber_ids),
            queue=asyncio.Queue(maxsize=self._queue_size),
        )

        ready = StreamMessage(type="ready", data={"status": "connected"})
        subscriber.replay.append(
            format_event(self._next_event_id(), ready.to_wire(), self._ready_event)
        )
        for message in self._cache.values():
            subscriber.replay.append(format_event(self._next_event_id(), message.to_wire()))

        self._subscribers[subscriber.id] = subscriber
        logger.info("SSE client connected (clients=%d)", len(self._subscribers))
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove a stream. Safe to call more than once."""
        subscriber.close()
        if self._subscribers.pop(subscriber.id, None) is not None:
            logger.info("SSE client disconnected (clients=%d)", len(self._subscribers))

    def stats(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "subscribers": len(self._subscribers),
            "cached_keys": len(self._cache),
            "sequence": self._sequence,
            "messages_ingested": self._messages_ingested,
            "subscribers_dropped": self._subscribers_dropped,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _next_event_id(self) -> int:
        event_id = self._sequence
        self._sequence += 1
        return event_id

    def _deliver(self, subscriber: Subscriber, frame: str) -> None:
        """Non-blocking write; a subscriber that cannot keep up is dropped."""
        try:
            subscriber.queue.put_nowait(frame)
        except asyncio.QueueFull:
            self._subscribers.pop(subscriber.id, None)
            subscriber.close()
            self._subscribers_dropped += 1
            logger.warning(
                "Dropped slow SSE client %d (clients=%d)",
                subscriber.id, len(self._subscribers),
            )


_broadcast_hub: Optional[BroadcastHub] = None


def get_broadcast_hub() -> BroadcastHub:
    """Get the global broadcast hub."""
    global _broadcast_hub
    if _broadcast_hub is None:
        _broadcast_hub = BroadcastHub()
    return _broadcast_hub
