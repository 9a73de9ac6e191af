"""
Unit tests for the broadcast hub: last-value cache, fan-out and subscriber lifecycle.

No network or processes; subscribers are read straight from their queues.
"""

import asyncio
import json

import pytest

from dashino.events.hub import BroadcastHub
from dashino.events.models import StreamMessage

# ---------------------------------------------------------------------------
# Test helpers
# ---------------------------------------------------------------------------


def _decode(frame: str) -> tuple[int, dict]:
    """Return (event id, data) for an SSE frame."""
    event_id = None
    data = None
    for line in frame.strip("\n").split("\n"):
        if line.startswith("id: "):
            event_id = int(line[4:])
        elif line.startswith("data: "):
            data = json.loads(line[6:])
    return event_id, data


def _drain(subscriber) -> list[tuple[int, dict]]:
    """Everything the subscriber would read right now, replay first."""
    frames = list(subscriber.replay)
    subscriber.replay = []
    while not subscriber.queue.empty():
        frame = subscriber.queue.get_nowait()
        if frame is not None:
            frames.append(frame)
    return [_decode(f) for f in frames]


def _msg(widget_id=None, kind=None, **kwargs) -> StreamMessage:
    return StreamMessage(widgetId=widget_id, type=kind, **kwargs).stamp()


@pytest.fixture
def hub():
    return BroadcastHub(queue_size=16, heartbeat_seconds=0.05)


# ---------------------------------------------------------------------------
# Cache and replay
# ---------------------------------------------------------------------------


class TestReplay:
    """New subscribers see the latest value for each channel key."""

    @pytest.mark.asyncio
    async def test_ack_comes_first(self, hub):
        sub = hub.subscribe()
        events = _drain(sub)
        assert events[0][1] == {"type": "ready", "data": {"status": "connected"}}

    @pytest.mark.asyncio
    async def test_replays_one_message_per_key(self, hub):
        hub.ingest(_msg("a", data={"n": 1}))
        hub.ingest(_msg("b", data={"n": 2}))
        sub = hub.subscribe()

        data = [d for _, d in _drain(sub)[1:]]
        assert [(d["widgetId"], d["data"]) for d in data] == [("a", {"n": 1}), ("b", {"n": 2})]

    @pytest.mark.asyncio
    async def test_latest_value_wins(self, hub):
        hub.ingest(_msg("w", data=1))
        hub.ingest(_msg("w", data=2))
        sub = hub.subscribe()

        replay = [d for _, d in _drain(sub)[1:]]
        assert len(replay) == 1
        assert replay[0]["data"] == 2

    @pytest.mark.asyncio
    async def test_type_is_key_without_widget_id(self, hub):
        hub.ingest(_msg(kind="rss", data={"items": []}))
        assert [m.channel_key for m in hub.cached_messages()] == ["rss"]

    @pytest.mark.asyncio
    async def test_payloadless_message_is_not_cached(self, hub):
        hub.ingest(_msg(kind="tick"))
        hub.ingest(_msg("w"))
        assert hub.cached_messages() == []

    @pytest.mark.asyncio
    async def test_keyless_message_is_broadcast_not_cached(self, hub):
        live = hub.subscribe()
        _drain(live)
        hub.ingest(StreamMessage(data={"x": 1}).stamp())

        assert hub.cached_messages() == []
        assert _drain(live)[0][1]["data"] == {"x": 1}

    @pytest.mark.asyncio
    async def test_replay_does_not_reach_existing_subscribers(self, hub):
        hub.ingest(_msg("w", data=1))
        first = hub.subscribe()
        _drain(first)
        hub.subscribe()
        assert _drain(first) == []


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------


class TestFanOut:
    """Every live message reaches every subscriber, in ingest order."""

    @pytest.mark.asyncio
    async def test_all_subscribers_get_same_order(self, hub):
        subs = [hub.subscribe() for _ in range(3)]
        for sub in subs:
            _drain(sub)

        for n in range(5):
            hub.ingest(_msg("w", data=n))

        for sub in subs:
            assert [d["data"] for _, d in _drain(sub)] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_event_ids_strictly_increase_per_stream(self, hub):
        hub.ingest(_msg("a", data=1))
        first = hub.subscribe()
        hub.ingest(_msg("b", data=2))
        second = hub.subscribe()
        hub.ingest(_msg("c", data=3))

        for sub in (first, second):
            ids = [event_id for event_id, _ in _drain(sub)]
            assert ids == sorted(set(ids))

    @pytest.mark.asyncio
    async def test_ingest_returns_event_id(self, hub):
        first = hub.ingest(_msg("a", data=1))
        second = hub.ingest(_msg("a", data=2))
        assert second == first + 1
        assert hub.sequence == second + 1

    @pytest.mark.asyncio
    async def test_named_event(self, hub):
        sub = hub.subscribe()
        _drain(sub)
        hub.ingest(_msg("w", data=1), event="update")
        frame = sub.queue.get_nowait()
        assert "\nevent: update\n" in frame


# ---------------------------------------------------------------------------
# Subscriber lifecycle
# ---------------------------------------------------------------------------


class TestSubscribers:
    """Registration, removal and slow-consumer handling."""

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, hub):
        sub = hub.subscribe()
        hub.unsubscribe(sub)
        hub.unsubscribe(sub)
        assert hub.subscriber_count == 0
        assert sub.closed

    @pytest.mark.asyncio
    async def test_unsubscribed_gets_nothing_more(self, hub):
        sub = hub.subscribe()
        hub.unsubscribe(sub)
        _drain(sub)
        hub.ingest(_msg("w", data=1))
        assert _drain(sub) == []

    @pytest.mark.asyncio
    async def test_slow_subscriber_is_dropped(self):
        hub = BroadcastHub(queue_size=2, heartbeat_seconds=1)
        slow = hub.subscribe()
        fast = hub.subscribe()

        hub.ingest(_msg("w", data=1))
        hub.ingest(_msg("w", data=2))
        _drain(fast)
        hub.ingest(_msg("w", data=3))

        assert slow.closed
        assert hub.subscriber_count == 1
        assert hub.stats()["subscribers_dropped"] == 1
        assert [d["data"] for _, d in _drain(fast)] == [3]

    @pytest.mark.asyncio
    async def test_frames_yields_replay_then_live(self, hub):
        hub.ingest(_msg("w", data="cached"))
        sub = hub.subscribe()
        frames = sub.frames()

        ack = await frames.__anext__()
        cached = await frames.__anext__()
        hub.ingest(_msg("w", data="live"))
        live = await asyncio.wait_for(frames.__anext__(), timeout=1)

        assert _decode(ack)[1]["type"] == "ready"
        assert _decode(cached)[1]["data"] == "cached"
        assert _decode(live)[1]["data"] == "live"

        hub.unsubscribe(sub)
        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(frames.__anext__(), timeout=1)

    @pytest.mark.asyncio
    async def test_stats(self, hub):
        hub.ingest(_msg("w", data=1))
        hub.subscribe()
        stats = hub.stats()
        assert stats["subscribers"] == 1
        assert stats["cached_keys"] == 1
        assert stats["messages_ingested"] == 1
        assert stats["running"] is False
        assert set(stats) == {
            "running", "subscribers", "cached_keys", "sequence",
            "messages_ingested", "subscribers_dropped",
        }

    @pytest.mark.asyncio
    async def test_subscriber_fields(self, hub):
        sub = hub.subscribe()
        assert set(vars(sub)) == {"id", "queue", "replay", "closed"}


# ---------------------------------------------------------------------------
# Heartbeat
# ---------------------------------------------------------------------------


class TestHeartbeat:
    """The periodic tick keeps idle streams alive without touching the cache."""

    @pytest.mark.asyncio
    async def test_tick_is_broadcast_and_not_cached(self, hub):
        sub = hub.subscribe()
        _drain(sub)
        await hub.start()
        try:
            frame = await asyncio.wait_for(sub.queue.get(), timeout=2)
        finally:
            await hub.stop()

        _, data = _decode(frame)
        assert data["type"] == "tick"
        assert "data" not in data
        assert "at" in data
        assert hub.cached_messages() == []

    @pytest.mark.asyncio
    async def test_stop_closes_streams(self, hub):
        sub = hub.subscribe()
        await hub.start()
        assert hub.is_running
        await hub.stop()
        assert not hub.is_running
        assert sub.closed
        assert hub.subscriber_count == 0
