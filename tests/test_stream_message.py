"""
Unit tests for the stream message model, ingress body parsing and SSE framing.
"""

import json

from dashino.events.models import IngestRequest, StreamMessage
from dashino.events.sse import CONNECTED_COMMENT, format_event


def _parse_frame(frame: str) -> dict:
    """Split an SSE frame into its fields; data is JSON-decoded."""
    assert frame.endswith("\n\n")
    fields = {}
    for line in frame.strip("\n").split("\n"):
        name, _, value = line.partition(": ")
        fields[name] = value
    fields["data"] = json.loads(fields["data"])
    return fields


class TestStreamMessage:
    """Channel key, payload presence and wire shape."""

    def test_channel_key_prefers_widget_id(self):
        msg = StreamMessage(widgetId="metric-1", type="metric")
        assert msg.channel_key == "metric-1"

    def test_channel_key_falls_back_to_type(self):
        assert StreamMessage(type="rss").channel_key == "rss"

    def test_channel_key_empty_strings_are_absent(self):
        assert StreamMessage(widgetId="", type="").channel_key is None

    def test_no_payload_when_data_omitted(self):
        assert StreamMessage(type="tick").has_payload is False

    def test_explicit_null_data_counts_as_payload(self):
        assert StreamMessage(type="x", data=None).has_payload is True

    def test_populate_by_python_name(self):
        msg = StreamMessage(widget_id="w", data=1)
        assert msg.widget_id == "w"

    def test_stamp_sets_at_once(self):
        msg = StreamMessage(type="tick").stamp()
        assert msg.at and msg.at.endswith("Z")
        msg.at = "2024-01-01T00:00:00.000Z"
        msg.stamp()
        assert msg.at == "2024-01-01T00:00:00.000Z"

    def test_to_wire_uses_client_names_and_drops_absent_fields(self):
        wire = StreamMessage(widgetId="w1", data={"v": 1}).to_wire()
        assert wire == {"widgetId": "w1", "data": {"v": 1}}

    def test_to_wire_omits_data_for_tick(self):
        wire = StreamMessage(type="tick", at="2024-01-01T00:00:00.000Z").to_wire()
        assert wire == {"type": "tick", "at": "2024-01-01T00:00:00.000Z"}

    def test_extra_fields_are_forwarded(self):
        msg = StreamMessage.model_validate({"type": "x", "data": 1, "color": "red"})
        assert msg.to_wire()["color"] == "red"


class TestIngestRequest:
    """POST /api/events body parsing never fails."""

    def test_defaults_for_non_object(self):
        for body in (None, [], "text", 42):
            req = IngestRequest.from_body(body)
            assert req.type == "message"
            assert req.data == {}
            assert req.widget_id is None

    def test_reads_all_fields(self):
        req = IngestRequest.from_body({"type": "status", "data": {"ok": True}, "widgetId": "s1"})
        assert (req.type, req.data, req.widget_id) == ("status", {"ok": True}, "s1")

    def test_channel_key_alias(self):
        assert IngestRequest.from_body({"channelKey": "alerts"}).widget_id == "alerts"

    def test_wrong_types_fall_back(self):
        req = IngestRequest.from_body({"type": 5, "widgetId": ["x"]})
        assert req.type == "message"
        assert req.widget_id is None
        assert req.data == {}

    def test_explicit_null_data_is_kept(self):
        msg = IngestRequest.from_body({"widgetId": "w", "data": None}).to_message()
        assert msg.data is None
        assert msg.has_payload
        assert msg.to_wire()["data"] is None

    def test_to_message_is_stamped_and_cacheable(self):
        msg = IngestRequest.from_body({"widgetId": "w", "data": {"v": 2}}).to_message()
        assert msg.at is not None
        assert msg.channel_key == "w"
        assert msg.has_payload


class TestFormatEvent:
    """SSE frame encoding."""

    def test_default_event_has_no_event_line(self):
        frame = format_event(3, {"type": "ready"})
        assert frame == 'id: 3\ndata: {"type":"ready"}\n\n'

    def test_named_event(self):
        fields = _parse_frame(format_event(7, {"a": 1}, event="update"))
        assert fields["id"] == "7"
        assert fields["event"] == "update"
        assert fields["data"] == {"a": 1}

    def test_connected_comment_is_a_comment_frame(self):
        assert CONNECTED_COMMENT.startswith(":")
        assert CONNECTED_COMMENT.endswith("\n\n")
