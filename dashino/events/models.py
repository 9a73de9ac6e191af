"""
Message types flowing through the broadcast hub.

StreamMessage is what producers emit and what display clients receive.
IngestRequest is the permissive body accepted by POST /api/events.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..utils.time import utc_now_iso

_OPTIONAL_WIRE_FIELDS = ("widgetId", "type", "at")


class StreamMessage(BaseModel):
    """A widget update.

    ``widget_id`` is the channel key; when absent the ``type`` tag stands
    in for it. Extra fields supplied by a producer are kept and forwarded
    to clients untouched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    widget_id: Optional[str] = Field(default=None, alias="widgetId")
    type: Optional[str] = None
    data: Any = None
    at: Optional[str] = None

    @property
    def channel_key(self) -> Optional[str]:
        """Cache key for this message, or None if it cannot be cached."""
        return self.widget_id or self.type or None

    @property
    def has_payload(self) -> bool:
        """True when ``data`` was supplied, even as an explicit null."""
        return "data" in self.model_fields_set

    def stamp(self) -> "StreamMessage":
        """Set ``at`` to now unless a producer already set it."""
        if not self.at:
            self.at = utc_now_iso()
        return self

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict using the client-facing field names."""
        wire = self.model_dump(mode="json", by_alias=True)
        for name in _OPTIONAL_WIRE_FIELDS:
            if wire.get(name) is None:
                wire.pop(name, None)
        if not self.has_payload:
            wire.pop("data", None)
        return wire


class IngestRequest(BaseModel):
    """Externally submitted message.

    Parsing never fails: anything that is missing or has the wrong shape
    falls back to its default.
    """

    type: str = "message"
    data: Any = Field(default_factory=dict)
    widget_id: Optional[str] = None

    @classmethod
    def from_body(cls, body: Any) -> "IngestRequest":
        if not isinstance(body, dict):
            return cls()

        fields: dict[str, Any] = {}
        kind = body.get("type")
        if isinstance(kind, str) and kind:
            fields["type"] = kind
        if "data" in body:
            fields["data"] = body["data"]
        for key in ("widgetId", "channelKey", "widget_id"):
            value = body.get(key)
            if isinstance(value, str) and value:
                fields["widget_id"] = value
                break
        return cls(**fields)

    def to_message(self) -> StreamMessage:
        return StreamMessage(
            widget_id=self.widget_id,
            type=self.type,
            data=self.data,
        ).stamp()
