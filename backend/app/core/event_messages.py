"""Event Messages - wire codec for the event transport.

Invariants:
    - Wire shape is exactly {"type": str, "data": object, "timestamp": ISO-8601 str}
    - parse_event raises MalformedEventError for anything else; it never returns
      a half-parsed message
    - Unknown `type` values parse fine: handlers may subscribe to any string,
      built-in side effects only fire for EventType members

Design Decisions:
    - Dataclass + json over a schema library: core stays dependency-free and the
      shape is three fields
    - Timestamps are produced in UTC with offset ("+00:00")
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app.core.domain_types import EventType
from app.core.errors import MalformedEventError


@dataclass(frozen=True)
class EventMessage:
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""

    @property
    def event_type(self) -> EventType | None:
        """Known EventType for this message, None for custom types."""
        try:
            return EventType(self.type)
        except ValueError:
            return None

    def to_dict(self) -> dict:
        return {"type": self.type, "data": self.data, "timestamp": self.timestamp}


def build_event(
    event_type: EventType | str,
    data: dict[str, Any],
    now: datetime | None = None,
) -> EventMessage:
    """Stamp a payload with type and current UTC time."""
    kind = event_type.value if isinstance(event_type, EventType) else event_type
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    return EventMessage(type=kind, data=dict(data), timestamp=stamp)


def encode_event(message: EventMessage) -> str:
    return json.dumps(message.to_dict(), ensure_ascii=False, default=str)


def parse_event(raw: str | bytes) -> EventMessage:
    """Decode one inbound frame. Raises MalformedEventError on any shape problem."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"invalid JSON ({e})") from e
    if not isinstance(payload, dict):
        raise MalformedEventError("top-level value is not an object")

    kind = payload.get("type")
    if not isinstance(kind, str) or not kind:
        raise MalformedEventError("missing 'type'")

    data = payload.get("data", {})
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MalformedEventError("'data' is not an object")

    timestamp = payload.get("timestamp", "")
    if not isinstance(timestamp, str):
        raise MalformedEventError("'timestamp' is not a string")
    return EventMessage(type=kind, data=data, timestamp=timestamp)


def parse_control(raw: str | bytes) -> dict:
    """Decode a client->server control frame ({"type": "auth" | "subscribe" | ...})."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"invalid JSON ({e})") from e
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        raise MalformedEventError("control frame needs a string 'type'")
    return payload
