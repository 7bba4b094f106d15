"""
Event envelope and payload schemas exchanged over the event bus.

The bus transports an ``Event`` whose ``data`` field is the JSON encoding of
one of the payload dataclasses below. Only the payload schema is fixed here;
how the bus moves events between processes is up to the bus implementation.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List


# Event types carried in Event.type
MESSAGE_CREATE = "MESSAGE_CREATE"
MESSAGE_DELETE = "MESSAGE_DELETE"
MESSAGE_DELETE_BULK = "MESSAGE_DELETE_BULK"
AUTOMOD_ACTION = "AUTOMOD_ACTION"


@dataclass(frozen=True, slots=True)
class Event:
    """Envelope published on a bus subject."""
    type: str
    data: bytes = b"{}"
    guild_id: str = ""
    channel_id: str = ""

    @classmethod
    def from_payload(cls, event_type: str, payload: Any, *, guild_id: str = "", channel_id: str = "") -> "Event":
        """Encode a payload dataclass (or plain mapping) into an envelope."""
        body = asdict(payload) if hasattr(payload, "__dataclass_fields__") else dict(payload)
        return cls(
            type=event_type,
            data=json.dumps(body, separators=(",", ":")).encode("utf-8"),
            guild_id=guild_id,
            channel_id=channel_id,
        )

    def json(self) -> Dict[str, Any]:
        """Decode ``data``. Raises ValueError when it is not a JSON object."""
        decoded = json.loads(self.data)
        if not isinstance(decoded, dict):
            raise ValueError(f"event payload is {type(decoded).__name__}, expected an object")
        return decoded


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


@dataclass(frozen=True, slots=True)
class MessageCreatePayload:
    """Minimal message envelope read from message-create events."""
    id: str
    channel_id: str
    guild_id: str
    author_id: str
    content: str

    @classmethod
    def from_event(cls, event: Event) -> "MessageCreatePayload":
        """Parse the payload; raises ValueError if ``data`` is not valid JSON."""
        raw = event.json()
        return cls(
            id=_as_str(raw.get("id")),
            channel_id=_as_str(raw.get("channel_id")),
            guild_id=_as_str(raw.get("guild_id")),
            author_id=_as_str(raw.get("author_id")),
            content=_as_str(raw.get("content")),
        )


@dataclass(frozen=True, slots=True)
class MessageDeletePayload:
    id: str
    channel_id: str
    guild_id: str


@dataclass(frozen=True, slots=True)
class BulkDeletePayload:
    ids: List[str] = field(default_factory=list)
    channel_id: str | None = None
    guild_id: str | None = None


@dataclass(frozen=True, slots=True)
class RuleTriggeredPayload:
    rule_id: str
    rule_name: str
    action: str
    reason: str
    message_id: str
    user_id: str
    guild_id: str = ""
    channel_id: str = ""
