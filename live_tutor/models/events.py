"""
Inbound events from the live inference endpoint.

The set of event kinds is closed: every transport translates its wire frames
into exactly these dataclasses, and LiveSession refuses to build unless it has
a handler for every EventKind.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class EventKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    AUDIO_CHUNK = "audio_chunk"
    TEXT_DELTA = "text_delta"
    TOOL_CALL = "tool_call"
    INTERRUPTED = "interrupted"
    TURN_COMPLETE = "turn_complete"
    GO_AWAY = "go_away"
    RESUMPTION_UPDATE = "resumption_update"


@dataclass(frozen=True)
class Connected:
    resumed: bool = False
    kind: EventKind = field(default=EventKind.CONNECTED, init=False)


@dataclass(frozen=True)
class Disconnected:
    reason: str = "Session ended"
    kind: EventKind = field(default=EventKind.DISCONNECTED, init=False)


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    kind: EventKind = field(default=EventKind.ERROR, init=False)


@dataclass(frozen=True)
class AudioChunk:
    data: bytes
    mime_type: str = "audio/pcm;rate=24000"
    kind: EventKind = field(default=EventKind.AUDIO_CHUNK, init=False)


@dataclass(frozen=True)
class TextDelta:
    text: str
    partial: bool
    kind: EventKind = field(default=EventKind.TEXT_DELTA, init=False)


@dataclass(frozen=True)
class ToolCall:
    """A function call requested by the model. call_id is the endpoint's id."""
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None
    kind: EventKind = field(default=EventKind.TOOL_CALL, init=False)


@dataclass(frozen=True)
class Interrupted:
    kind: EventKind = field(default=EventKind.INTERRUPTED, init=False)


@dataclass(frozen=True)
class TurnComplete:
    kind: EventKind = field(default=EventKind.TURN_COMPLETE, init=False)


@dataclass(frozen=True)
class GoAway:
    """Endpoint warning that the connection will be closed soon."""
    time_left_s: float = 0.0
    kind: EventKind = field(default=EventKind.GO_AWAY, init=False)


@dataclass(frozen=True)
class ResumptionUpdate:
    handle: str
    kind: EventKind = field(default=EventKind.RESUMPTION_UPDATE, init=False)


LiveEvent = Union[
    Connected,
    Disconnected,
    ErrorEvent,
    AudioChunk,
    TextDelta,
    ToolCall,
    Interrupted,
    TurnComplete,
    GoAway,
    ResumptionUpdate,
]
