"""Session, transcript and tool state for a live tutoring session."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
import uuid


class SessionStatus(str, Enum):
    """Session status enum with DB constraint mapping."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"
    ENDED = "ended"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.ERROR, SessionStatus.ENDED)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class MessageType(str, Enum):
    TEXT = "text"
    AUDIO = "audio"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"


@dataclass(frozen=True)
class SessionConfig:
    """Configuration chosen before connect. Immutable once connected."""
    language: str = "en"
    education_level: Optional[str] = None
    subject: Optional[str] = None
    voice: Optional[str] = None
    voice_enabled: bool = True
    video_enabled: bool = True
    user_id: Optional[str] = None


@dataclass(frozen=True)
class Message:
    """
    One finalized transcript entry.

    timestamp is the finalization time, not the time streaming began.
    metadata is never required for text messages.
    """
    role: MessageRole
    type: MessageType
    content: str
    metadata: Optional[dict[str, Any]] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "type": self.type.value,
            "content": self.content,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
        }


class StreamingAccumulator:
    """Holds in-progress assistant text until a final delta flushes it."""

    def __init__(self) -> None:
        self._parts: list[str] = []

    def append(self, text: str) -> str:
        if text:
            self._parts.append(text)
        return self.text

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def flush(self) -> str:
        """Return accumulated text and clear the buffer."""
        text = self.text
        self._parts.clear()
        return text

    def clear(self) -> None:
        self._parts.clear()

    def __bool__(self) -> bool:
        return bool(self._parts)


@dataclass
class ToolState:
    """Tracks one tool capability. is_active spans tool_call -> tool_result."""
    name: str
    is_active: bool = False
    last_result: Any = None


@dataclass
class Session:
    """
    One realtime tutoring interaction.

    Owned by a single LiveSession for its lifetime. message_count and
    tool_calls_count only ever go up.
    """
    config: SessionConfig = field(default_factory=SessionConfig)
    session_id: Optional[str] = None
    status: SessionStatus = SessionStatus.IDLE
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    message_count: int = 0
    tool_calls_count: int = 0

    @property
    def language(self) -> str:
        return self.config.language

    @property
    def education_level(self) -> Optional[str]:
        return self.config.education_level

    @property
    def subject(self) -> Optional[str]:
        return self.config.subject

    @property
    def duration_minutes(self) -> Optional[float]:
        """Fractional minutes between start and end, or None while running."""
        if self.started_at is None or self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds() / 60.0

    def mark_started(self, session_id: str) -> None:
        self.session_id = session_id
        self.started_at = datetime.now(timezone.utc)

    def mark_ended(self) -> None:
        if self.ended_at is None:
            self.ended_at = datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionPatch:
    """Partial update sent to the persistence gateway."""
    status: Optional[SessionStatus] = None
    ended_at: Optional[datetime] = None
    duration: Optional[float] = None
    message_count: Optional[int] = None
    tool_calls_count: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        patch: dict[str, Any] = {}
        if self.status is not None:
            patch["status"] = self.status.value
        if self.ended_at is not None:
            patch["ended_at"] = self.ended_at
        if self.duration is not None:
            patch["duration"] = self.duration
        if self.message_count is not None:
            patch["message_count"] = self.message_count
        if self.tool_calls_count is not None:
            patch["tool_calls_count"] = self.tool_calls_count
        return patch


@dataclass(frozen=True)
class LiveSessionState:
    """Read-only projection of a LiveSession for UI consumers."""
    session_id: Optional[str]
    status: SessionStatus
    messages: tuple[Message, ...]
    is_ai_speaking: bool
    is_user_speaking: bool
    current_thought: Optional[str]
    error: Optional[str]
    tools: tuple[ToolState, ...]
    started_at: Optional[datetime]
