"""
Live session state machine.

LiveSession consumes LiveProtocolClient events and maintains the transcript,
streaming text, speaking indicators and tool states for one tutoring session.
Readers get immutable LiveSessionState snapshots via `state`.

Event handling is synchronous and runs on the client's receive task, so
handlers never interleave. Persistence is write-through on a per-session
ordered writer queue: create -> append/update ... in the order they happened.
"""
import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from live_tutor.live.audio_framer import AudioFrame
from live_tutor.live.constants import (
    CONNECT_TIMEOUT_S,
    CONNECTED_MESSAGE,
    ENDED_MESSAGE,
    USER_SPEAKING_RESET_S,
)
from live_tutor.live.media import ImageFrame, decode_data_url
from live_tutor.live.protocol_client import LiveProtocolClient
from live_tutor.live.tools import TOOL_NAMES
from live_tutor.live.transport import GeminiLiveTransport, LiveTransport
from live_tutor.models.events import (
    AudioChunk,
    Connected,
    Disconnected,
    ErrorEvent,
    EventKind,
    GoAway,
    Interrupted,
    LiveEvent,
    ResumptionUpdate,
    TextDelta,
    ToolCall,
    TurnComplete,
)
from live_tutor.models.session_state import (
    LiveSessionState,
    Message,
    MessageRole,
    MessageType,
    Session,
    SessionConfig,
    SessionPatch,
    SessionStatus,
    StreamingAccumulator,
    ToolState,
)
from live_tutor.models.usage import Identity
from live_tutor.services.transcript_store import SessionStore
from live_tutor.services.usage_ledger import QuotaExceededError, UsageLedger

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[str, dict, str], None]


@dataclass
class PendingToolCall:
    name: str
    args: dict
    endpoint_call_id: Optional[str] = None


class _PersistenceWriter:
    """Runs persistence jobs one at a time, in submission order."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def submit(self, job: Callable[[], Awaitable[None]]) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="live-persist")
        self._queue.put_nowait(job)

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await job()
            except Exception as e:
                logger.warning(f"Live session persistence failed: {e}")
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        if self._worker is not None:
            await self._queue.join()

    async def close(self) -> None:
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None


class LiveSession:
    """One realtime tutoring session: client + transcript + tools + usage."""

    def __init__(
        self,
        config: SessionConfig,
        transport: Optional[LiveTransport] = None,
        store: Optional[SessionStore] = None,
        ledger: Optional[UsageLedger] = None,
        identity: Optional[Identity] = None,
        on_tool_call: Optional[ToolExecutor] = None,
        on_audio: Optional[Callable[[bytes], None]] = None,
        on_state_change: Optional[Callable[[LiveSessionState], None]] = None,
        tool_names: Iterable[str] = TOOL_NAMES,
        max_session_minutes: Optional[float] = None,
        connect_timeout: float = CONNECT_TIMEOUT_S,
    ):
        if ledger is not None and identity is None:
            raise ValueError("identity is required when a usage ledger is attached")

        self.session = Session(config=config)
        self.client = LiveProtocolClient(
            transport or GeminiLiveTransport(config),
            on_event=self._handle_event,
            connect_timeout=connect_timeout,
        )
        self.store = store
        self.ledger = ledger
        self.identity = identity
        self.on_tool_call = on_tool_call
        self.on_audio = on_audio
        self.on_state_change = on_state_change
        self.max_session_minutes = max_session_minutes

        self.messages: list[Message] = []
        self.is_ai_speaking = False
        self.is_user_speaking = False
        self.current_thought: Optional[str] = None
        self.error: Optional[str] = None
        self.tools: dict[str, ToolState] = {name: ToolState(name=name) for name in tool_names}
        self.pending_tool_calls: "OrderedDict[str, PendingToolCall]" = OrderedDict()

        self._accumulator = StreamingAccumulator()
        self._record_id: Optional[str] = None
        self._writer = _PersistenceWriter()
        self._user_speaking_timer: Optional[asyncio.TimerHandle] = None
        self._max_duration_timer: Optional[asyncio.TimerHandle] = None
        self._limit_task: Optional[asyncio.Task] = None

        self._handlers: dict[EventKind, Callable[[Any], None]] = {
            EventKind.CONNECTED: self._on_connected,
            EventKind.DISCONNECTED: self._on_disconnected,
            EventKind.ERROR: self._on_error,
            EventKind.AUDIO_CHUNK: self._on_audio_chunk,
            EventKind.TEXT_DELTA: self._on_text_delta,
            EventKind.TOOL_CALL: self._on_tool_call,
            EventKind.INTERRUPTED: self._on_interrupted,
            EventKind.TURN_COMPLETE: self._on_turn_complete,
            EventKind.GO_AWAY: self._on_go_away,
            EventKind.RESUMPTION_UPDATE: self._on_resumption_update,
        }
        missing = set(EventKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"Unhandled live event kinds: {sorted(k.value for k in missing)}")

    # ── read side ────────────────────────────────────────────────────────────

    @property
    def status(self) -> SessionStatus:
        return self.session.status

    @property
    def connected(self) -> bool:
        return self.client.connected

    @property
    def state(self) -> LiveSessionState:
        return LiveSessionState(
            session_id=self.session.session_id,
            status=self.session.status,
            messages=tuple(self.messages),
            is_ai_speaking=self.is_ai_speaking,
            is_user_speaking=self.is_user_speaking,
            current_thought=self.current_thought,
            error=self.error,
            tools=tuple(ToolState(t.name, t.is_active, t.last_result) for t in self.tools.values()),
            started_at=self.session.started_at,
        )

    # ── lifecycle ────────────────────────────────────────────────────────────

    async def connect(self) -> bool:
        """
        Start the session. With a ledger attached the start is metered first;
        a refused start raises QuotaExceededError and nothing is opened.
        """
        if self.client.state is not SessionStatus.IDLE:
            return await self.client.connect()

        if self.ledger is not None:
            check = await self.ledger.try_start(self.identity)
            if not check.allowed:
                logger.info(f"Live session refused for {self.identity.key}: {check.message}")
                raise QuotaExceededError(check)
            if self.max_session_minutes is None and check.max_session_minutes > 0:
                self.max_session_minutes = check.max_session_minutes

        self.session.status = SessionStatus.CONNECTING
        self.error = None
        self._notify()
        return await self.client.connect()

    async def disconnect(self) -> None:
        was_idle = self.client.state is SessionStatus.IDLE
        await self.client.disconnect()
        if was_idle and not self.session.status.is_terminal:
            self.session.status = SessionStatus.ENDED
            self._notify()
        self._cancel_timers()
        await self._writer.close()

    async def wait_closed(self) -> None:
        await self.client.wait_closed()
        await self._writer.close()

    # ── outbound ─────────────────────────────────────────────────────────────

    def send_audio(self, frame: Union[AudioFrame, bytes]) -> bool:
        pcm = frame.pcm if isinstance(frame, AudioFrame) else frame
        if not self.client.send_audio(pcm):
            return False

        self.is_user_speaking = True
        if self._user_speaking_timer is not None:
            self._user_speaking_timer.cancel()
        self._user_speaking_timer = asyncio.get_running_loop().call_later(
            USER_SPEAKING_RESET_S, self._reset_user_speaking,
        )
        self._notify()
        return True

    def send_image(self, image: Union[ImageFrame, bytes, str]) -> bool:
        if isinstance(image, str):
            image = decode_data_url(image)
        elif isinstance(image, bytes):
            image = ImageFrame(data=image)
        return self.client.send_image(image.data, image.mime_type)

    def send_text(self, text: str) -> bool:
        if not self.client.connected or not text.strip():
            return False
        self._add_message(MessageRole.USER, MessageType.TEXT, text)
        self._notify()
        return self.client.send_text(text)

    def send_tool_result(self, tool_call_id: str, result: Any) -> bool:
        """Answer a specific pending tool call by the id handed to the executor."""
        if not self.client.connected:
            logger.info(f"Tool result for {tool_call_id} dropped: session not connected")
            return False
        pending = self.pending_tool_calls.get(tool_call_id)
        if pending is None:
            logger.warning(f"No pending tool call with id {tool_call_id}")
            return False
        return self._resolve_tool_call(tool_call_id, pending, result)

    def execute_tool_result(self, name: str, result: Any) -> bool:
        """Answer the oldest pending call for this tool."""
        if not self.client.connected:
            logger.info(f"Tool result for {name} dropped: session not connected")
            return False
        for tool_call_id, pending in self.pending_tool_calls.items():
            if pending.name == name:
                return self._resolve_tool_call(tool_call_id, pending, result)
        logger.warning(f"No pending tool call for {name}")
        return False

    def clear_messages(self) -> None:
        """Clear the visible transcript. Persisted rows and counters are kept."""
        self.messages = []
        self.current_thought = None
        self._accumulator.clear()
        self._notify()

    def _resolve_tool_call(self, tool_call_id: str, pending: PendingToolCall, result: Any) -> bool:
        if not self.client.send_tool_result(pending.endpoint_call_id, pending.name, result):
            return False
        del self.pending_tool_calls[tool_call_id]

        self._add_message(
            MessageRole.TOOL,
            MessageType.TOOL_RESULT,
            f"{pending.name} completed",
            metadata={"tool_name": pending.name, "tool_result": result, "tool_call_id": tool_call_id},
        )
        tool = self._tool(pending.name)
        tool.is_active = any(p.name == pending.name for p in self.pending_tool_calls.values())
        tool.last_result = result
        self._notify()
        return True

    # ── event handlers ───────────────────────────────────────────────────────

    def _handle_event(self, event: LiveEvent) -> None:
        self._handlers[event.kind](event)
        self._notify()

    def _on_connected(self, event: Connected) -> None:
        self.session.status = SessionStatus.CONNECTED
        self.error = None
        if event.resumed:
            logger.info(f"Live session {self.session.session_id} resumed")
            self._persist_update(SessionPatch(status=SessionStatus.CONNECTED))
            return

        self.session.mark_started(str(uuid.uuid4()))
        logger.info(f"Live session {self.session.session_id} started")
        if self.store is not None:
            self._writer.submit(self._persist_create)
        self._add_message(MessageRole.SYSTEM, MessageType.TEXT, CONNECTED_MESSAGE)
        self._start_max_duration_timer()

    def _on_disconnected(self, event: Disconnected) -> None:
        was_live = self.session.status in (SessionStatus.CONNECTED, SessionStatus.RECONNECTING)
        if was_live:
            self._add_message(MessageRole.SYSTEM, MessageType.TEXT, ENDED_MESSAGE)
        self.session.status = SessionStatus.ENDED
        self.is_ai_speaking = False
        self.is_user_speaking = False
        self.current_thought = None
        self._accumulator.clear()
        self._cancel_timers()

        if self.session.started_at is None:
            return
        self.session.mark_ended()
        self._persist_update(self._final_patch(SessionStatus.ENDED))
        if was_live and self.ledger is not None:
            duration = self.session.duration_minutes or 0.0
            self._writer.submit(lambda: self._record_usage(duration))
        logger.info(f"Live session {self.session.session_id} ended: {event.reason}")

    def _on_error(self, event: ErrorEvent) -> None:
        self.session.status = SessionStatus.ERROR
        self.error = event.message
        self.is_ai_speaking = False
        self.is_user_speaking = False
        self.current_thought = None
        self._accumulator.clear()
        self._cancel_timers()
        if self.session.started_at is not None:
            self.session.mark_ended()
            self._persist_update(self._final_patch(SessionStatus.ERROR))

    def _on_audio_chunk(self, event: AudioChunk) -> None:
        self.is_ai_speaking = True
        if self.on_audio is not None:
            self.on_audio(event.data)

    def _on_text_delta(self, event: TextDelta) -> None:
        if event.partial:
            self.current_thought = self._accumulator.append(event.text)
            return

        self._accumulator.append(event.text)
        content = self._accumulator.flush()
        self.current_thought = None
        if content.strip():
            self._add_message(MessageRole.ASSISTANT, MessageType.TEXT, content)

    def _on_tool_call(self, event: ToolCall) -> None:
        tool_call_id = str(uuid.uuid4())
        args = dict(event.args or {})
        self.pending_tool_calls[tool_call_id] = PendingToolCall(event.name, args, event.call_id)
        self.session.tool_calls_count += 1

        self._add_message(
            MessageRole.ASSISTANT,
            MessageType.TOOL_CALL,
            f"Using {event.name}...",
            metadata={"tool_name": event.name, "tool_args": args, "tool_call_id": tool_call_id},
        )
        self._tool(event.name).is_active = True

        if self.on_tool_call is not None:
            try:
                self.on_tool_call(event.name, args, tool_call_id)
            except Exception as e:
                logger.error(f"Tool executor failed for {event.name}: {e}", exc_info=True)

    def _on_interrupted(self, event: Interrupted) -> None:
        self.is_ai_speaking = False
        self.current_thought = None
        self._accumulator.clear()

    def _on_turn_complete(self, event: TurnComplete) -> None:
        self.is_ai_speaking = False

    def _on_go_away(self, event: GoAway) -> None:
        self.session.status = SessionStatus.RECONNECTING
        self.is_ai_speaking = False
        self._persist_update(SessionPatch(status=SessionStatus.RECONNECTING))
        logger.info(f"Live session {self.session.session_id} reconnecting ({event.time_left_s:g}s left)")

    def _on_resumption_update(self, event: ResumptionUpdate) -> None:
        pass  # the client keeps the handle

    # ── helpers ──────────────────────────────────────────────────────────────

    def _tool(self, name: str) -> ToolState:
        tool = self.tools.get(name)
        if tool is None:
            tool = self.tools[name] = ToolState(name=name)
        return tool

    def _add_message(
        self,
        role: MessageRole,
        type_: MessageType,
        content: str,
        metadata: Optional[dict] = None,
    ) -> Message:
        message = Message(role=role, type=type_, content=content, metadata=metadata)
        self.messages.append(message)
        self.session.message_count += 1
        if self.store is not None and self.session.session_id is not None:
            self._writer.submit(lambda: self._persist_append(message))
            self._persist_update(SessionPatch(
                message_count=self.session.message_count,
                tool_calls_count=self.session.tool_calls_count,
            ))
        return message

    def _notify(self) -> None:
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(self.state)
        except Exception as e:
            logger.error(f"State listener failed: {e}", exc_info=True)

    def _final_patch(self, status: SessionStatus) -> SessionPatch:
        return SessionPatch(
            status=status,
            ended_at=self.session.ended_at,
            duration=self.session.duration_minutes,
            message_count=self.session.message_count,
            tool_calls_count=self.session.tool_calls_count,
        )

    async def _persist_create(self) -> None:
        self._record_id = await self.store.create_session(self.session)
        if self._record_id is None:
            logger.warning(f"Live session {self.session.session_id} is not being persisted")

    async def _persist_append(self, message: Message) -> None:
        if self._record_id is not None:
            await self.store.append_message(self._record_id, message)

    def _persist_update(self, patch: SessionPatch) -> None:
        if self.store is None:
            return

        async def job() -> None:
            if self._record_id is not None:
                await self.store.update_session(self._record_id, patch)

        self._writer.submit(job)

    async def _record_usage(self, duration_minutes: float) -> None:
        try:
            await self.ledger.record_end(self.identity, duration_minutes)
        except Exception as e:
            logger.error(f"Failed to record live usage for {self.identity.key}: {e}")

    def _reset_user_speaking(self) -> None:
        self._user_speaking_timer = None
        self.is_user_speaking = False
        self._notify()

    def _start_max_duration_timer(self) -> None:
        if not self.max_session_minutes or self.max_session_minutes <= 0:
            return
        self._max_duration_timer = asyncio.get_running_loop().call_later(
            self.max_session_minutes * 60, self._on_max_duration,
        )

    def _on_max_duration(self) -> None:
        self._max_duration_timer = None
        logger.info(
            f"Live session {self.session.session_id} reached its "
            f"{self.max_session_minutes:g} minute limit"
        )
        self._limit_task = asyncio.create_task(self.disconnect())

    def _cancel_timers(self) -> None:
        for timer in (self._user_speaking_timer, self._max_duration_timer):
            if timer is not None:
                timer.cancel()
        self._user_speaking_timer = None
        self._max_duration_timer = None
