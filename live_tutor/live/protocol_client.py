"""
Live protocol client: connection lifecycle against the inference endpoint.

State machine:
    idle -> connecting -> connected -> {reconnecting <-> connected} -> ended
    any non-terminal state -> error
ended and error are terminal. A new session needs a new client.

CRITICAL: Inbound events are dispatched one at a time, in arrival order, from
a single receive task. Outbound sends are queued and drained by one sender
task so frames leave in the order they were sent. Send failures surface as an
error event, never as an exception to the caller.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from live_tutor.live.constants import CONNECT_TIMEOUT_S
from live_tutor.live.transport import LiveTransport
from live_tutor.models.events import (
    Connected,
    Disconnected,
    ErrorEvent,
    EventKind,
    LiveEvent,
)
from live_tutor.models.session_state import SessionStatus
from live_tutor.observability.tracing import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

EventHandler = Callable[[LiveEvent], None]


class LiveProtocolClient:
    """Owns one transport connection and maps it onto a single event callback."""

    def __init__(
        self,
        transport: LiveTransport,
        on_event: EventHandler,
        connect_timeout: float = CONNECT_TIMEOUT_S,
    ):
        self._transport = transport
        self._on_event = on_event
        self._connect_timeout = connect_timeout

        self.state: SessionStatus = SessionStatus.IDLE
        self.error: Optional[str] = None
        self.resume_handle: Optional[str] = None

        self._closed = False  # no callbacks after teardown
        self._receive_task: Optional[asyncio.Task] = None
        self._sender_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None
        self._outbound: asyncio.Queue = asyncio.Queue()

    @property
    def connected(self) -> bool:
        return self.state is SessionStatus.CONNECTED

    # ── lifecycle ────────────────────────────────────────────────────────────

    async def connect(self) -> bool:
        """
        Open the stream. Returns True once connected.

        Never raises for transport problems: a timeout or failure moves the
        client to error and dispatches an ErrorEvent.
        """
        if self.state in (SessionStatus.CONNECTING, SessionStatus.CONNECTED, SessionStatus.RECONNECTING):
            logger.info(f"connect() ignored: already {self.state.value}")
            return self.connected
        if self.state.is_terminal:
            logger.warning(f"connect() refused: client is {self.state.value}, create a new one")
            return False

        self.state = SessionStatus.CONNECTING
        with tracer.start_as_current_span("live.connect") as span:
            try:
                await asyncio.wait_for(self._transport.open(), timeout=self._connect_timeout)
            except asyncio.TimeoutError:
                span.set_attribute("live.error", "timeout")
                await self._fail_and_wait(f"Connection timed out after {self._connect_timeout:g}s")
                return False
            except Exception as e:
                span.set_attribute("live.error", str(e))
                await self._fail_and_wait(f"Connection failed: {e}")
                return False

        if self.state is not SessionStatus.CONNECTING:
            # disconnect() ran while the transport was opening
            await self._transport.close()
            return False

        self.state = SessionStatus.CONNECTED
        self._dispatch(Connected())
        self._sender_task = asyncio.create_task(self._send_loop(), name="live-send")
        self._receive_task = asyncio.create_task(self._receive_loop(), name="live-receive")
        logger.info("Live session connected")
        return True

    async def disconnect(self) -> None:
        """Unconditional teardown. In-flight sends are dropped."""
        if self.state.is_terminal:
            return
        was_idle = self.state is SessionStatus.IDLE
        self.state = SessionStatus.ENDED
        await self._teardown()
        if not was_idle:
            self._dispatch(Disconnected(reason="Disconnected by client"))
        self._closed = True
        logger.info("Live session disconnected")

    async def wait_closed(self) -> None:
        """Wait for the receive loop and any teardown to finish."""
        for task in (self._receive_task, self._teardown_task):
            if task is not None and task is not asyncio.current_task():
                await asyncio.gather(task, return_exceptions=True)

    # ── outbound ─────────────────────────────────────────────────────────────

    def send_audio(self, pcm: bytes) -> bool:
        return self._enqueue("audio", self._transport.send_audio, pcm)

    def send_image(self, data: bytes, mime_type: str = "image/jpeg") -> bool:
        return self._enqueue("image", self._transport.send_image, data, mime_type)

    def send_text(self, text: str) -> bool:
        return self._enqueue("text", self._transport.send_text, text)

    def send_tool_result(self, call_id: Optional[str], name: str, result: Any) -> bool:
        return self._enqueue("tool_result", self._transport.send_tool_result, call_id, name, result)

    def _enqueue(self, what: str, send: Callable[..., Awaitable[None]], *args: Any) -> bool:
        if not self.connected:
            logger.debug(f"Cannot send {what}: not connected ({self.state.value})")
            return False
        self._outbound.put_nowait((what, send, args))
        return True

    async def _send_loop(self) -> None:
        while True:
            what, send, args = await self._outbound.get()
            try:
                await send(*args)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._fail(f"Failed to send {what}: {e}")
                return

    # ── inbound ──────────────────────────────────────────────────────────────

    async def _receive_loop(self) -> None:
        try:
            while True:
                go_away = False
                async for event in self._transport.events():
                    if self._closed or self.state.is_terminal:
                        return
                    if event.kind is EventKind.ERROR:
                        self._fail(event.message)
                        return
                    if event.kind is EventKind.RESUMPTION_UPDATE:
                        self.resume_handle = event.handle
                    if event.kind is EventKind.GO_AWAY:
                        self.state = SessionStatus.RECONNECTING
                        go_away = True
                    self._dispatch(event)
                    if go_away:
                        break
                if not go_away:
                    break
                if not await self._resume():
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(f"Connection lost: {e}")
            return

        self._finish("Session ended")

    async def _resume(self) -> bool:
        """Reopen after a GoAway using the last resumption handle."""
        logger.info(f"Endpoint requested reconnect (handle={'yes' if self.resume_handle else 'no'})")
        with tracer.start_as_current_span("live.resume"):
            try:
                await self._transport.close()
                await asyncio.wait_for(
                    self._transport.open(resume_handle=self.resume_handle),
                    timeout=self._connect_timeout,
                )
            except asyncio.TimeoutError:
                self._fail(f"Reconnect timed out after {self._connect_timeout:g}s")
                return False
            except Exception as e:
                self._fail(f"Reconnect failed: {e}")
                return False

        if self.state is not SessionStatus.RECONNECTING:
            return False
        self.state = SessionStatus.CONNECTED
        self._dispatch(Connected(resumed=True))
        return True

    def _dispatch(self, event: LiveEvent) -> None:
        if self._closed:
            return
        try:
            self._on_event(event)
        except Exception as e:
            logger.error(f"Live event handler failed on {event.kind.value}: {e}", exc_info=True)

    # ── terminal transitions ─────────────────────────────────────────────────

    def _finish(self, reason: str) -> None:
        """Clean close by the endpoint."""
        if self.state.is_terminal:
            return
        self.state = SessionStatus.ENDED
        self._dispatch(Disconnected(reason=reason))
        self._closed = True
        self._teardown_task = asyncio.create_task(self._teardown())

    def _fail(self, message: str) -> Optional[asyncio.Task]:
        if self.state.is_terminal:
            return None
        logger.error(f"Live session error: {message}")
        self.state = SessionStatus.ERROR
        self.error = message
        self._dispatch(ErrorEvent(message=message))
        self._closed = True
        self._teardown_task = asyncio.create_task(self._teardown())
        return self._teardown_task

    async def _fail_and_wait(self, message: str) -> None:
        task = self._fail(message)
        if task is not None:
            await task

    async def _teardown(self) -> None:
        current = asyncio.current_task()
        tasks = [
            t for t in (self._receive_task, self._sender_task)
            if t is not None and t is not current and not t.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        while not self._outbound.empty():
            self._outbound.get_nowait()

        try:
            await self._transport.close()
        except Exception as e:
            logger.warning(f"Transport close failed: {e}")
