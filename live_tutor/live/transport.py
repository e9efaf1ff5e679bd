"""
Transports to the live inference endpoint.

A transport owns exactly one bidirectional connection and translates wire
frames into the closed LiveEvent set. It does not hold session state.
"""
import abc
import logging
import os
from typing import Any, AsyncIterator, Optional

from google import genai
from google.genai import types
from websockets.exceptions import ConnectionClosedOK

from live_tutor.live.constants import DEFAULT_VOICE, GEMINI_LIVE_MODEL, INPUT_AUDIO_MIME
from live_tutor.live.tools import build_system_prompt, tools_for_gemini
from live_tutor.models.events import (
    AudioChunk,
    GoAway,
    Interrupted,
    LiveEvent,
    ResumptionUpdate,
    TextDelta,
    ToolCall,
    TurnComplete,
)
from live_tutor.models.session_state import SessionConfig

logger = logging.getLogger(__name__)


class LiveTransport(abc.ABC):
    """One bidirectional stream to the inference endpoint."""

    @abc.abstractmethod
    async def open(self, resume_handle: Optional[str] = None) -> None:
        """Open the stream. Returns once the endpoint acknowledges the session."""

    @abc.abstractmethod
    async def close(self) -> None:
        ...

    @abc.abstractmethod
    def events(self) -> AsyncIterator[LiveEvent]:
        """
        Yield inbound events in arrival order.

        Returning normally means the endpoint closed the stream cleanly;
        raising means the connection dropped.
        """

    @abc.abstractmethod
    async def send_audio(self, pcm: bytes) -> None:
        ...

    @abc.abstractmethod
    async def send_image(self, data: bytes, mime_type: str = "image/jpeg") -> None:
        ...

    @abc.abstractmethod
    async def send_text(self, text: str) -> None:
        ...

    @abc.abstractmethod
    async def send_tool_result(self, call_id: Optional[str], name: str, result: Any) -> None:
        ...


def translate_server_message(message: Any) -> list[LiveEvent]:
    """
    Map one Gemini LiveServerMessage to LiveEvents.

    Unknown or empty messages map to no events. Model text and output
    transcription are emitted in that order; when the turn completes, the last
    of them is the final delta. A completing message without any text gets an
    empty final TextDelta so that streamed text always gets finalized.
    """
    events: list[LiveEvent] = []

    content = getattr(message, "server_content", None)
    if content is not None:
        turn_complete = bool(getattr(content, "turn_complete", False))
        interrupted = bool(getattr(content, "interrupted", False))
        texts: list[str] = []

        if interrupted:
            events.append(Interrupted())

        model_turn = getattr(content, "model_turn", None)
        for part in (getattr(model_turn, "parts", None) or []):
            text = getattr(part, "text", None)
            if text:
                texts.append(text)

            inline = getattr(part, "inline_data", None)
            mime_type = getattr(inline, "mime_type", None) or ""
            if inline is not None and "audio" in mime_type and inline.data:
                events.append(AudioChunk(data=inline.data, mime_type=mime_type))

        transcription = getattr(content, "output_transcription", None)
        transcript_text = getattr(transcription, "text", None)
        if transcript_text:
            texts.append(transcript_text)

        for i, text in enumerate(texts):
            last = i == len(texts) - 1
            events.append(TextDelta(text=text, partial=not (turn_complete and last)))

        if turn_complete:
            if not texts and not interrupted:
                events.append(TextDelta(text="", partial=False))
            events.append(TurnComplete())

    tool_call = getattr(message, "tool_call", None)
    if tool_call is not None:
        for call in (getattr(tool_call, "function_calls", None) or []):
            events.append(ToolCall(
                name=call.name,
                args=dict(call.args or {}),
                call_id=getattr(call, "id", None),
            ))

    go_away = getattr(message, "go_away", None)
    if go_away is not None:
        events.append(GoAway(time_left_s=_parse_time_left(getattr(go_away, "time_left", None))))

    update = getattr(message, "session_resumption_update", None)
    if update is not None and getattr(update, "resumable", False):
        handle = getattr(update, "new_handle", None)
        if handle:
            events.append(ResumptionUpdate(handle=handle))

    return events


def _parse_time_left(value: Any) -> float:
    """time_left arrives as a timedelta, a number, or a string like '50s'."""
    if value is None:
        return 0.0
    if hasattr(value, "total_seconds"):
        return float(value.total_seconds())
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().rstrip("sS") or 0)
    except ValueError:
        return 0.0


class GeminiLiveTransport(LiveTransport):
    """Gemini Live API over google-genai's async websocket session."""

    def __init__(
        self,
        config: SessionConfig,
        api_key: Optional[str] = None,
        model: str = GEMINI_LIVE_MODEL,
        client: Optional[genai.Client] = None,
    ):
        self.config = config
        self.model = model
        self._client = client or genai.Client(api_key=api_key or os.environ["GEMINI_API_KEY"])
        self._session_cm = None
        self._session = None

    def build_connect_config(self, resume_handle: Optional[str] = None) -> dict:
        return {
            "response_modalities": ["AUDIO"],
            "speech_config": {
                "voice_config": {
                    "prebuilt_voice_config": {"voice_name": self.config.voice or DEFAULT_VOICE},
                },
            },
            "system_instruction": build_system_prompt(self.config),
            "tools": tools_for_gemini(),
            "output_audio_transcription": {},
            "session_resumption": {"handle": resume_handle},
        }

    async def open(self, resume_handle: Optional[str] = None) -> None:
        logger.info(f"Opening Gemini Live session (model={self.model}, resume={bool(resume_handle)})")
        self._session_cm = self._client.aio.live.connect(
            model=self.model,
            config=self.build_connect_config(resume_handle),
        )
        self._session = await self._session_cm.__aenter__()

    async def close(self) -> None:
        cm, self._session_cm, self._session = self._session_cm, None, None
        if cm is None:
            return
        try:
            await cm.__aexit__(None, None, None)
        except Exception as e:
            logger.info(f"Gemini Live close handled: {e}")

    async def events(self) -> AsyncIterator[LiveEvent]:
        if self._session is None:
            raise RuntimeError("Transport is not open")
        try:
            while self._session is not None:
                received = 0
                async for message in self._session.receive():
                    received += 1
                    for event in translate_server_message(message):
                        yield event
                if received == 0:
                    return
        except ConnectionClosedOK:
            logger.info("Gemini Live stream closed by endpoint")

    async def send_audio(self, pcm: bytes) -> None:
        await self._require_session().send_realtime_input(
            audio=types.Blob(data=pcm, mime_type=INPUT_AUDIO_MIME),
        )

    async def send_image(self, data: bytes, mime_type: str = "image/jpeg") -> None:
        await self._require_session().send_realtime_input(
            video=types.Blob(data=data, mime_type=mime_type),
        )

    async def send_text(self, text: str) -> None:
        await self._require_session().send_client_content(
            turns=types.Content(role="user", parts=[types.Part(text=text)]),
            turn_complete=True,
        )

    async def send_tool_result(self, call_id: Optional[str], name: str, result: Any) -> None:
        response = result if isinstance(result, dict) else {"result": result}
        await self._require_session().send_tool_response(
            function_responses=[types.FunctionResponse(id=call_id, name=name, response=response)],
        )

    def _require_session(self):
        if self._session is None:
            raise RuntimeError("Transport is not open")
        return self._session
