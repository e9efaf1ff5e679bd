"""
Unit tests for the Gemini Live transport.

Server messages are built from SimpleNamespace so no network or API key is
needed; the google-genai session is an AsyncMock.
"""
from datetime import timedelta
from types import SimpleNamespace as NS
from unittest.mock import AsyncMock, MagicMock

import pytest
from websockets.exceptions import ConnectionClosedOK

from live_tutor.live.transport import GeminiLiveTransport, translate_server_message
from live_tutor.models.events import EventKind
from live_tutor.models.session_state import SessionConfig


def _content(**kwargs):
    defaults = dict(turn_complete=False, interrupted=False, model_turn=None, output_transcription=None)
    defaults.update(kwargs)
    return NS(server_content=NS(**defaults))


def _text_parts(*texts):
    return NS(parts=[NS(text=t, inline_data=None) for t in texts])


async def _agen(items):
    for item in items:
        yield item


# ── translation ──────────────────────────────────────────────────────────────

def test_partial_text_while_turn_in_progress():
    events = translate_server_message(_content(model_turn=_text_parts("The ")))
    assert [(e.kind, e.text, e.partial) for e in events] == [(EventKind.TEXT_DELTA, "The ", True)]


def test_text_in_completing_message_is_final():
    events = translate_server_message(_content(model_turn=_text_parts("done"), turn_complete=True))
    kinds = [e.kind for e in events]
    assert kinds == [EventKind.TEXT_DELTA, EventKind.TURN_COMPLETE]
    assert events[0].partial is False


def test_turn_complete_without_text_synthesizes_final_delta():
    """Streamed text must always be finalized, even if the last frame carries none."""
    events = translate_server_message(_content(turn_complete=True))
    assert events[0].kind is EventKind.TEXT_DELTA
    assert events[0].text == "" and events[0].partial is False
    assert events[1].kind is EventKind.TURN_COMPLETE


def test_interrupted_comes_first_and_suppresses_final_delta():
    events = translate_server_message(_content(interrupted=True, turn_complete=True))
    assert [e.kind for e in events] == [EventKind.INTERRUPTED, EventKind.TURN_COMPLETE]


def test_inline_audio_becomes_audio_chunk():
    part = NS(text=None, inline_data=NS(mime_type="audio/pcm;rate=24000", data=b"\x01\x02"))
    events = translate_server_message(_content(model_turn=NS(parts=[part])))
    assert len(events) == 1
    assert events[0].kind is EventKind.AUDIO_CHUNK
    assert events[0].data == b"\x01\x02"


def test_output_transcription_is_partial_text():
    events = translate_server_message(_content(output_transcription=NS(text="hello")))
    assert events[0].kind is EventKind.TEXT_DELTA and events[0].partial is True


def test_transcription_in_completing_message_precedes_final_delta():
    """No partial may follow the final delta of a turn."""
    events = translate_server_message(_content(
        model_turn=_text_parts("Answer."),
        output_transcription=NS(text="tail"),
        turn_complete=True,
    ))
    texts = [(e.text, e.partial) for e in events if e.kind is EventKind.TEXT_DELTA]
    assert texts == [("Answer.", True), ("tail", False)]
    assert events[-1].kind is EventKind.TURN_COMPLETE


def test_tool_call_keeps_endpoint_id_and_args():
    message = NS(
        server_content=None,
        tool_call=NS(function_calls=[NS(name="set_timer", args={"duration": 5}, id="fc-1")]),
    )
    (event,) = translate_server_message(message)
    assert event.kind is EventKind.TOOL_CALL
    assert (event.name, event.args, event.call_id) == ("set_timer", {"duration": 5}, "fc-1")


def test_go_away_and_resumption_update():
    message = NS(
        server_content=None,
        go_away=NS(time_left=timedelta(seconds=50)),
        session_resumption_update=NS(resumable=True, new_handle="handle-2"),
    )
    go_away, update = translate_server_message(message)
    assert go_away.kind is EventKind.GO_AWAY and go_away.time_left_s == 50.0
    assert update.kind is EventKind.RESUMPTION_UPDATE and update.handle == "handle-2"


def test_non_resumable_update_is_ignored():
    message = NS(session_resumption_update=NS(resumable=False, new_handle="x"))
    assert translate_server_message(message) == []


def test_unknown_message_maps_to_nothing():
    """Unrecognized frames are tolerated, not errors."""
    assert translate_server_message(NS(setup_complete=NS())) == []


# ── GeminiLiveTransport ──────────────────────────────────────────────────────

@pytest.fixture
def gemini():
    return GeminiLiveTransport(
        SessionConfig(language="es", subject="math", voice="Kore"),
        client=MagicMock(),
    )


def test_connect_config_carries_voice_tools_and_resume_handle(gemini):
    config = gemini.build_connect_config(resume_handle="h-1")
    assert config["response_modalities"] == ["AUDIO"]
    voice = config["speech_config"]["voice_config"]["prebuilt_voice_config"]["voice_name"]
    assert voice == "Kore"
    assert config["session_resumption"] == {"handle": "h-1"}
    names = [f["name"] for f in config["tools"][0]["function_declarations"]]
    assert "draw_diagram" in names
    assert "Spanish" in config["system_instruction"]


@pytest.mark.asyncio
async def test_open_enters_live_connect_and_close_exits(gemini):
    session = AsyncMock()
    cm = MagicMock()
    cm.__aenter__.return_value = session
    gemini._client.aio.live.connect.return_value = cm

    await gemini.open()
    assert gemini._session is session
    kwargs = gemini._client.aio.live.connect.call_args.kwargs
    assert kwargs["model"] == gemini.model

    await gemini.close()
    cm.__aexit__.assert_awaited_once()
    assert gemini._session is None


@pytest.mark.asyncio
async def test_events_translate_until_stream_is_exhausted(gemini):
    session = MagicMock()
    session.receive = MagicMock(side_effect=[
        _agen([_content(model_turn=_text_parts("Hi")), _content(turn_complete=True)]),
        _agen([]),
    ])
    gemini._session = session

    events = [e async for e in gemini.events()]
    assert [e.kind for e in events] == [
        EventKind.TEXT_DELTA, EventKind.TEXT_DELTA, EventKind.TURN_COMPLETE,
    ]


@pytest.mark.asyncio
async def test_events_treat_clean_websocket_close_as_end(gemini):
    async def closing():
        raise ConnectionClosedOK(None, None)
        yield  # pragma: no cover

    session = MagicMock()
    session.receive = MagicMock(return_value=closing())
    gemini._session = session

    assert [e async for e in gemini.events()] == []


@pytest.mark.asyncio
async def test_sends_use_realtime_and_client_content_apis(gemini):
    session = AsyncMock()
    gemini._session = session

    await gemini.send_audio(b"\x00\x01")
    audio = session.send_realtime_input.await_args_list[0].kwargs["audio"]
    assert audio.mime_type == "audio/pcm;rate=16000"
    assert audio.data == b"\x00\x01"

    await gemini.send_image(b"jpg")
    video = session.send_realtime_input.await_args_list[1].kwargs["video"]
    assert video.mime_type == "image/jpeg"

    await gemini.send_text("What is 2+2?")
    kwargs = session.send_client_content.await_args.kwargs
    assert kwargs["turn_complete"] is True
    assert kwargs["turns"].parts[0].text == "What is 2+2?"


@pytest.mark.asyncio
async def test_tool_result_wraps_non_dict_results(gemini):
    session = AsyncMock()
    gemini._session = session

    await gemini.send_tool_result("fc-1", "execute_code", "42")
    (response,) = session.send_tool_response.await_args.kwargs["function_responses"]
    assert response.id == "fc-1"
    assert response.name == "execute_code"
    assert response.response == {"result": "42"}


@pytest.mark.asyncio
async def test_send_before_open_raises(gemini):
    with pytest.raises(RuntimeError):
        await gemini.send_text("hello")
