"""Live session configuration for clients. The endpoint key never leaves the server."""
import os

from fastapi import APIRouter, Header, HTTPException
from pydantic import BaseModel

from live_tutor.live.constants import (
    DEFAULT_VOICE,
    GEMINI_LIVE_MODEL,
    INPUT_SAMPLE_RATE,
    JPEG_QUALITY,
    MAX_SESSION_MINUTES,
    OUTPUT_SAMPLE_RATE,
    VIDEO_FRAME_RATE,
    VOICES,
)
from live_tutor.live.tools import TOOL_NAMES

router = APIRouter(prefix="/live", tags=["live"])

GUEST_MAX_SESSION_MINUTES = 10


class LiveFeatures(BaseModel):
    voice_enabled: bool = True
    video_enabled: bool = True
    screen_share_enabled: bool = True
    tools_enabled: bool = True


class LiveConfigResponse(BaseModel):
    model: str
    default_voice: str
    voices: dict[str, str]
    max_duration_s: int
    input_sample_rate: int
    output_sample_rate: int
    video_frame_rate: int
    jpeg_quality: float
    tools: list[str]
    features: LiveFeatures


@router.get("/config", response_model=LiveConfigResponse)
async def get_live_config(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
) -> LiveConfigResponse:
    if not os.environ.get("GEMINI_API_KEY"):
        raise HTTPException(status_code=500, detail="Live API not configured")

    max_minutes = MAX_SESSION_MINUTES if x_user_id else GUEST_MAX_SESSION_MINUTES
    return LiveConfigResponse(
        model=GEMINI_LIVE_MODEL,
        default_voice=DEFAULT_VOICE,
        voices=VOICES,
        max_duration_s=max_minutes * 60,
        input_sample_rate=INPUT_SAMPLE_RATE,
        output_sample_rate=OUTPUT_SAMPLE_RATE,
        video_frame_rate=VIDEO_FRAME_RATE,
        jpeg_quality=JPEG_QUALITY,
        tools=list(TOOL_NAMES),
        features=LiveFeatures(),
    )
