"""Live session settings. Environment overrides are read once at import."""
import os

GEMINI_LIVE_MODEL = os.environ.get("GEMINI_LIVE_MODEL", "gemini-2.0-flash-live-001")
DEFAULT_VOICE = os.environ.get("LIVE_DEFAULT_VOICE", "Puck")

VOICES = {
    "Puck": "Puck (Friendly)",
    "Charon": "Charon (Professional)",
    "Kore": "Kore (Warm)",
    "Fenrir": "Fenrir (Energetic)",
    "Aoede": "Aoede (Clear)",
}

# Audio: model input is 16 kHz mono int16, output is 24 kHz mono int16
INPUT_SAMPLE_RATE = 16000
OUTPUT_SAMPLE_RATE = 24000
FRAME_SIZE = 4096
INPUT_AUDIO_MIME = f"audio/pcm;rate={INPUT_SAMPLE_RATE}"

# Video: periodic stills, 1 FPS
VIDEO_WIDTH = 640
VIDEO_HEIGHT = 480
VIDEO_FRAME_RATE = 1
JPEG_QUALITY = 0.7

CONNECT_TIMEOUT_S = float(os.environ.get("LIVE_CONNECT_TIMEOUT_S", "10"))
MAX_SESSION_MINUTES = 30
USER_SPEAKING_RESET_S = 0.5

LANGUAGE_NAMES = {
    "hi": "Hindi",
    "ne": "Nepali",
    "es": "Spanish",
    "fr": "French",
    "ar": "Arabic",
    "zh": "Chinese",
    "bn": "Bengali",
    "pt": "Portuguese",
    "id": "Indonesian",
}

CONNECTED_MESSAGE = (
    "Connected to AI Tutor. You can start speaking or show me what you're working on!"
)
ENDED_MESSAGE = "Session ended."

TUTOR_SYSTEM_PROMPT = """You are StudyLens Live Tutor, an interactive AI teaching assistant for real-time educational support.

YOUR ROLE:
- You are a patient, encouraging, and knowledgeable tutor
- You help students understand concepts through conversation
- You can see the student's camera/screen and hear their voice

WHEN USING TOOLS:
- Draw diagrams when visual explanation would help
- Run code when demonstrating programming concepts
- Generate practice problems when the student wants to practice
- Always explain what you're doing and why

REMEMBER:
- Keep responses concise for real-time conversation
- Pause and let the student respond
- If you see them struggling, offer hints rather than direct answers"""
