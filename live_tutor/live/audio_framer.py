"""
Microphone framing: float32 samples -> fixed-size 16-bit PCM frames.

CRITICAL: Exactly one frame per FRAME_SIZE samples. A partial buffer is held
until more samples arrive, never padded and sent.
"""
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from live_tutor.live.constants import FRAME_SIZE


@dataclass(frozen=True)
class AudioFrame:
    """One transport-ready audio frame."""
    pcm: bytes          # little-endian int16, FRAME_SIZE samples
    level: float        # 0..1 loudness for UI meters

    @property
    def sample_count(self) -> int:
        return len(self.pcm) // 2


def to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Scale [-1, 1] floats to int16, clamped to [-32768, 32767], truncating."""
    scaled = np.clip(samples.astype(np.float64) * 32768.0, -32768.0, 32767.0)
    return scaled.astype("<i2")


def frame_level(samples: np.ndarray) -> float:
    """Average absolute amplitude scaled by 5, clamped to 1."""
    if samples.size == 0:
        return 0.0
    return float(min(1.0, float(np.abs(samples).mean()) * 5.0))


class AudioFramer:
    """Accumulates arbitrarily sized chunks and emits fixed-size frames."""

    def __init__(
        self,
        frame_size: int = FRAME_SIZE,
        on_frame: Optional[Callable[[AudioFrame], None]] = None,
    ):
        if frame_size <= 0:
            raise ValueError("frame_size must be positive")
        self.frame_size = frame_size
        self.on_frame = on_frame
        self._buffer = np.zeros(frame_size, dtype=np.float32)
        self._cursor = 0

    @property
    def pending(self) -> int:
        """Samples buffered toward the next frame."""
        return self._cursor

    def push(self, chunk) -> list[AudioFrame]:
        """Consume a chunk of float samples; return frames completed by it."""
        samples = np.asarray(chunk, dtype=np.float32).reshape(-1)
        frames: list[AudioFrame] = []
        offset = 0

        while offset < samples.size:
            take = min(self.frame_size - self._cursor, samples.size - offset)
            self._buffer[self._cursor:self._cursor + take] = samples[offset:offset + take]
            self._cursor += take
            offset += take

            if self._cursor == self.frame_size:
                frame = self._emit()
                frames.append(frame)
                if self.on_frame is not None:
                    self.on_frame(frame)

        return frames

    def reset(self) -> None:
        self._cursor = 0

    def _emit(self) -> AudioFrame:
        block = self._buffer
        frame = AudioFrame(pcm=to_pcm16(block).tobytes(), level=frame_level(block))
        self._cursor = 0
        return frame
