"""Still-frame encoding for camera and screen-share snapshots."""
import base64
import io
import re
from dataclasses import dataclass

from PIL import Image

from live_tutor.live.constants import JPEG_QUALITY, VIDEO_HEIGHT, VIDEO_WIDTH

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


@dataclass(frozen=True)
class ImageFrame:
    data: bytes
    mime_type: str = "image/jpeg"


def encode_jpeg(
    image: Image.Image,
    quality: float = JPEG_QUALITY,
    max_size: tuple[int, int] = (VIDEO_WIDTH, VIDEO_HEIGHT),
) -> ImageFrame:
    """
    Encode a PIL image as a JPEG still.

    quality is 0..1 like a canvas toDataURL quality argument.
    """
    if not 0.0 < quality <= 1.0:
        raise ValueError("quality must be in (0, 1]")

    frame = image.convert("RGB")
    frame.thumbnail(max_size)
    out = io.BytesIO()
    frame.save(out, format="JPEG", quality=int(round(quality * 100)))
    return ImageFrame(data=out.getvalue())


def decode_data_url(image_data: str, mime_type: str = "image/jpeg") -> ImageFrame:
    """Accept a browser data URL or bare base64 string."""
    payload = _DATA_URL_PREFIX.sub("", image_data)
    return ImageFrame(data=base64.b64decode(payload), mime_type=mime_type)
