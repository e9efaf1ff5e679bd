"""Unit tests for still-frame encoding."""
import base64
import io

import pytest
from PIL import Image

from live_tutor.live.media import decode_data_url, encode_jpeg


def test_encode_jpeg_produces_jpeg_within_bounds():
    """Large frames are downscaled to fit 640x480."""
    frame = encode_jpeg(Image.new("RGB", (1280, 960), color=(200, 30, 30)))
    assert frame.mime_type == "image/jpeg"
    assert frame.data[:2] == b"\xff\xd8"

    decoded = Image.open(io.BytesIO(frame.data))
    assert decoded.size == (640, 480)


def test_encode_jpeg_converts_rgba():
    frame = encode_jpeg(Image.new("RGBA", (100, 100), color=(0, 0, 0, 0)))
    assert Image.open(io.BytesIO(frame.data)).mode == "RGB"


def test_lower_quality_yields_smaller_output():
    image = Image.effect_noise((320, 240), 64).convert("RGB")
    assert len(encode_jpeg(image, quality=0.2).data) < len(encode_jpeg(image, quality=0.95).data)


@pytest.mark.parametrize("quality", [0, -0.1, 1.5])
def test_encode_jpeg_rejects_out_of_range_quality(quality):
    with pytest.raises(ValueError):
        encode_jpeg(Image.new("RGB", (10, 10)), quality=quality)


def test_decode_data_url_strips_prefix():
    raw = b"\xff\xd8jpegbytes"
    frame = decode_data_url("data:image/jpeg;base64," + base64.b64encode(raw).decode())
    assert frame.data == raw


def test_decode_data_url_accepts_bare_base64():
    raw = b"plain"
    frame = decode_data_url(base64.b64encode(raw).decode(), mime_type="image/png")
    assert frame.data == raw
    assert frame.mime_type == "image/png"
