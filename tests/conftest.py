"""Shared fixtures: synthetic images and a deterministic fake encoder."""

import threading
from io import BytesIO
from typing import List, Tuple

import numpy as np
import pytest
from PIL import Image

from exactsize.compression.encoders import BaseEncoder, EncodeFormat, SourceImage, decode_image
from exactsize.errors import EncodeError


class FakeEncoder(BaseEncoder):
    """Encoder whose output size is a known function of scale and quality.

    size = header + base * scale^2 * quality (quality ignored when lossless)
    """

    file_extension = ".fake"

    def __init__(self, base: int = 3_000_000, header: int = 1000, lossless: bool = False):
        self.base = base
        self.header = header
        self.format_name = "PNG" if lossless else "JPEG"
        self.encode_format = EncodeFormat.LOSSLESS if lossless else EncodeFormat.LOSSY
        self.calls: List[Tuple[float, float]] = []

    def size_for(self, scale: float, quality: float) -> int:
        if self.is_lossless:
            quality = 1.0
        return self.header + int(self.base * scale * scale * quality)

    def encode(self, source, scale=1.0, quality=1.0, options=None) -> bytes:
        self.calls.append((scale, quality))
        return b"\0" * self.size_for(scale, quality)

    def _encode(self, image, quality, options) -> bytes:
        raise NotImplementedError


class FailingEncoder(FakeEncoder):
    """FakeEncoder that raises EncodeError on the Nth encode of an image.

    With fail_for set, only sources with that name fail.
    """

    def __init__(self, fail_on: int = 3, fail_for: str = None, **kwargs):
        super().__init__(**kwargs)
        self.fail_on = fail_on
        self.fail_for = fail_for
        self._counts = {}
        self._lock = threading.Lock()

    def encode(self, source, scale=1.0, quality=1.0, options=None) -> bytes:
        if self.fail_for is None or source.name == self.fail_for:
            with self._lock:
                count = self._counts.get(source.name, 0) + 1
                self._counts[source.name] = count
            if count == self.fail_on:
                raise EncodeError(f"backend rejected {source.name}")
        return super().encode(source, scale, quality, options)


def noise_image(width: int, height: int, mode: str = "RGB", seed: int = 0) -> Image.Image:
    rng = np.random.default_rng(seed)
    channels = {"RGB": 3, "RGBA": 4, "L": 1}[mode]
    data = rng.integers(0, 256, size=(height, width, channels), dtype=np.uint8)
    if channels == 1:
        data = data[:, :, 0]
    return Image.fromarray(data)


def encode_bytes(image: Image.Image, fmt: str, **kwargs) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format=fmt, **kwargs)
    return buffer.getvalue()


@pytest.fixture
def fake_source():
    """3,000,000-byte source backed by a tiny pixel buffer."""
    return SourceImage(
        image=Image.new("1", (4000, 3000)),
        format="JPEG",
        original_size=3_000_000,
        name="photo.jpg",
    )


@pytest.fixture
def jpeg_bytes():
    return encode_bytes(noise_image(320, 240, seed=1), "JPEG", quality=95)


@pytest.fixture
def png_bytes():
    return encode_bytes(noise_image(240, 180, seed=2), "PNG")


@pytest.fixture
def jpeg_source(jpeg_bytes):
    return decode_image(jpeg_bytes, name="noise.jpg")


@pytest.fixture
def png_source(png_bytes):
    return decode_image(png_bytes, name="noise.png")
