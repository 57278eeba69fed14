from __future__ import annotations

import io
import os
import sys
from pathlib import Path
from typing import List

import pytest
from PIL import Image

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.errors import EncodeError
from common.types import AssetCollection, ImageFormat
from image_server.encoder import PillowEncoder


def write_png(path: Path, size=(32, 24), color=(200, 30, 30, 255), mode="RGBA") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new(mode, size, color if mode == "RGBA" else color[:3]).save(path, format="PNG")
    return path


class CountingEncoder(PillowEncoder):
    """PillowEncoder that records every call."""

    def __init__(self, quality: int = 85):
        super().__init__(quality)
        self.calls: List[tuple] = []

    def encode(self, data: bytes, fmt: ImageFormat, *, source="<bytes>") -> bytes:
        self.calls.append((str(source), fmt))
        return super().encode(data, fmt, source=source)


class FailingEncoder:
    def encode(self, data: bytes, fmt: ImageFormat, *, source="<bytes>") -> bytes:
        raise EncodeError(source, "boom")


def decode_format(path: Path) -> str:
    with Image.open(io.BytesIO(path.read_bytes())) as img:
        img.load()
        return img.format


@pytest.fixture
def roots(tmp_path: Path):
    images = tmp_path / "images"
    cache = tmp_path / "cache"
    images.mkdir()
    return images, cache


@pytest.fixture
def logos(roots) -> AssetCollection:
    images, cache = roots
    return AssetCollection.under("Logos", images, cache)


@pytest.fixture
def encoder() -> CountingEncoder:
    return CountingEncoder()
