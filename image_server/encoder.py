from __future__ import annotations

import io
from pathlib import Path
from typing import Protocol, Union

from PIL import Image, UnidentifiedImageError

from common.errors import EncodeError
from common.types import ImageFormat


class Encoder(Protocol):
    """
    Re-encode capability used by the derivative cache.

    Implementations are plain blocking callables; the cache dispatches them
    to a worker thread. They must be deterministic for a given input so that
    concurrent writers of the same cache key produce identical bytes.
    """

    def encode(self, data: bytes, fmt: ImageFormat, *, source: Union[str, Path] = "<bytes>") -> bytes:
        ...


class PillowEncoder:
    """Encoder backed by Pillow."""

    def __init__(self, quality: int = 85):
        self.quality = int(quality)

    def encode(self, data: bytes, fmt: ImageFormat, *, source: Union[str, Path] = "<bytes>") -> bytes:
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                out = self._prepare(img, fmt)
                buf = io.BytesIO()
                params = {"quality": self.quality} if fmt.is_lossy else {"optimize": True}
                out.save(buf, format=fmt.pillow_format, **params)
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
            raise EncodeError(source, f"{type(e).__name__}: {e}") from e
        return buf.getvalue()

    @staticmethod
    def _prepare(img: Image.Image, fmt: ImageFormat) -> Image.Image:
        # JPEG has no alpha; flatten transparent sources onto white
        if fmt.pillow_format != "JPEG":
            return img if img.mode in ("RGB", "RGBA") else img.convert("RGBA")
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            rgba = img.convert("RGBA")
            bg = Image.new("RGB", rgba.size, (255, 255, 255))
            bg.paste(rgba, mask=rgba.getchannel("A"))
            return bg
        return img if img.mode in ("RGB", "L") else img.convert("RGB")
