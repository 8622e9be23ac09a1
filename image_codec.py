"""Pillow-based image decoder producing fixed-size RGB pixel arrays."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from errors import DecodeError
from models import ImageHandle

COMPARE_SIZE = 100


class PillowImageCodec:
    def __init__(self, size: int = COMPARE_SIZE) -> None:
        self.size = size

    def decode(self, handle: ImageHandle) -> np.ndarray:
        """Return a ``(size, size, 3)`` uint8 array; raises DecodeError if unreadable."""
        try:
            if isinstance(handle, bytes):
                img = Image.open(BytesIO(handle))
            else:
                img = Image.open(Path(handle))
            with img:
                if img.mode in ("RGBA", "LA", "P"):
                    img = img.convert("RGBA")
                    background = Image.new("RGB", img.size, (255, 255, 255))
                    background.paste(img, mask=img.split()[-1])
                    img = background
                else:
                    img = img.convert("RGB")
                img = img.resize((self.size, self.size), Image.Resampling.BILINEAR)
                return np.asarray(img, dtype=np.uint8)
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise DecodeError(f"cannot decode image: {exc}") from exc
