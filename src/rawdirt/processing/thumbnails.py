from __future__ import annotations

import base64
import io
from typing import Any

import numpy as np
from PIL import Image

from rawdirt.errors import ProcessingError


def to_rgba(pixels: Any, width: int, height: int, colors: int) -> np.ndarray:
    """
    Return the pixel buffer as a (height, width, 4) uint8 array.

    Three-channel input gets an opaque alpha channel appended; four-channel input is
    copied through; any other channel count is rejected.
    """
    if colors not in (3, 4):
        raise ProcessingError(f"Unsupported image color components: {colors}")
    if isinstance(pixels, np.ndarray):
        flat = np.ascontiguousarray(pixels, dtype=np.uint8).reshape(-1)
    else:
        flat = np.frombuffer(pixels, dtype=np.uint8)
    expected = width * height * colors
    if flat.size != expected:
        raise ProcessingError(f"Pixel buffer has {flat.size} samples, expected {expected}")

    source = flat.reshape(height, width, colors)
    if colors == 4:
        return source.copy()
    rgba = np.empty((height, width, 4), dtype=np.uint8)
    rgba[..., :3] = source
    rgba[..., 3] = 255
    return rgba


def thumbnail_dimensions(width: int, height: int, longest_edge: int) -> tuple[int, int]:
    if width >= height:
        return longest_edge, max(1, round(longest_edge * height / width))
    return max(1, round(longest_edge * width / height)), longest_edge


def render_thumbnail(rgba: np.ndarray, *, longest_edge: int = 240, quality: int = 60) -> str:
    """Downscale to the longest edge with Lanczos resampling and return a JPEG data URI."""
    height, width = int(rgba.shape[0]), int(rgba.shape[1])
    size = thumbnail_dimensions(width, height, longest_edge)
    with Image.fromarray(rgba) as image:
        with image.convert("RGB") as rgb:
            with rgb.resize(size, Image.Resampling.LANCZOS) as thumb:
                buffer = io.BytesIO()
                thumb.save(buffer, format="JPEG", quality=quality)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"
