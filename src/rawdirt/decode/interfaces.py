from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(slots=True)
class DecodeMetadata:
    """Embedded camera metadata. Every field is optional; callers branch on presence."""

    timestamp: Optional[datetime] = None
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    lens_model: Optional[str] = None
    extra: dict = field(default_factory=dict)


@dataclass(slots=True)
class DecodedImage:
    # Interleaved 8-bit samples, `colors` per pixel, row-major. None once released.
    pixels: Optional[Any]
    width: int
    height: int
    colors: int
    metadata: DecodeMetadata = field(default_factory=DecodeMetadata)
    raw_width: Optional[int] = None
    raw_height: Optional[int] = None

    def release(self) -> None:
        self.pixels = None


class RawDecoder:
    async def decode(self, data: bytes) -> DecodedImage:
        """
        Decode RAW file bytes into an 8-bit pixel buffer plus embedded metadata.

        Raises DecodeError when the codec rejects the data.
        """
        raise NotImplementedError
