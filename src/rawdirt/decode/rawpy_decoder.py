from __future__ import annotations

import asyncio
import io
import logging
from datetime import datetime, timezone
from typing import Optional

import exifread
import rawpy

from rawdirt.decode.interfaces import DecodedImage, DecodeMetadata, RawDecoder
from rawdirt.errors import DecodeError

logger = logging.getLogger(__name__)

DATE_TAGS = (
    "EXIF DateTimeOriginal",
    "EXIF DateTimeDigitized",
    "Image DateTime",
)


def parse_exif_datetime(value: object) -> Optional[datetime]:
    """Parse an EXIF "YYYY:MM:DD HH:MM:SS" value. Camera clocks carry no zone; UTC is assumed."""
    try:
        text = str(value).strip().replace(":", "-", 2)
        return datetime.strptime(text, "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def read_embedded_metadata(data: bytes) -> DecodeMetadata:
    try:
        tags = exifread.process_file(io.BytesIO(data), details=False)
    except Exception as exc:
        logger.warning("EXIF read failed. error=%s", exc)
        return DecodeMetadata()
    if not tags:
        logger.debug("No EXIF tags found in file.")
        return DecodeMetadata()

    timestamp = None
    for tag in DATE_TAGS:
        if tag in tags:
            timestamp = parse_exif_datetime(tags[tag])
            if timestamp:
                break

    def _text(name: str) -> Optional[str]:
        return str(tags[name]).strip() if name in tags else None

    return DecodeMetadata(
        timestamp=timestamp,
        camera_make=_text("Image Make"),
        camera_model=_text("Image Model"),
        lens_model=_text("EXIF LensModel"),
    )


class RawpyDecoder(RawDecoder):
    """LibRaw decoding through rawpy; runs in a worker thread to keep the event loop free."""

    def __init__(self, *, half_size: bool = False) -> None:
        self._half_size = half_size

    def _decode_sync(self, data: bytes) -> DecodedImage:
        try:
            with rawpy.imread(io.BytesIO(data)) as raw:
                rgb = raw.postprocess(
                    use_camera_wb=True,
                    no_auto_bright=True,
                    half_size=self._half_size,
                    output_bps=8,
                    output_color=rawpy.ColorSpace.sRGB,
                )
                raw_width = int(raw.sizes.raw_width)
                raw_height = int(raw.sizes.raw_height)
        except (rawpy.LibRawError, ValueError) as exc:
            raise DecodeError(f"RAW decode failed: {exc}") from exc

        if rgb is None or rgb.size == 0:
            raise DecodeError("No image data from decoder")

        height, width = int(rgb.shape[0]), int(rgb.shape[1])
        colors = int(rgb.shape[2]) if rgb.ndim == 3 else 1
        return DecodedImage(
            pixels=rgb,
            width=width,
            height=height,
            colors=colors,
            metadata=read_embedded_metadata(data),
            raw_width=raw_width or None,
            raw_height=raw_height or None,
        )

    async def decode(self, data: bytes) -> DecodedImage:
        return await asyncio.to_thread(self._decode_sync, data)
