from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from rawdirt.decode.interfaces import DecodeMetadata

STAGE_STARTING = "Starting..."
STAGE_FETCHING = "Fetching file..."
STAGE_DECODING = "Decoding RAW file..."
STAGE_PROCESSING = "Processing image data..."
STAGE_METADATA = "Extracting metadata..."
STAGE_THUMBNAIL = "Generating thumbnail..."
STAGE_INDEX = "Updating index..."


@dataclass(frozen=True, slots=True)
class FileJob:
    key: str
    url: Optional[str]


@dataclass(slots=True)
class ProcessedResult:
    key: str
    # (height, width, 4) uint8 array; None once released.
    pixels: Optional[Any]
    width: int
    height: int
    colors: int = 4
    capture_date: Optional[datetime] = None
    thumbnail_data_uri: Optional[str] = None
    original_width: Optional[int] = None
    original_height: Optional[int] = None
    metadata: DecodeMetadata = field(default_factory=DecodeMetadata)

    def release(self) -> None:
        self.pixels = None

    def derived_fields(self) -> Dict[str, Any]:
        """Record-attribute updates for the fields this result derives."""
        return {
            "capture_date": self.capture_date,
            "thumbnail_data_uri": self.thumbnail_data_uri,
            "display_width": self.width,
            "display_height": self.height,
            "original_width": self.original_width,
            "original_height": self.original_height,
        }
