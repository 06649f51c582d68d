from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from rawdirt.utils import format_iso, parse_iso

logger = logging.getLogger(__name__)

# Record attribute -> field name inside the shared index document.
INDEX_FIELD_NAMES: Dict[str, str] = {
    "size": "size",
    "store_last_modified": "s3LastModified",
    "capture_date": "exifDate",
    "thumbnail_data_uri": "thumbnailDataUrl",
    "thumbnail_s3_key": "thumbnailS3Key",
    "display_width": "width",
    "display_height": "height",
    "original_width": "originalWidth",
    "original_height": "originalHeight",
}
RECORD_FIELD_NAMES: Dict[str, str] = {v: k for k, v in INDEX_FIELD_NAMES.items()}

DATE_INDEX_FIELDS = frozenset({"exifDate", "s3LastModified"})

# Regenerated on demand and never persisted beyond the local session.
EPHEMERAL_FIELDS = frozenset({"presigned_url"})


@dataclass(slots=True)
class RawFileRecord:
    key: str
    size: int
    store_last_modified: datetime
    capture_date: Optional[datetime] = None
    presigned_url: Optional[str] = None
    thumbnail_data_uri: Optional[str] = None
    thumbnail_s3_key: Optional[str] = None
    display_width: Optional[int] = None
    display_height: Optional[int] = None
    original_width: Optional[int] = None
    original_height: Optional[int] = None
    # User-editable metadata (title, tags, rating, ...) carried through verbatim.
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def effective_date(self) -> datetime:
        """Capture date once known, otherwise the store's last-modified timestamp."""
        return self.capture_date or self.store_last_modified

    def copy(self) -> RawFileRecord:
        clone = RawFileRecord(**{f.name: getattr(self, f.name) for f in fields(self)})
        clone.extra = dict(self.extra)
        return clone

    def apply(self, updates: Mapping[str, Any]) -> None:
        """Apply attribute updates; None values are no-ops and unknown names land in `extra`."""
        for name, value in updates.items():
            if value is None or name == "key":
                continue
            if name in _RECORD_ATTRS:
                setattr(self, name, value)
            else:
                self.extra[name] = value

    def to_listing_payload(self) -> dict:
        return {
            "key": self.key,
            "size": self.size,
            "lastModified": format_iso(self.store_last_modified),
        }


_RECORD_ATTRS = frozenset(f.name for f in fields(RawFileRecord)) - {"extra"}


def record_from_listing_payload(payload: Mapping[str, Any]) -> RawFileRecord:
    return RawFileRecord(
        key=str(payload["key"]),
        size=int(payload.get("size") or 0),
        store_last_modified=parse_iso(str(payload["lastModified"])),
    )


def to_index_fields(updates: Mapping[str, Any]) -> dict:
    """Translate record-attribute updates into index document fields."""
    out: dict = {}
    for name, value in updates.items():
        if value is None or name == "key" or name in EPHEMERAL_FIELDS:
            continue
        index_name = INDEX_FIELD_NAMES.get(name, name)
        out[index_name] = value
    return out


def from_index_fields(entry: Mapping[str, Any], *, file_key: str = "") -> dict:
    """
    Translate an index document entry into record-attribute updates.

    Date strings that fail to parse are dropped from the result and logged; the
    listing-derived value stays in effect.
    """
    out: dict = {}
    for index_name, value in entry.items():
        if value is None:
            continue
        name = RECORD_FIELD_NAMES.get(index_name, index_name)
        if index_name in DATE_INDEX_FIELDS:
            if isinstance(value, datetime):
                out[name] = value
                continue
            try:
                out[name] = parse_iso(str(value))
            except ValueError:
                logger.warning("Invalid date in index entry. key=%s field=%s value=%s", file_key, index_name, value)
            continue
        out[name] = value
    return out
