"""Field-level merge rules for index document entries."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from rawdirt.models import DATE_INDEX_FIELDS
from rawdirt.utils import format_iso, from_epoch_millis, parse_iso

logger = logging.getLogger(__name__)


def normalize_date_value(value: Any, *, field_name: str = "", file_key: str = "") -> str:
    """
    Normalize a date-like value to an ISO-8601 string.

    Native datetimes, ISO strings and numeric epoch milliseconds are accepted. A value
    that cannot be parsed is kept as its string form and a warning is logged.
    """
    try:
        if isinstance(value, datetime):
            return format_iso(value)
        if isinstance(value, bool):
            raise ValueError("boolean is not a date")
        if isinstance(value, (int, float)):
            if not math.isfinite(value):
                raise ValueError("non-finite timestamp")
            return format_iso(from_epoch_millis(value))
        if isinstance(value, str):
            return format_iso(parse_iso(value))
        raise ValueError(f"unsupported type {type(value).__name__}")
    except (ValueError, OverflowError, OSError) as exc:
        logger.warning(
            "Could not normalize date field, storing string form. key=%s field=%s value=%r error=%s",
            file_key,
            field_name,
            value,
            exc,
        )
        return str(value)


def normalize_update(update: Mapping[str, Any], *, file_key: str = "") -> Dict[str, Any]:
    """Drop undefined fields and normalize date fields of one incoming update."""
    out: Dict[str, Any] = {}
    for name, value in update.items():
        if value is None:
            continue
        if name in DATE_INDEX_FIELDS:
            value = normalize_date_value(value, field_name=name, file_key=file_key)
        out[name] = value
    return out


def merge_file_entry(
    existing: Optional[Mapping[str, Any]],
    update: Mapping[str, Any],
    *,
    file_key: str = "",
) -> Dict[str, Any]:
    """Defined incoming fields overwrite; absent or None fields leave the stored value alone."""
    merged: Dict[str, Any] = dict(existing or {})
    merged.update(normalize_update(update, file_key=file_key))
    return merged
