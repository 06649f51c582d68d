from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

from rawdirt.models import from_index_fields, to_index_fields
from rawdirt.utils import format_iso

logger = logging.getLogger(__name__)

KEY_PREFIX = "rawdirt_thumb_"

# Encoded names longer than this fall back to a digest to stay under NAME_MAX.
MAX_ENCODED_NAME_LENGTH = 200


def atomic_write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)


def _json_ready(fields: Mapping[str, Any]) -> dict:
    return {name: format_iso(value) if isinstance(value, datetime) else value for name, value in fields.items()}


class LocalDurableCache:
    """
    Per-file JSON entries on local disk that survive restarts.

    Entry names are the fixed prefix plus the percent-encoded file key, or its
    SHA-256 digest when the encoded key is too long for a file name. Entries hold
    index-format fields; callers exchange record-attribute updates.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        encoded = quote(key, safe="")
        if len(encoded) > MAX_ENCODED_NAME_LENGTH:
            encoded = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._directory / f"{KEY_PREFIX}{encoded}.json"

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        try:
            if not path.exists():
                return None
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Failed to read local cache entry, ignoring it. key=%s path=%s", key, path, exc_info=True)
            return None
        if not isinstance(payload, dict):
            return None
        return from_index_fields(payload, file_key=key)

    def save(self, key: str, updates: Mapping[str, Any]) -> None:
        try:
            atomic_write_json(self.path_for(key), _json_ready(to_index_fields(updates)))
        except OSError:
            logger.warning("Failed to write local cache entry. key=%s", key, exc_info=True)

    def remove(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)
