from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SchemaVersion = 1


@dataclass(slots=True)
class IndexDocument:
    version: int = SchemaVersion
    files: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    last_updated: Optional[str] = None
    # Other top-level members are preserved across read-modify-write cycles.
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class BatchUpdateResult:
    updated_count: int
    timestamp: str


@dataclass(frozen=True, slots=True)
class IndexStats:
    found: bool
    index_size_bytes: int = 0
    file_count: int = 0
    thumbnail_count: int = 0
    thumbnail_bytes: int = 0

    @property
    def index_size_mb(self) -> str:
        return f"{self.index_size_bytes / (1024 * 1024):.2f}"

    @property
    def thumbnails_size_mb(self) -> str:
        return f"{self.thumbnail_bytes / (1024 * 1024):.2f}"


def encode_document(document: IndexDocument) -> dict:
    payload: dict = dict(document.extra)
    payload["version"] = document.version
    payload["files"] = document.files
    if document.last_updated is not None:
        payload["lastUpdated"] = document.last_updated
    return payload


def _decode_version(value: Any) -> int:
    if value is None:
        return SchemaVersion
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    logger.warning("Index document has an invalid version, using default. version=%r", value)
    return SchemaVersion


def decode_document(payload: Any) -> IndexDocument:
    if not isinstance(payload, dict):
        logger.warning("Index document is not a JSON object, starting fresh. type=%s", type(payload).__name__)
        return IndexDocument()
    files_payload = payload.get("files")
    files: Dict[str, Dict[str, Any]] = {}
    if isinstance(files_payload, dict):
        for key, entry in files_payload.items():
            if isinstance(entry, dict):
                files[key] = dict(entry)
            else:
                logger.warning("Skipping malformed index entry. key=%s", key)
    extra = {k: v for k, v in payload.items() if k not in ("version", "files", "lastUpdated")}
    last_updated = payload.get("lastUpdated")
    return IndexDocument(
        version=_decode_version(payload.get("version")),
        files=files,
        last_updated=str(last_updated) if last_updated is not None else None,
        extra=extra,
    )


def dumps_document(document: IndexDocument) -> bytes:
    return json.dumps(encode_document(document), indent=2).encode("utf-8")


def loads_document(body: bytes) -> IndexDocument:
    return decode_document(json.loads(body.decode("utf-8")))
