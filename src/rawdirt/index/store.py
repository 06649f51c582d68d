from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from rawdirt.config.models import IndexSettings
from rawdirt.errors import NotFoundError, ValidationError
from rawdirt.index.interfaces import MetadataIndex
from rawdirt.index.merge import merge_file_entry
from rawdirt.index.models import (
    BatchUpdateResult,
    IndexDocument,
    IndexStats,
    dumps_document,
    loads_document,
)
from rawdirt.index.write_queue import SingleFlightWriteQueue
from rawdirt.store.interfaces import ObjectStore
from rawdirt.utils import format_iso, utc_now

logger = logging.getLogger(__name__)

# Approximate data URI header length, excluded from the payload estimate.
DATA_URI_HEADER_LENGTH = 22

MergeFn = Callable[[IndexDocument], IndexDocument]


class MetadataIndexStore(MetadataIndex):
    """
    Object-store backed metadata index.

    Every write reads the document fresh, applies a merge function and writes the
    whole document back. Writes from this process go through one single-flight FIFO
    queue, which gives read-your-writes within the process. Writers in other
    processes are not coordinated with; the last full write wins.
    """

    def __init__(self, store: ObjectStore, settings: IndexSettings) -> None:
        self._store = store
        self._settings = settings
        self._queue = SingleFlightWriteQueue(min_interval_seconds=settings.min_write_interval_seconds)

    @property
    def key(self) -> str:
        return self._settings.key

    async def read(self) -> IndexDocument:
        try:
            body = await self._store.get_object(self._settings.key)
        except NotFoundError:
            logger.info("Metadata index not found, using empty document. key=%s", self._settings.key)
            return IndexDocument()
        if not body.strip():
            return IndexDocument()
        try:
            return loads_document(body)
        except (ValueError, UnicodeDecodeError):
            logger.exception("Metadata index is not valid JSON, using empty document. key=%s", self._settings.key)
            return IndexDocument()

    async def write(self, merge_fn: MergeFn, *, label: str = "write") -> IndexDocument:
        """
        Queue a read-merge-write cycle and return the document as written.

        Raises TransientStoreError when the store rejects the read or the write; the
        caller keeps whatever local state it was trying to persist.
        """

        async def _cycle() -> IndexDocument:
            current = await self.read()
            updated = merge_fn(current)
            await self._store.put_object(
                self._settings.key,
                dumps_document(updated),
                content_type="application/json",
            )
            logger.debug("Wrote metadata index. label=%s files=%s", label, len(updated.files))
            return updated

        return await self._queue.submit(_cycle, label=label)

    async def update_file(self, key: str, metadata: Mapping[str, Any]) -> Dict[str, Any]:
        if not key:
            raise ValidationError("Missing fileKey or metadata")
        if not isinstance(metadata, Mapping) or not metadata:
            raise ValidationError("Missing fileKey or metadata")

        def _merge(document: IndexDocument) -> IndexDocument:
            document.files[key] = merge_file_entry(document.files.get(key), metadata, file_key=key)
            return document

        written = await self.write(_merge, label=f"update:{key}")
        logger.info("Updated metadata for file. key=%s", key)
        return dict(written.files[key])

    async def batch_update(self, files: Mapping[str, Any]) -> BatchUpdateResult:
        valid: Dict[str, Mapping[str, Any]] = {}
        for key, metadata in files.items():
            if not isinstance(metadata, Mapping):
                logger.warning("Invalid metadata in batch update, skipping. key=%s", key)
                continue
            valid[key] = metadata

        if not valid:
            return BatchUpdateResult(updated_count=0, timestamp=format_iso(utc_now()))

        def _merge(document: IndexDocument) -> IndexDocument:
            for key, metadata in valid.items():
                document.files[key] = merge_file_entry(document.files.get(key), metadata, file_key=key)
            document.last_updated = format_iso(utc_now())
            return document

        written = await self.write(_merge, label=f"batch:{len(valid)}")
        logger.info("Batch updated metadata index. updated_count=%s", len(valid))
        return BatchUpdateResult(updated_count=len(valid), timestamp=written.last_updated or format_iso(utc_now()))

    async def stats(self) -> IndexStats:
        """Report index size and thumbnail payload estimates without modifying anything."""
        try:
            body = await self._store.get_object(self._settings.key)
        except NotFoundError:
            return IndexStats(found=False)

        try:
            payload = json.loads(body.decode("utf-8")) if body.strip() else {}
        except (ValueError, UnicodeDecodeError):
            logger.exception("Metadata index is not valid JSON. key=%s", self._settings.key)
            payload = {}
        files = payload.get("files") if isinstance(payload, dict) else None
        if not isinstance(files, dict):
            files = {}

        thumbnail_count = 0
        thumbnail_bytes = 0
        for entry in files.values():
            data_uri: Optional[str] = entry.get("thumbnailDataUrl") if isinstance(entry, dict) else None
            if data_uri:
                thumbnail_count += 1
                thumbnail_bytes += max(0, (len(data_uri) - DATA_URI_HEADER_LENGTH) * 3 // 4)

        stats = IndexStats(
            found=True,
            index_size_bytes=len(body),
            file_count=len(files),
            thumbnail_count=thumbnail_count,
            thumbnail_bytes=thumbnail_bytes,
        )
        logger.info(
            "Computed metadata index stats. size_mb=%s thumbnails=%s thumbnails_mb=%s",
            stats.index_size_mb,
            stats.thumbnail_count,
            stats.thumbnails_size_mb,
        )
        return stats

    async def close(self) -> None:
        await self._queue.close()
