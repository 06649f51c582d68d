"""Shared metadata index document: model, merge rules and the queued store."""

from rawdirt.index.interfaces import MetadataIndex
from rawdirt.index.merge import merge_file_entry, normalize_date_value
from rawdirt.index.models import BatchUpdateResult, IndexDocument, IndexStats
from rawdirt.index.store import MetadataIndexStore
from rawdirt.index.write_queue import SingleFlightWriteQueue

__all__ = [
    "BatchUpdateResult",
    "IndexDocument",
    "IndexStats",
    "MetadataIndex",
    "MetadataIndexStore",
    "SingleFlightWriteQueue",
    "merge_file_entry",
    "normalize_date_value",
]
