from __future__ import annotations

from typing import Any, Dict, Mapping

from rawdirt.index.models import BatchUpdateResult, IndexDocument


class MetadataIndex:
    """Read and merge-update access to the shared metadata index document."""

    async def read(self) -> IndexDocument:
        """Return the current document; a missing document yields the empty default."""
        raise NotImplementedError

    async def update_file(self, key: str, metadata: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge one file's metadata and return the full merged entry for that key."""
        raise NotImplementedError

    async def batch_update(self, files: Mapping[str, Any]) -> BatchUpdateResult:
        """Merge many files' metadata in a single read-modify-write cycle."""
        raise NotImplementedError
