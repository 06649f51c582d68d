from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional
from urllib.parse import quote

from rawdirt.errors import NotFoundError
from rawdirt.store.interfaces import ListPage, ObjectStore, StoreObject
from rawdirt.utils import utc_now


@dataclass(slots=True)
class _StoredObject:
    body: bytes
    last_modified: datetime
    content_type: str


@dataclass
class InMemoryObjectStore(ObjectStore):
    """
    A process-local object store for development and end-to-end testing.

    Listing is key-ordered and paginated with numeric offset tokens, mirroring how
    S3 pages ListObjectsV2 results.
    """

    bucket: str = "memory"
    objects: Dict[str, _StoredObject] = field(default_factory=dict)
    list_calls: int = 0
    put_calls: int = 0

    def add(self, key: str, body: bytes = b"", *, last_modified: Optional[datetime] = None) -> None:
        self.objects[key] = _StoredObject(
            body=body,
            last_modified=last_modified or utc_now(),
            content_type="application/octet-stream",
        )

    async def list_objects(
        self,
        *,
        prefix: str = "",
        continuation_token: Optional[str] = None,
        max_keys: int = 1000,
    ) -> ListPage:
        self.list_calls += 1
        keys = sorted(k for k in self.objects if k.startswith(prefix))
        start = int(continuation_token) if continuation_token else 0
        window = keys[start : start + max_keys]
        end = start + len(window)
        truncated = end < len(keys)
        items = [
            StoreObject(key=k, size=len(self.objects[k].body), last_modified=self.objects[k].last_modified)
            for k in window
        ]
        return ListPage(items=items, next_token=str(end) if truncated else None, truncated=truncated)

    async def get_object(self, key: str) -> bytes:
        stored = self.objects.get(key)
        if stored is None:
            raise NotFoundError(key)
        return stored.body

    async def put_object(self, key: str, body: bytes, *, content_type: str = "application/octet-stream") -> None:
        self.put_calls += 1
        self.objects[key] = _StoredObject(body=bytes(body), last_modified=utc_now(), content_type=content_type)

    async def presign_get_url(self, key: str, *, expires_in: int) -> str:
        return f"memory://{self.bucket}/{quote(key)}?expires_in={expires_in}"
