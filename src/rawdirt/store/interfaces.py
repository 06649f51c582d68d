from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class StoreObject:
    key: str
    size: int
    last_modified: datetime


@dataclass(frozen=True, slots=True)
class ListPage:
    items: list[StoreObject] = field(default_factory=list)
    next_token: Optional[str] = None
    truncated: bool = False


class ObjectStore:
    async def list_objects(
        self,
        *,
        prefix: str = "",
        continuation_token: Optional[str] = None,
        max_keys: int = 1000,
    ) -> ListPage:
        """Return one page of objects under prefix, in key order."""
        raise NotImplementedError

    async def get_object(self, key: str) -> bytes:
        """
        Return the full object body.

        Raises NotFoundError when the key does not exist and TransientStoreError on any
        other failure.
        """
        raise NotImplementedError

    async def put_object(self, key: str, body: bytes, *, content_type: str = "application/octet-stream") -> None:
        """Write the full object body, replacing any previous content."""
        raise NotImplementedError

    async def presign_get_url(self, key: str, *, expires_in: int) -> str:
        """Return a time-limited URL that fetches the object without credentials."""
        raise NotImplementedError
