from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from rawdirt.config.models import ScanSettings
from rawdirt.models import RawFileRecord
from rawdirt.store.interfaces import ObjectStore
from rawdirt.utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScanPage:
    items: List[RawFileRecord] = field(default_factory=list)
    has_more: bool = False
    total: int = 0
    page_number: int = 1
    total_pages: int = 0


def has_raw_extension(key: str, extensions: Iterable[str]) -> bool:
    lowered = key.lower()
    return any(lowered.endswith(ext.lower()) for ext in extensions)


class BucketScanCache:
    """
    Process-lifetime enumeration of RAW files in the bucket.

    `scan` replaces the cached entries only after the listing loop completes, so a
    failed scan leaves the previous cache (or an empty one) in place. Overlapping
    scans are not deduplicated; the last one to finish wins.
    """

    def __init__(self, store: ObjectStore, settings: ScanSettings, *, list_page_size: int = 1000) -> None:
        self._store = store
        self._settings = settings
        self._list_page_size = list_page_size
        self._entries: List[RawFileRecord] = []
        self._scanned_prefix: Optional[str] = None
        self._scanned_at: Optional[datetime] = None
        self._objects_scanned = 0

    @property
    def populated(self) -> bool:
        return self._scanned_prefix is not None

    @property
    def scanned_at(self) -> Optional[datetime]:
        return self._scanned_at

    @property
    def total(self) -> int:
        return len(self._entries)

    @property
    def objects_scanned(self) -> int:
        return self._objects_scanned

    def covers(self, prefix: str) -> bool:
        return self._scanned_prefix is not None and prefix.startswith(self._scanned_prefix)

    def invalidate(self) -> None:
        self._entries = []
        self._scanned_prefix = None
        self._scanned_at = None
        self._objects_scanned = 0

    async def scan(self, prefix: str = "") -> None:
        cap = self._settings.max_objects_to_scan
        extensions = tuple(self._settings.raw_extensions)
        found: List[RawFileRecord] = []
        scanned = 0
        token: Optional[str] = None
        started = utc_now()

        logger.info("Starting bucket scan. prefix=%s cap=%s", prefix, cap)
        capped = False
        while True:
            page = await self._store.list_objects(
                prefix=prefix,
                continuation_token=token,
                max_keys=self._list_page_size,
            )
            for obj in page.items:
                if scanned >= cap:
                    capped = True
                    break
                scanned += 1
                if has_raw_extension(obj.key, extensions):
                    found.append(
                        RawFileRecord(key=obj.key, size=obj.size, store_last_modified=obj.last_modified)
                    )
            token = page.next_token
            more = bool(page.truncated and token)
            if more and scanned >= cap:
                capped = True
            if not more or scanned >= cap:
                break

        # Only a cap that cut a listing short hides files.
        if capped:
            logger.warning("Bucket scan hit the object cap; later files are not visible. prefix=%s cap=%s", prefix, cap)

        self._entries = found
        self._scanned_prefix = prefix
        self._scanned_at = started
        self._objects_scanned = scanned
        logger.info(
            "Bucket scan finished. prefix=%s objects_scanned=%s raw_files=%s",
            prefix,
            scanned,
            len(found),
        )

    def entries(self, prefix: str = "") -> List[RawFileRecord]:
        if not prefix:
            return list(self._entries)
        return [entry for entry in self._entries if entry.key.startswith(prefix)]

    def page(self, page_number: int, page_size: int, prefix: str = "") -> ScanPage:
        matching = self.entries(prefix)
        total = len(matching)
        start = (page_number - 1) * page_size
        window = matching[start : start + page_size]
        return ScanPage(
            items=[entry.copy() for entry in window],
            has_more=start + page_size < total,
            total=total,
            page_number=page_number,
            total_pages=math.ceil(total / page_size) if total else 0,
        )
