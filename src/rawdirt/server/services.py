from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from rawdirt.config.models import AppConfig
from rawdirt.index.store import MetadataIndexStore
from rawdirt.scan.cache import BucketScanCache
from rawdirt.scan.listing import ListingService
from rawdirt.store import build_object_store
from rawdirt.store.interfaces import ObjectStore
from rawdirt.store.url_cache import PresignedUrlCache


@dataclass(slots=True)
class ServerServices:
    """Process-lifetime components shared by every request handler."""

    store: ObjectStore
    listing: ListingService
    urls: PresignedUrlCache
    index: MetadataIndexStore

    async def close(self) -> None:
        await self.index.close()


def build_services(config: AppConfig, *, store: Optional[ObjectStore] = None) -> ServerServices:
    store = store or build_object_store(config.store)
    cache = BucketScanCache(store, config.scan, list_page_size=config.store.list_page_size)
    return ServerServices(
        store=store,
        listing=ListingService(cache, config.scan),
        urls=PresignedUrlCache(store, config.urls),
        index=MetadataIndexStore(store, config.index),
    )
