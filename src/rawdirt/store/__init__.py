"""Object store gateway: listing, get/put and presigned URLs."""

from __future__ import annotations

from rawdirt.config.models import StoreSettings
from rawdirt.store.interfaces import ListPage, ObjectStore, StoreObject
from rawdirt.store.memory import InMemoryObjectStore


def build_object_store(settings: StoreSettings) -> ObjectStore:
    if settings.backend == "memory":
        return InMemoryObjectStore(bucket=settings.bucket or "memory")
    from rawdirt.store.s3 import S3ObjectStore

    return S3ObjectStore(settings)


__all__ = ["InMemoryObjectStore", "ListPage", "ObjectStore", "StoreObject", "build_object_store"]
