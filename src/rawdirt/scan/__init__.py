"""Bucket scan cache and the listing service built on top of it."""

from rawdirt.scan.cache import BucketScanCache, ScanPage, has_raw_extension
from rawdirt.scan.listing import ListingService, ListRequest, ListResponse

__all__ = ["BucketScanCache", "ListRequest", "ListResponse", "ListingService", "ScanPage", "has_raw_extension"]
