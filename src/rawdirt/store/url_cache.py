from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict

from rawdirt.config.models import UrlSettings
from rawdirt.errors import ValidationError
from rawdirt.store.interfaces import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _CachedUrl:
    url: str
    expires_at: float


class PresignedUrlCache:
    """
    Per-key cache of presigned fetch URLs.

    A cached URL is honored only for `cache_expiry_ratio` of its validity window so
    a caller always receives a URL with useful life left. Expired entries are purged
    at most once per `cleanup_interval_seconds`, piggybacking on lookups.
    """

    def __init__(
        self,
        store: ObjectStore,
        settings: UrlSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock
        self._entries: Dict[str, _CachedUrl] = {}
        self._last_cleanup = clock()

    def __len__(self) -> int:
        return len(self._entries)

    async def get_url(self, key: str) -> str:
        if not key or not key.strip():
            raise ValidationError("File key is required")

        now = self._clock()
        self._maybe_cleanup(now)

        cached = self._entries.get(key)
        if cached is not None and cached.expires_at > now:
            logger.debug("Returning cached URL for file. key=%s", key)
            return cached.url

        expires_in = self._settings.presign_expiry_seconds
        url = await self._store.presign_get_url(key, expires_in=expires_in)
        self._entries[key] = _CachedUrl(
            url=url,
            expires_at=now + expires_in * self._settings.cache_expiry_ratio,
        )
        logger.debug("Generated presigned URL for file. key=%s expires_in=%s", key, expires_in)
        return url

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def _maybe_cleanup(self, now: float) -> None:
        if now - self._last_cleanup < self._settings.cleanup_interval_seconds:
            return
        self._last_cleanup = now
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Purged expired presigned URLs. count=%d", len(expired))
