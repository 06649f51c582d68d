from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from rawdirt.errors import ProcessingError

logger = logging.getLogger(__name__)


class ByteFetcher:
    async def fetch(self, url: str) -> bytes:
        """Return the full body behind url. Raises ProcessingError when it cannot be fetched."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class HttpByteFetcher(ByteFetcher):
    """Downloads file bytes from presigned URLs over one shared aiohttp session."""

    def __init__(self, *, timeout_seconds: float = 120.0) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def fetch(self, url: str) -> bytes:
        if not url:
            raise ProcessingError("No URL available for the file")
        session = self._get_session()
        try:
            async with session.get(url) as response:
                if response.status >= 400:
                    raise ProcessingError(f"Failed to fetch file: HTTP {response.status} {response.reason or ''}".strip())
                body = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ProcessingError(f"Failed to fetch file: {exc}") from exc
        logger.debug("Fetched file bytes. size=%s", len(body))
        return body

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
