from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from rawdirt.config.models import ProcessingSettings
from rawdirt.decode.interfaces import DecodedImage, RawDecoder
from rawdirt.errors import DecodeError, ProcessingError, RawdirtError
from rawdirt.index.interfaces import MetadataIndex
from rawdirt.models import to_index_fields
from rawdirt.processing.fetcher import ByteFetcher
from rawdirt.processing.models import (
    STAGE_DECODING,
    STAGE_FETCHING,
    STAGE_INDEX,
    STAGE_METADATA,
    STAGE_PROCESSING,
    STAGE_THUMBNAIL,
    FileJob,
    ProcessedResult,
)
from rawdirt.processing.thumbnails import render_thumbnail, to_rgba

logger = logging.getLogger(__name__)

StageCallback = Callable[[str], None]


def _noop_stage(_stage: str) -> None:
    return None


class FileProcessingPipeline:
    """
    Fetch, decode, normalize, date, thumbnail and package one RAW file.

    Each stage reports its name before it runs. The decoded buffer is released when
    processing ends, whether it succeeded or not.
    """

    def __init__(
        self,
        *,
        fetcher: ByteFetcher,
        decoder: RawDecoder,
        settings: ProcessingSettings,
        index: Optional[MetadataIndex] = None,
    ) -> None:
        self._fetcher = fetcher
        self._decoder = decoder
        self._settings = settings
        self._index = index

    async def process(
        self,
        job: FileJob,
        *,
        on_stage: Optional[StageCallback] = None,
        skip_index_update: bool = False,
    ) -> ProcessedResult:
        report = on_stage or _noop_stage
        if not job.url:
            raise ProcessingError("No URL available for the file", file_key=job.key)

        decoded: Optional[DecodedImage] = None
        try:
            report(STAGE_FETCHING)
            try:
                data = await self._fetcher.fetch(job.url)
            except ProcessingError as exc:
                exc.file_key = job.key
                raise

            report(STAGE_DECODING)
            try:
                decoded = await self._decoder.decode(data)
            except DecodeError as exc:
                exc.file_key = job.key
                raise
            finally:
                del data

            report(STAGE_PROCESSING)
            if decoded is None or decoded.pixels is None:
                raise DecodeError("No image data from decoder", file_key=job.key)
            try:
                rgba = to_rgba(decoded.pixels, decoded.width, decoded.height, decoded.colors)
            except ProcessingError as exc:
                exc.file_key = job.key
                raise
            decoded.release()

            report(STAGE_METADATA)
            capture_date = decoded.metadata.timestamp if decoded.metadata is not None else None

            report(STAGE_THUMBNAIL)
            thumbnail = await self._render_thumbnail(job.key, rgba)

            result = ProcessedResult(
                key=job.key,
                pixels=rgba,
                width=decoded.width,
                height=decoded.height,
                colors=4,
                capture_date=capture_date,
                thumbnail_data_uri=thumbnail,
                original_width=decoded.raw_width or decoded.width,
                original_height=decoded.raw_height or decoded.height,
                metadata=decoded.metadata,
            )
        finally:
            if decoded is not None:
                decoded.release()

        if not skip_index_update and self._index is not None:
            report(STAGE_INDEX)
            await self._write_through(result)

        logger.debug(
            "Processed file. key=%s width=%s height=%s capture_date=%s thumbnail=%s",
            job.key,
            result.width,
            result.height,
            result.capture_date,
            result.thumbnail_data_uri is not None,
        )
        return result

    async def _render_thumbnail(self, key: str, rgba) -> Optional[str]:
        try:
            return await asyncio.to_thread(
                render_thumbnail,
                rgba,
                longest_edge=self._settings.thumbnail_size,
                quality=self._settings.thumbnail_quality,
            )
        except Exception:
            logger.warning("Failed to generate thumbnail, continuing without one. key=%s", key, exc_info=True)
            return None

    async def _write_through(self, result: ProcessedResult) -> None:
        try:
            await self._index.update_file(result.key, to_index_fields(result.derived_fields()))
        except RawdirtError as exc:
            logger.warning("Index write-through failed. key=%s error=%s", result.key, exc)
