from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from rawdirt.client.api import RawdirtApiClient
from rawdirt.config.models import ProcessingSettings
from rawdirt.errors import RawdirtError
from rawdirt.models import RawFileRecord
from rawdirt.processing.events import EventStream, PoolEvent, SlotCompleted
from rawdirt.processing.models import FileJob, ProcessedResult
from rawdirt.processing.pipeline import FileProcessingPipeline
from rawdirt.processing.pool import JobOutcome, JobTicket, WorkerPool
from rawdirt.state.store import AppStateStore
from rawdirt.utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BatchStats:
    processed: int = 0
    total: int = 0
    errors: int = 0
    current_stage: str = ""
    started_at: Optional[datetime] = None
    finished: bool = False


class BatchRunner:
    """
    Processes every RAW file under a prefix.

    Loads all listing pages by page number, resolves fetch URLs in bounded batches,
    then drains the files through the worker pool. Each successful result is folded
    into the state store, which schedules the metadata sync. With `dry_run` nothing is
    folded, so nothing is written.
    """

    def __init__(
        self,
        *,
        api: RawdirtApiClient,
        state: AppStateStore,
        pipeline: FileProcessingPipeline,
        settings: ProcessingSettings,
        page_size: int = 50,
        prefix: str = "",
        dry_run: bool = False,
        events: Optional[EventStream] = None,
    ) -> None:
        self._api = api
        self._state = state
        self._pipeline = pipeline
        self._settings = settings
        self._page_size = page_size
        self._prefix = prefix
        self._dry_run = dry_run
        self.stats = BatchStats()
        self.pool = WorkerPool(
            self._run_job,
            max_workers=settings.max_workers,
            job_timeout_seconds=settings.job_timeout_seconds,
            events=events,
        )
        self.pool.events.subscribe(self._on_pool_event)
        self._progress_listeners: List[Callable[[BatchStats], None]] = []

    def on_progress(self, listener: Callable[[BatchStats], None]) -> None:
        self._progress_listeners.append(listener)

    def _set_stage(self, stage: str) -> None:
        self.stats.current_stage = stage
        for listener in list(self._progress_listeners):
            listener(self.stats)

    async def load_all_files(self) -> List[RawFileRecord]:
        """Load every page into the state store and return the full file list."""
        self._state.reset_pagination()
        page_number = 1
        while True:
            self._set_stage(f"Loading file list (page {page_number})...")
            page = await self._api.list_files(
                prefix=self._prefix,
                count_total=page_number == 1,
                page_number=page_number,
                page_size=self._page_size,
            )
            if page_number == 1:
                self._state.set_files(
                    page.files,
                    next_token=page.next_continuation_token,
                    total_found=page.total_files_found_in_scan,
                    has_more=page.has_more,
                )
            else:
                self._state.append_files(page.files, next_token=page.next_continuation_token, has_more=page.has_more)
                self._state.increment_page()
            self._state.observe_grand_total(page.grand_total)
            if not page.has_more or page_number >= page.total_pages:
                break
            page_number += 1
        return list(self._state.files)

    async def _resolve_urls(self, records: List[RawFileRecord]) -> List[FileJob]:
        jobs: List[FileJob] = []
        missing = [record for record in records if not record.presigned_url]
        resolved = {record.key: record.presigned_url for record in records if record.presigned_url}

        batch_size = self._settings.url_batch_size
        for start in range(0, len(missing), batch_size):
            batch = missing[start : start + batch_size]
            self._set_stage(
                f"Fetching URLs ({start + 1}-{start + len(batch)}/{len(missing)})..."
            )
            urls = await asyncio.gather(
                *(self._api.get_file_url(record.key) for record in batch),
                return_exceptions=True,
            )
            for record, url in zip(batch, urls):
                if isinstance(url, BaseException):
                    if not isinstance(url, RawdirtError):
                        raise url
                    logger.warning("Could not resolve file URL, skipping. key=%s error=%s", record.key, url)
                    self.stats.errors += 1
                    continue
                record.presigned_url = url
                resolved[record.key] = url

        for record in records:
            url = resolved.get(record.key)
            if url:
                jobs.append(FileJob(key=record.key, url=url))
        return jobs

    async def run(self) -> BatchStats:
        self.stats = BatchStats(started_at=utc_now())
        records = await self.load_all_files()
        self.stats.total = len(records)
        logger.info("Batch processing loaded file list. total=%s", len(records))

        jobs = await self._resolve_urls(records)
        tickets = self.pool.enqueue(jobs)
        for ticket in tickets:
            ticket.outcome.add_done_callback(self._make_fold(ticket))

        self._set_stage(f"Starting batch processing of {len(jobs)} files...")
        try:
            await self.pool.run_all()
        finally:
            self.stats.finished = True
        self._set_stage("All files processed")
        logger.info(
            "Batch processing finished. processed=%s errors=%s total=%s",
            self.stats.processed,
            self.stats.errors,
            self.stats.total,
        )
        return self.stats

    def stop(self) -> None:
        self.pool.stop()
        self._set_stage("Processing stopped")

    async def _run_job(self, job: FileJob, on_stage: Callable[[str], None]) -> ProcessedResult:
        return await self._pipeline.process(job, on_stage=on_stage, skip_index_update=True)

    def _make_fold(self, ticket: JobTicket) -> Callable[[asyncio.Future], None]:
        def _fold(future: asyncio.Future) -> None:
            if future.cancelled() or future.exception() is not None:
                return
            outcome: JobOutcome = future.result()
            if outcome.result is None:
                return
            if not self._dry_run:
                self._state.update_file_metadata(ticket.job.key, outcome.result.derived_fields())
            outcome.result.release()

        return _fold

    def _on_pool_event(self, event: PoolEvent) -> None:
        if not isinstance(event, SlotCompleted):
            return
        self.stats.processed += 1
        if event.error is not None:
            self.stats.errors += 1
        self._set_stage(f"Completed {self.stats.processed}/{self.stats.total}")
