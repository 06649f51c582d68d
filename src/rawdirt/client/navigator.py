from __future__ import annotations

import logging
from typing import Optional

from rawdirt.client.api import ListPageResult, RawdirtApiClient
from rawdirt.processing.models import FileJob, ProcessedResult
from rawdirt.processing.pipeline import FileProcessingPipeline
from rawdirt.state.store import AppStateStore

logger = logging.getLogger(__name__)


class FileNavigator:
    """
    Drives listing requests and folds the responses into the state store.

    Direct page navigation resets local pagination and asks for a page number;
    "load more" follows the last continuation token. Both resolve against the same
    server-side scan cache.
    """

    def __init__(
        self,
        api: RawdirtApiClient,
        state: AppStateStore,
        *,
        page_size: int = 50,
        prefix: str = "",
        pipeline: Optional[FileProcessingPipeline] = None,
    ) -> None:
        self._api = api
        self._state = state
        self._page_size = page_size
        self._prefix = prefix
        self._pipeline = pipeline

    @property
    def page_size(self) -> int:
        return self._page_size

    async def load_index_snapshot(self) -> int:
        document = await self._api.read()
        self._state.set_index_snapshot(document.files)
        return len(document.files)

    def _apply_page(self, page: ListPageResult) -> None:
        self._state.set_files(
            page.files,
            next_token=page.next_continuation_token,
            total_found=page.total_files_found_in_scan,
            has_more=page.has_more,
        )
        self._state.pagination.current_page = page.page_number
        self._state.observe_grand_total(page.grand_total)

    async def load_initial(self) -> ListPageResult:
        return await self.go_to_page(1)

    async def go_to_page(self, page_number: int) -> ListPageResult:
        self._state.reset_pagination()
        page = await self._api.list_files(
            prefix=self._prefix,
            count_total=page_number == 1,
            page_number=page_number,
            page_size=self._page_size,
        )
        self._apply_page(page)
        logger.info(
            "Loaded page. page=%s files=%s total_pages=%s grand_total=%s",
            page.page_number,
            len(page.files),
            page.total_pages,
            self._state.pagination.grand_total,
        )
        return page

    async def load_more(self) -> Optional[ListPageResult]:
        pagination = self._state.pagination
        if not pagination.has_more or not pagination.continuation_token:
            logger.debug("No more files to load.")
            return None
        page = await self._api.list_files(
            prefix=self._prefix,
            continuation_token=pagination.continuation_token,
            page_size=self._page_size,
        )
        self._state.append_files(page.files, next_token=page.next_continuation_token, has_more=page.has_more)
        self._state.increment_page()
        self._state.observe_grand_total(page.grand_total)
        return page

    async def open_file(self, key: str) -> ProcessedResult:
        """Resolve a URL, decode the file with index write-through and record the result."""
        if self._pipeline is None:
            raise RuntimeError("FileNavigator was created without a processing pipeline")
        record = self._state.select_file(key)
        url = await self._api.get_file_url(key)
        if record is not None:
            record.presigned_url = url

        result = await self._pipeline.process(FileJob(key=key, url=url))
        self._state.update_file_metadata(key, result.derived_fields())
        return result
