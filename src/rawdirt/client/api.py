from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from rawdirt.errors import NotFoundError, TransientStoreError, ValidationError
from rawdirt.index.interfaces import MetadataIndex
from rawdirt.index.models import BatchUpdateResult, IndexDocument, decode_document
from rawdirt.models import RawFileRecord, record_from_listing_payload
from rawdirt.utils import format_iso

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_iso(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(payload: Any) -> str:
    return json.dumps(payload, default=_json_default)


@dataclass(frozen=True, slots=True)
class ListPageResult:
    files: List[RawFileRecord]
    next_continuation_token: Optional[str]
    total_files_found_in_scan: int
    has_more: bool
    grand_total: Optional[int]
    page_number: int
    total_pages: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ListPageResult:
        grand_total = payload.get("grandTotalRawFiles")
        return cls(
            files=[record_from_listing_payload(item) for item in payload.get("files", [])],
            next_continuation_token=payload.get("nextContinuationToken"),
            total_files_found_in_scan=int(payload.get("totalFilesFoundInScan", 0)),
            has_more=bool(payload.get("hasMoreFilesAfterThisPage", False)),
            grand_total=int(grand_total) if grand_total is not None else None,
            page_number=int(payload.get("pageNumber", 1)),
            total_pages=int(payload.get("totalPages", 0)),
        )


class RawdirtApiClient(MetadataIndex):
    """
    HTTP client for the rawdirt server endpoints.

    Network failures and 5xx responses raise TransientStoreError; 4xx responses raise
    ValidationError (404 raises NotFoundError). No retries happen here.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 300.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        body: Any = None,
    ) -> Dict[str, Any]:
        url = f"{self._base_url}{path}"
        kwargs: Dict[str, Any] = {}
        if params:
            kwargs["params"] = dict(params)
        if body is not None:
            kwargs["data"] = _dumps(body)
            kwargs["headers"] = {"Content-Type": "application/json"}
        try:
            async with self._get_session().request(method, url, **kwargs) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransientStoreError(f"Request failed: {method} {path}: {exc}") from exc

        try:
            data = json.loads(text) if text else {}
        except ValueError:
            data = {"error": text}
        if status >= 400:
            message = data.get("error") if isinstance(data, dict) else None
            message = message or f"HTTP {status}"
            logger.warning("API request failed. method=%s path=%s status=%s error=%s", method, path, status, message)
            if status == 404:
                raise NotFoundError(path)
            if status < 500:
                raise ValidationError(message)
            raise TransientStoreError(message)
        if not isinstance(data, dict):
            raise TransientStoreError(f"Unexpected response body for {method} {path}")
        return data

    async def list_files(
        self,
        *,
        prefix: str = "",
        continuation_token: Optional[str] = None,
        count_total: bool = False,
        page_number: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> ListPageResult:
        params: Dict[str, str] = {}
        if prefix:
            params["prefix"] = prefix
        if continuation_token:
            params["continuationToken"] = continuation_token
        if count_total:
            params["countTotal"] = "true"
        if page_number is not None:
            params["pageNumber"] = str(page_number)
        if page_size is not None:
            params["pageSize"] = str(page_size)
        return ListPageResult.from_payload(await self._request("GET", "/api/s3/list", params=params))

    async def get_file_url(self, key: str) -> str:
        data = await self._request("GET", "/api/s3/file", params={"key": key})
        url = data.get("url")
        if not url:
            raise TransientStoreError(f"No URL returned for file: {key}")
        return str(url)

    async def read(self) -> IndexDocument:
        return decode_document(await self._request("GET", "/api/metadata/index"))

    async def update_file(self, key: str, metadata: Mapping[str, Any]) -> Dict[str, Any]:
        data = await self._request("POST", "/api/metadata/index", body={"fileKey": key, "metadata": dict(metadata)})
        return dict(data.get("metadata") or {})

    async def batch_update(self, files: Mapping[str, Any]) -> BatchUpdateResult:
        data = await self._request("POST", "/api/metadata/batch-update", body={"files": dict(files)})
        return BatchUpdateResult(
            updated_count=int(data.get("updatedCount", 0)),
            timestamp=str(data.get("timestamp", "")),
        )

    async def index_stats(self) -> Dict[str, Any]:
        return await self._request("POST", "/api/metadata/index/cleanup")
