from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from rawdirt.config.models import ScanSettings
from rawdirt.errors import ValidationError
from rawdirt.models import RawFileRecord
from rawdirt.scan.cache import BucketScanCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ListRequest:
    prefix: str = ""
    continuation_token: Optional[str] = None
    count_total: bool = False
    page_number: Optional[int] = None
    page_size: Optional[int] = None


@dataclass(frozen=True, slots=True)
class ListResponse:
    files: List[RawFileRecord] = field(default_factory=list)
    next_continuation_token: Optional[str] = None
    total_files_found_in_scan: int = 0
    has_more_files_after_this_page: bool = False
    grand_total_raw_files: Optional[int] = None
    page_number: int = 1
    total_pages: int = 0

    def to_payload(self) -> dict:
        payload = {
            "files": [record.to_listing_payload() for record in self.files],
            "totalFilesFoundInScan": self.total_files_found_in_scan,
            "hasMoreFilesAfterThisPage": self.has_more_files_after_this_page,
            "pageNumber": self.page_number,
            "totalPages": self.total_pages,
        }
        if self.next_continuation_token is not None:
            payload["nextContinuationToken"] = self.next_continuation_token
        if self.grand_total_raw_files is not None:
            payload["grandTotalRawFiles"] = self.grand_total_raw_files
        return payload


def encode_page_token(page_number: int, page_size: int, prefix: str) -> str:
    raw = json.dumps({"p": page_number, "s": page_size, "x": prefix}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_page_token(token: str) -> tuple[int, int, str]:
    padded = token + "=" * (-len(token) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
        page_number = int(data["p"])
        page_size = int(data["s"])
        prefix = str(data.get("x", ""))
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as exc:
        raise ValidationError("Invalid continuation token") from exc
    if page_number < 1 or page_size < 1:
        raise ValidationError("Invalid continuation token")
    return page_number, page_size, prefix


class ListingService:
    """
    Serves listing pages from the bucket scan cache.

    A continuation token is just an encoding of the next page number over the same
    cache, so token-driven and page-driven navigation always resolve to the same
    slice. An explicit page number takes precedence over a token.
    """

    def __init__(self, cache: BucketScanCache, settings: ScanSettings) -> None:
        self._cache = cache
        self._settings = settings

    @property
    def cache(self) -> BucketScanCache:
        return self._cache

    def _resolve(self, request: ListRequest) -> tuple[int, int]:
        if request.page_number is not None and request.page_number < 1:
            raise ValidationError("pageNumber must be a positive integer")
        if request.page_size is not None and request.page_size < 1:
            raise ValidationError("pageSize must be a positive integer")

        page_size = request.page_size or self._settings.default_page_size
        if request.page_number is not None:
            return request.page_number, page_size

        if request.continuation_token:
            page_number, token_size, token_prefix = decode_page_token(request.continuation_token)
            if token_prefix != request.prefix:
                raise ValidationError("Continuation token was issued for a different prefix")
            return page_number, request.page_size or token_size

        return 1, page_size

    async def list_page(self, request: ListRequest) -> ListResponse:
        page_number, page_size = self._resolve(request)

        needs_scan = (
            not self._cache.populated
            or not self._cache.covers(request.prefix)
            or (page_number == 1 and request.count_total)
        )
        if needs_scan:
            await self._cache.scan(request.prefix)
        else:
            logger.debug("Serving listing page from scan cache. page=%s size=%s", page_number, page_size)

        page = self._cache.page(page_number, page_size, request.prefix)
        next_token = encode_page_token(page_number + 1, page_size, request.prefix) if page.has_more else None
        return ListResponse(
            files=page.items,
            next_continuation_token=next_token,
            total_files_found_in_scan=page.total,
            has_more_files_after_this_page=page.has_more,
            grand_total_raw_files=self._cache.total,
            page_number=page.page_number,
            total_pages=page.total_pages,
        )
