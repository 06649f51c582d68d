from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

SyncState = Literal["synced", "pending", "syncing", "error"]


@dataclass(slots=True)
class PaginationState:
    current_page: int = 1
    continuation_token: Optional[str] = None
    has_more: bool = True
    total_found: int = 0
    # Best-known total of matching files; only ever refined upward.
    grand_total: int = 0


@dataclass(frozen=True, slots=True)
class SyncStatus:
    state: SyncState
    pending_count: int = 0
    seconds_until_next_sync: Optional[float] = None
    last_sync_time: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.state == "error"
