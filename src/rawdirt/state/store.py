from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from rawdirt.models import RawFileRecord, from_index_fields
from rawdirt.state.local_cache import LocalDurableCache
from rawdirt.state.models import PaginationState

logger = logging.getLogger(__name__)

PendingListener = Callable[[], None]


class AppStateStore:
    """
    In-memory source of truth for the client side: the loaded file page, selection,
    pagination cursors, pending local edits and the bulk index snapshot.

    Listing results are hydrated per key from, in order: the override cache (edits
    made while the file was off-screen), the durable local cache, and the index
    snapshot. The first source that has an entry wins.
    """

    def __init__(self, *, local_cache: Optional[LocalDurableCache] = None) -> None:
        self._local_cache = local_cache
        self.files: List[RawFileRecord] = []
        self.selected: Optional[RawFileRecord] = None
        self.pagination = PaginationState()
        self._index_snapshot: Dict[str, Dict[str, Any]] = {}
        self._overrides: Dict[str, Dict[str, Any]] = {}
        self._pending: Dict[str, Dict[str, Any]] = {}
        self._pending_versions: Dict[str, int] = {}
        self._listeners: List[PendingListener] = []

    # Subscriptions

    def subscribe_pending(self, listener: PendingListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify_pending(self) -> None:
        for listener in list(self._listeners):
            listener()

    # Hydration

    def set_index_snapshot(self, files: Mapping[str, Mapping[str, Any]]) -> None:
        self._index_snapshot = {key: dict(entry) for key, entry in files.items() if isinstance(entry, Mapping)}
        logger.info("Loaded metadata index snapshot. files=%s", len(self._index_snapshot))

    def _hydrate(self, record: RawFileRecord) -> RawFileRecord:
        override = self._overrides.get(record.key)
        if override:
            record.apply(override)
            return record

        if self._local_cache is not None:
            local = self._local_cache.load(record.key)
            if local:
                record.apply(local)
                return record

        indexed = self._index_snapshot.get(record.key)
        if indexed:
            record.apply(from_index_fields(indexed, file_key=record.key))
        return record

    def get_cached_metadata(self, key: str) -> Optional[Dict[str, Any]]:
        cached = self._overrides.get(key)
        return dict(cached) if cached is not None else None

    # File list

    def find(self, key: str) -> Optional[RawFileRecord]:
        for record in self.files:
            if record.key == key:
                return record
        return None

    def set_files(
        self,
        records: Sequence[RawFileRecord],
        *,
        next_token: Optional[str] = None,
        total_found: Optional[int] = None,
        has_more: Optional[bool] = None,
    ) -> None:
        self.files = [self._hydrate(record) for record in records]
        self.selected = None
        self.pagination.continuation_token = next_token
        self.pagination.total_found = total_found if total_found is not None else len(self.files)
        self.pagination.has_more = has_more if has_more is not None else True
        self.pagination.current_page = 1

    def append_files(
        self,
        records: Sequence[RawFileRecord],
        *,
        next_token: Optional[str] = None,
        has_more: Optional[bool] = None,
    ) -> None:
        known = {record.key for record in self.files}
        fresh = [self._hydrate(record) for record in records if record.key not in known]
        if len(fresh) != len(records):
            logger.debug("Dropped duplicate keys while appending files. dropped=%s", len(records) - len(fresh))
        self.files.extend(fresh)
        self.pagination.continuation_token = next_token
        self.pagination.total_found = len(self.files)
        self.pagination.has_more = has_more if has_more is not None else True

    def select_file(self, key: Optional[str]) -> Optional[RawFileRecord]:
        self.selected = self.find(key) if key is not None else None
        return self.selected

    def increment_page(self) -> None:
        self.pagination.current_page += 1

    def reset_pagination(self) -> None:
        grand_total = self.pagination.grand_total
        self.files = []
        self.pagination = PaginationState(grand_total=grand_total)

    def observe_grand_total(self, total: Optional[int]) -> None:
        if total is not None and total > self.pagination.grand_total:
            self.pagination.grand_total = total

    # Local edits

    def update_file_metadata(self, key: str, updates: Mapping[str, Any]) -> None:
        clean = {name: value for name, value in updates.items() if value is not None and name != "key"}
        if not clean:
            return

        merged = dict(self._pending.get(key, {}))
        merged.update(clean)
        self._pending[key] = merged
        self._pending_versions[key] = self._pending_versions.get(key, 0) + 1

        if self._local_cache is not None:
            self._local_cache.save(key, merged)

        record = self.find(key)
        if record is not None:
            record.apply(clean)
        else:
            override = dict(self._overrides.get(key, {}))
            override.update(clean)
            self._overrides[key] = override
            logger.debug("Stored metadata for off-screen file. key=%s", key)

        self._notify_pending()

    def has_pending_changes(self) -> bool:
        return bool(self._pending)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending_snapshot(self) -> tuple[Dict[str, Dict[str, Any]], Dict[str, int]]:
        """Copy of pending edits plus the per-key versions they were taken at."""
        return (
            {key: dict(changes) for key, changes in self._pending.items()},
            dict(self._pending_versions),
        )

    def acknowledge_synced(self, versions: Mapping[str, int]) -> None:
        """Drop pending edits that were synced and have not changed since the snapshot."""
        for key, version in versions.items():
            if self._pending_versions.get(key) == version:
                self._pending.pop(key, None)
                self._pending_versions.pop(key, None)

    def clear_pending_changes(self) -> None:
        self._pending.clear()
        self._pending_versions.clear()
        self._notify_pending()
