"""Client-side application state and metadata sync."""

from rawdirt.state.local_cache import LocalDurableCache
from rawdirt.state.models import PaginationState, SyncStatus
from rawdirt.state.store import AppStateStore
from rawdirt.state.sync import SyncCoordinator

__all__ = ["AppStateStore", "LocalDurableCache", "PaginationState", "SyncCoordinator", "SyncStatus"]
