from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, Optional

from rawdirt.config.models import SyncSettings
from rawdirt.errors import RawdirtError
from rawdirt.index.interfaces import MetadataIndex
from rawdirt.index.models import BatchUpdateResult
from rawdirt.models import to_index_fields
from rawdirt.state.models import SyncStatus
from rawdirt.state.store import AppStateStore
from rawdirt.utils import utc_now

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """
    Pushes pending local edits to the metadata index in batches.

    The first edit after a quiet period arms a timer for `debounce_seconds`; edits
    arriving inside that window ride along in the same batch. A failed sync keeps the
    edits pending and re-arms the timer for `retry_seconds`. Armed timers are tracked
    by generation so a manual sync or a reset invalidates them.
    """

    def __init__(
        self,
        state: AppStateStore,
        index: MetadataIndex,
        settings: SyncSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._state = state
        self._index = index
        self._settings = settings
        self._clock = clock

        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self._schedule_handle: Optional[asyncio.TimerHandle] = None
        self._next_sync_at: Optional[float] = None
        self._inflight: Optional[asyncio.Task] = None
        self._last_sync_time: Optional[datetime] = None
        self._error: Optional[str] = None

        self._unsubscribe = state.subscribe_pending(self._on_pending_change)

    @property
    def syncing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def status(self) -> SyncStatus:
        pending = self._state.pending_count
        seconds_left = None
        if self._next_sync_at is not None:
            seconds_left = max(0.0, self._next_sync_at - self._clock())

        if self.syncing:
            state = "syncing"
        elif self._error is not None:
            state = "error"
        elif pending > 0:
            state = "pending"
        else:
            state = "synced"
        return SyncStatus(
            state=state,
            pending_count=pending,
            seconds_until_next_sync=seconds_left,
            last_sync_time=self._last_sync_time,
            error=self._error,
        )

    def _on_pending_change(self) -> None:
        if not self._state.has_pending_changes():
            self._reset_schedule()
            return
        if self._schedule_handle is not None or self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._schedule_handle = loop.call_later(self._settings.schedule_delay_seconds, self._scheduled_check)

    def _scheduled_check(self) -> None:
        self._schedule_handle = None
        self.schedule()

    def schedule(self) -> None:
        """Arm the debounce timer unless a sync is running or already armed."""
        if self.syncing or self._timer is not None:
            return
        if not self._state.has_pending_changes():
            self._next_sync_at = None
            return
        self._arm(self._settings.debounce_seconds)
        logger.debug("Scheduled metadata sync. delay_seconds=%s", self._settings.debounce_seconds)

    def _arm(self, delay: float) -> None:
        self._cancel_timer()
        self._generation += 1
        generation = self._generation
        self._next_sync_at = self._clock() + delay
        self._timer = asyncio.create_task(self._fire_after(delay, generation))

    async def _fire_after(self, delay: float, generation: int) -> None:
        await asyncio.sleep(delay)
        if generation != self._generation:
            return
        self._timer = None
        try:
            await self._start_sync()
        except Exception:
            # Already recorded as the sync error and re-armed for retry.
            pass

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def _reset_schedule(self) -> None:
        self._generation += 1
        self._cancel_timer()
        if self._schedule_handle is not None:
            self._schedule_handle.cancel()
            self._schedule_handle = None
        self._next_sync_at = None
        self._error = None

    async def sync_now(self) -> Optional[BatchUpdateResult]:
        """
        Push pending edits immediately.

        Joins a sync that is already running. Raises the store error when the write
        fails; the edits stay pending and a retry is scheduled.
        """
        self._generation += 1
        self._cancel_timer()
        return await self._start_sync()

    async def _start_sync(self) -> Optional[BatchUpdateResult]:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._sync())
        return await asyncio.shield(self._inflight)

    async def _sync(self) -> Optional[BatchUpdateResult]:
        snapshot, versions = self._state.pending_snapshot()
        if not snapshot:
            self._next_sync_at = None
            return None

        self._error = None
        self._next_sync_at = None
        logger.info("Starting metadata sync. pending=%s", len(snapshot))
        payload = {key: to_index_fields(changes) for key, changes in snapshot.items()}
        try:
            result = await self._index.batch_update(payload)
        except Exception as exc:
            self._error = str(exc) or type(exc).__name__
            logger.warning(
                "Metadata sync failed, keeping changes pending. pending=%s retry_seconds=%s error=%s",
                len(snapshot),
                self._settings.retry_seconds,
                exc,
                exc_info=not isinstance(exc, RawdirtError),
            )
            self._arm(self._settings.retry_seconds)
            raise

        self._state.acknowledge_synced(versions)
        self._last_sync_time = utc_now()
        logger.info("Metadata sync complete. updated_count=%s", result.updated_count)

        if self._state.has_pending_changes():
            self._inflight = None
            self.schedule()
        return result

    async def close(self) -> None:
        self._unsubscribe()
        self._reset_schedule()
        if self._inflight is not None and not self._inflight.done():
            await asyncio.gather(self._inflight, return_exceptions=True)
