from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class _QueuedWrite:
    op: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    label: str


class SingleFlightWriteQueue:
    """
    FIFO queue that runs at most one write at a time.

    Submitted operations are drained strictly in submission order by a single drain
    task owned by the queue. Consecutive operations are spaced by at least
    `min_interval_seconds`, measured from the end of the previous operation.
    """

    def __init__(
        self,
        *,
        min_interval_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._min_interval = min_interval_seconds
        self._clock = clock
        self._queue: asyncio.Queue[_QueuedWrite] = asyncio.Queue()
        self._drain_task: Optional[asyncio.Task] = None
        self._last_finished: Optional[float] = None
        self._closed = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def in_flight(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    async def submit(self, op: Callable[[], Awaitable[T]], *, label: str = "write") -> T:
        if self._closed:
            raise RuntimeError("Write queue is closed")
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_QueuedWrite(op=op, future=future, label=label))
        logger.debug("Queued write. label=%s pending=%s", label, self._queue.qsize())
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain())
        return await future

    async def _drain(self) -> None:
        while not self._queue.empty():
            item = self._queue.get_nowait()
            try:
                if item.future.cancelled():
                    continue
                await self._wait_for_interval()
                try:
                    result = await item.op()
                except asyncio.CancelledError:
                    if not item.future.done():
                        item.future.cancel()
                    raise
                except Exception as exc:
                    if not item.future.done():
                        item.future.set_exception(exc)
                else:
                    if not item.future.done():
                        item.future.set_result(result)
                finally:
                    self._last_finished = self._clock()
            finally:
                self._queue.task_done()

    async def _wait_for_interval(self) -> None:
        if self._last_finished is None or self._min_interval <= 0:
            return
        remaining = self._min_interval - (self._clock() - self._last_finished)
        if remaining > 0:
            logger.debug("Waiting out minimum write interval. seconds=%.3f", remaining)
            await asyncio.sleep(remaining)

    async def close(self) -> None:
        """Stop accepting writes, fail queued ones and wait for the in-flight write to settle."""
        self._closed = True
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if not item.future.done():
                item.future.set_exception(RuntimeError("Write queue is closed"))
            self._queue.task_done()
        if self._drain_task is not None:
            await asyncio.gather(self._drain_task, return_exceptions=True)
