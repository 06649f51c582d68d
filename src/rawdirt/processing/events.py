from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActiveTask:
    slot_id: int
    file_key: str
    stage: str
    started_at: datetime


@dataclass(frozen=True, slots=True)
class SlotStarted:
    slot_id: int
    file_key: str


@dataclass(frozen=True, slots=True)
class SlotProgressed:
    slot_id: int
    file_key: str
    stage: str


@dataclass(frozen=True, slots=True)
class SlotCompleted:
    slot_id: int
    file_key: str
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ActiveTasksChanged:
    tasks: tuple[ActiveTask, ...]


PoolEvent = Union[SlotStarted, SlotProgressed, SlotCompleted, ActiveTasksChanged]
Listener = Callable[[PoolEvent], None]


class EventStream:
    """
    Fan-out of pool events to subscribers.

    Listeners are called synchronously with the emitting transition. `events()`
    adapts the stream to an async iterator backed by an unbounded queue.
    """

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: PoolEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Pool event listener failed. event=%s", type(event).__name__)

    async def events(self) -> AsyncIterator[PoolEvent]:
        queue: asyncio.Queue[PoolEvent] = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()
