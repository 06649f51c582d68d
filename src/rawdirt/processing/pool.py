from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Deque, List, Literal, Optional, Sequence, Set

from rawdirt.errors import ProcessingError, UserCancellation
from rawdirt.processing.events import (
    ActiveTask,
    ActiveTasksChanged,
    EventStream,
    SlotCompleted,
    SlotProgressed,
    SlotStarted,
)
from rawdirt.processing.models import STAGE_STARTING, FileJob, ProcessedResult
from rawdirt.utils import utc_now

logger = logging.getLogger(__name__)

SlotState = Literal["idle", "running"]
PoolState = Literal["empty", "draining", "quiescent", "stopped"]

JobRunner = Callable[[FileJob, Callable[[str], None]], Awaitable[ProcessedResult]]


@dataclass(slots=True)
class WorkerSlot:
    slot_id: int
    state: SlotState = "idle"
    current_file_key: Optional[str] = None
    current_stage: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_count: int = 0

    def clear(self) -> None:
        self.state = "idle"
        self.current_file_key = None
        self.current_stage = None
        self.started_at = None


@dataclass(slots=True)
class JobOutcome:
    job: FileJob
    result: Optional[ProcessedResult] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> ProcessedResult:
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


@dataclass(slots=True)
class JobTicket:
    job: FileJob
    # Resolves with the job's outcome or raises its error. Cancelled when stop() voids the job.
    outcome: asyncio.Future = field(repr=False)


class WorkerPool:
    """
    Bounded-concurrency scheduler for file processing jobs.

    Jobs are dequeued strictly FIFO into a fixed set of slots. A finishing slot picks
    up the next queued job before it goes idle. `run_all` resolves once the queue is
    empty and every slot is idle. `stop` voids the queue and abandons running jobs;
    their eventual settlement is ignored.
    """

    def __init__(
        self,
        runner: JobRunner,
        *,
        max_workers: int = 6,
        job_timeout_seconds: Optional[float] = None,
        events: Optional[EventStream] = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._runner = runner
        self._job_timeout = job_timeout_seconds
        self.events = events or EventStream()
        self._slots = [WorkerSlot(slot_id=i) for i in range(max_workers)]
        self._queue: Deque[JobTicket] = deque()
        self._running: dict[int, JobTicket] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._run_future: Optional[asyncio.Future] = None
        self._results: List[JobOutcome] = []
        self._generation = 0
        self._ever_queued = False
        self._stopped = False

    @property
    def max_workers(self) -> int:
        return len(self._slots)

    @property
    def slots(self) -> Sequence[WorkerSlot]:
        return tuple(self._slots)

    @property
    def queued(self) -> int:
        return len(self._queue)

    @property
    def active_count(self) -> int:
        return sum(1 for slot in self._slots if slot.state == "running")

    @property
    def state(self) -> PoolState:
        if self._stopped:
            return "stopped"
        if not self._ever_queued:
            return "empty"
        if self._queue or self.active_count:
            return "draining"
        return "quiescent"

    def active_tasks(self) -> tuple[ActiveTask, ...]:
        return tuple(
            ActiveTask(
                slot_id=slot.slot_id,
                file_key=slot.current_file_key or "",
                stage=slot.current_stage or "",
                started_at=slot.started_at or utc_now(),
            )
            for slot in self._slots
            if slot.state == "running"
        )

    def enqueue(self, jobs: Sequence[FileJob]) -> List[JobTicket]:
        """Append jobs to the queue. Processing starts with `run_all`."""
        loop = asyncio.get_running_loop()
        tickets = [JobTicket(job=job, outcome=loop.create_future()) for job in jobs]
        self._queue.extend(tickets)
        if tickets:
            self._ever_queued = True
            self._stopped = False
        logger.debug("Enqueued jobs. count=%s queued=%s", len(tickets), len(self._queue))
        return tickets

    async def run_all(self) -> List[JobOutcome]:
        """Drain the queue; returns every outcome of this run in completion order."""
        if self._run_future is not None and not self._run_future.done():
            raise RuntimeError("Worker pool is already running")
        self._stopped = False
        if not self._queue and not self.active_count:
            return []

        self._results = []
        self._run_future = asyncio.get_running_loop().create_future()
        run_future = self._run_future
        logger.info("Worker pool started. queued=%s max_workers=%s", len(self._queue), self.max_workers)
        self._fill(self._generation)
        return await run_future

    def stop(self) -> None:
        """Void the queue, idle every slot and reject the outstanding `run_all`."""
        logger.info(
            "Stopping worker pool. active=%s queued=%s",
            self.active_count,
            len(self._queue),
        )
        self._generation += 1
        self._stopped = True

        while self._queue:
            self._queue.popleft().outcome.cancel()
        for ticket in self._running.values():
            ticket.outcome.cancel()
        self._running.clear()
        for slot in self._slots:
            slot.clear()

        self.events.emit(ActiveTasksChanged(tasks=()))
        if self._run_future is not None and not self._run_future.done():
            self._run_future.set_exception(UserCancellation())

    async def wait_abandoned(self) -> None:
        """Wait for job tasks still running after a stop to settle."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fill(self, generation: int) -> None:
        for slot in self._slots:
            if not self._queue:
                return
            if slot.state == "idle":
                self._start(slot, self._queue.popleft(), generation)

    def _start(self, slot: WorkerSlot, ticket: JobTicket, generation: int) -> None:
        slot.state = "running"
        slot.current_file_key = ticket.job.key
        slot.current_stage = STAGE_STARTING
        slot.started_at = utc_now()
        self._running[slot.slot_id] = ticket
        self.events.emit(SlotStarted(slot_id=slot.slot_id, file_key=ticket.job.key))
        self.events.emit(ActiveTasksChanged(tasks=self.active_tasks()))

        task = asyncio.create_task(self._run_job(slot, ticket, generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _is_current(self, slot: WorkerSlot, ticket: JobTicket, generation: int) -> bool:
        return generation == self._generation and self._running.get(slot.slot_id) is ticket

    async def _run_job(self, slot: WorkerSlot, ticket: JobTicket, generation: int) -> None:
        key = ticket.job.key

        def _on_stage(stage: str) -> None:
            if not self._is_current(slot, ticket, generation):
                return
            slot.current_stage = stage
            self.events.emit(SlotProgressed(slot_id=slot.slot_id, file_key=key, stage=stage))
            self.events.emit(ActiveTasksChanged(tasks=self.active_tasks()))

        result: Optional[ProcessedResult] = None
        error: Optional[BaseException] = None
        try:
            work = self._runner(ticket.job, _on_stage)
            if self._job_timeout is not None:
                result = await asyncio.wait_for(work, timeout=self._job_timeout)
            else:
                result = await work
        except asyncio.TimeoutError:
            error = ProcessingError(f"Processing timed out after {self._job_timeout}s", file_key=key)
        except Exception as exc:
            error = exc

        if not self._is_current(slot, ticket, generation):
            logger.debug("Ignoring settlement of abandoned job. key=%s", key)
            if result is not None:
                result.release()
            return
        self._settle(slot, ticket, result, error, generation)

    def _settle(
        self,
        slot: WorkerSlot,
        ticket: JobTicket,
        result: Optional[ProcessedResult],
        error: Optional[BaseException],
        generation: int,
    ) -> None:
        key = ticket.job.key
        del self._running[slot.slot_id]
        slot.completed_count += 1
        outcome = JobOutcome(job=ticket.job, result=result, error=error)
        self._results.append(outcome)
        if error is not None:
            logger.warning("Job failed. slot=%s key=%s error=%s", slot.slot_id, key, error)
        if not ticket.outcome.done():
            if error is not None:
                ticket.outcome.set_exception(error)
            else:
                ticket.outcome.set_result(outcome)

        self.events.emit(
            SlotCompleted(slot_id=slot.slot_id, file_key=key, error=str(error) if error is not None else None)
        )
        # A listener may have stopped the pool.
        if generation != self._generation:
            return

        if self._queue:
            self._start(slot, self._queue.popleft(), generation)
            self._fill(generation)
            return

        slot.clear()
        self.events.emit(ActiveTasksChanged(tasks=self.active_tasks()))
        if self.active_count == 0 and self._run_future is not None and not self._run_future.done():
            logger.info("Worker pool drained. processed=%s", len(self._results))
            self._run_future.set_result(list(self._results))
