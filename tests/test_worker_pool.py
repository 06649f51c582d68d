import asyncio
import unittest

from rawdirt.errors import ProcessingError, UserCancellation
from rawdirt.processing.events import ActiveTasksChanged, EventStream, SlotCompleted, SlotProgressed, SlotStarted
from rawdirt.processing.models import FileJob, ProcessedResult
from rawdirt.processing.pool import WorkerPool


def _jobs(count: int):
    return [FileJob(key=f"file_{i}.cr2", url=f"https://example.invalid/{i}") for i in range(count)]


class _Runner:
    """Job runner with per-key latency, failures and gates."""

    def __init__(self, *, delays=None, failing=(), gates=None) -> None:
        self.delays = delays or {}
        self.failing = set(failing)
        self.gates = gates or {}
        self.in_flight = 0
        self.peak = 0
        self.started = []

    async def __call__(self, job: FileJob, on_stage) -> ProcessedResult:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        self.started.append(job.key)
        try:
            on_stage("Fetching file...")
            gate = self.gates.get(job.key)
            if gate is not None:
                await gate.wait()
            await asyncio.sleep(self.delays.get(job.key, 0))
            on_stage("Decoding RAW file...")
            if job.key in self.failing:
                raise ProcessingError("decode failed", file_key=job.key)
            return ProcessedResult(key=job.key, pixels=None, width=1, height=1)
        finally:
            self.in_flight -= 1


class WorkerPoolTests(unittest.IsolatedAsyncioTestCase):
    async def test_run_all_with_empty_queue_resolves_immediately(self) -> None:
        pool = WorkerPool(_Runner(), max_workers=3)
        self.assertEqual(await pool.run_all(), [])
        self.assertEqual(pool.state, "empty")

    async def test_single_job(self) -> None:
        pool = WorkerPool(_Runner(), max_workers=3)
        tickets = pool.enqueue(_jobs(1))
        outcomes = await pool.run_all()

        self.assertEqual(len(outcomes), 1)
        self.assertTrue(outcomes[0].ok)
        self.assertIs((await tickets[0].outcome), outcomes[0])
        self.assertEqual(pool.state, "quiescent")
        self.assertEqual(pool.slots[0].completed_count, 1)

    async def test_failed_job_ticket_raises_the_job_error(self) -> None:
        pool = WorkerPool(_Runner(failing={"file_1.cr2"}), max_workers=2)
        tickets = pool.enqueue(_jobs(2))
        outcomes = await pool.run_all()

        ok = await tickets[0].outcome
        self.assertTrue(ok.ok)
        with self.assertRaises(ProcessingError) as raised:
            await tickets[1].outcome
        self.assertEqual(raised.exception.file_key, "file_1.cr2")
        failed = next(o for o in outcomes if not o.ok)
        self.assertIs(failed.error, raised.exception)

    async def test_enqueue_does_not_start_processing(self) -> None:
        runner = _Runner()
        pool = WorkerPool(runner, max_workers=2)
        pool.enqueue(_jobs(3))
        await asyncio.sleep(0)
        self.assertEqual(runner.started, [])
        self.assertEqual(pool.queued, 3)

    async def test_ten_jobs_three_slots_with_one_failure(self) -> None:
        delays = {f"file_{i}.cr2": 0.001 * ((i * 7) % 5) for i in range(10)}
        runner = _Runner(delays=delays, failing={"file_3.cr2"})
        pool = WorkerPool(runner, max_workers=3)
        completed = []
        resolutions = []

        def _listen(event):
            if isinstance(event, SlotCompleted):
                completed.append(event)

        pool.events.subscribe(_listen)
        pool.enqueue(_jobs(10))

        run = asyncio.ensure_future(pool.run_all())
        run.add_done_callback(resolutions.append)
        outcomes = await run

        self.assertLessEqual(runner.peak, 3)
        self.assertEqual(len(outcomes), 10)
        self.assertEqual(sum(slot.completed_count for slot in pool.slots), 10)
        failed = [o for o in outcomes if not o.ok]
        self.assertEqual([o.job.key for o in failed], ["file_3.cr2"])
        self.assertEqual([e.error for e in completed if e.error], ["decode failed"])
        self.assertEqual(runner.started[:3], ["file_0.cr2", "file_1.cr2", "file_2.cr2"])
        self.assertEqual(len(resolutions), 1)
        self.assertTrue(all(slot.state == "idle" for slot in pool.slots))

    async def test_jobs_are_dequeued_in_fifo_order(self) -> None:
        runner = _Runner()
        pool = WorkerPool(runner, max_workers=1)
        pool.enqueue(_jobs(5))
        await pool.run_all()
        self.assertEqual(runner.started, [job.key for job in _jobs(5)])

    async def test_events_follow_slot_transitions(self) -> None:
        events = []
        pool = WorkerPool(_Runner(), max_workers=1)
        pool.events.subscribe(events.append)
        pool.enqueue(_jobs(1))
        await pool.run_all()

        kinds = [type(event) for event in events]
        self.assertEqual(kinds[0], SlotStarted)
        self.assertIn(SlotProgressed, kinds)
        self.assertEqual(kinds.count(SlotCompleted), 1)
        self.assertIsInstance(events[-1], ActiveTasksChanged)
        self.assertEqual(events[-1].tasks, ())

        progressed = [event.stage for event in events if isinstance(event, SlotProgressed)]
        self.assertEqual(progressed, ["Fetching file...", "Decoding RAW file..."])

    async def test_active_roster_reports_running_jobs(self) -> None:
        gate = asyncio.Event()
        runner = _Runner(gates={"file_0.cr2": gate, "file_1.cr2": gate})
        pool = WorkerPool(runner, max_workers=2)
        pool.enqueue(_jobs(2))
        run = asyncio.ensure_future(pool.run_all())
        await asyncio.sleep(0.01)

        tasks = pool.active_tasks()
        self.assertEqual({task.file_key for task in tasks}, {"file_0.cr2", "file_1.cr2"})
        self.assertTrue(all(task.stage == "Fetching file..." for task in tasks))
        self.assertEqual(pool.state, "draining")

        gate.set()
        await run

    async def test_stop_rejects_run_and_voids_queue(self) -> None:
        gate = asyncio.Event()
        gates = {f"file_{i}.cr2": gate for i in range(6)}
        runner = _Runner(gates=gates)
        pool = WorkerPool(runner, max_workers=2)
        completed = []
        pool.events.subscribe(lambda e: completed.append(e) if isinstance(e, SlotCompleted) else None)
        tickets = pool.enqueue(_jobs(6))

        run = asyncio.ensure_future(pool.run_all())
        await asyncio.sleep(0.01)
        pool.stop()

        with self.assertRaises(UserCancellation):
            await run
        self.assertEqual(pool.state, "stopped")
        self.assertEqual(pool.queued, 0)
        self.assertTrue(all(ticket.outcome.cancelled() for ticket in tickets))

        # Abandoned jobs settle later without touching slot bookkeeping.
        gate.set()
        await pool.wait_abandoned()
        self.assertEqual(completed, [])
        self.assertEqual(runner.started, ["file_0.cr2", "file_1.cr2"])
        for slot in pool.slots:
            self.assertEqual(slot.state, "idle")
            self.assertIsNone(slot.current_file_key)
            self.assertEqual(slot.completed_count, 0)

    async def test_pool_is_reusable_after_stop(self) -> None:
        gate = asyncio.Event()
        runner = _Runner(gates={"file_0.cr2": gate})
        pool = WorkerPool(runner, max_workers=1)
        pool.enqueue(_jobs(1))
        run = asyncio.ensure_future(pool.run_all())
        await asyncio.sleep(0.01)
        pool.stop()
        with self.assertRaises(UserCancellation):
            await run

        pool.enqueue([FileJob(key="again.cr2", url="https://example.invalid/again")])
        outcomes = await pool.run_all()
        self.assertEqual([o.job.key for o in outcomes], ["again.cr2"])

        gate.set()
        await pool.wait_abandoned()
        self.assertEqual(pool.slots[0].completed_count, 1)

    async def test_optional_job_timeout(self) -> None:
        gate = asyncio.Event()
        pool = WorkerPool(_Runner(gates={"file_0.cr2": gate}), max_workers=1, job_timeout_seconds=0.01)
        pool.enqueue(_jobs(2))
        outcomes = await pool.run_all()

        by_key = {o.job.key: o for o in outcomes}
        self.assertIsInstance(by_key["file_0.cr2"].error, ProcessingError)
        self.assertTrue(by_key["file_1.cr2"].ok)

    async def test_second_run_while_running_is_rejected(self) -> None:
        gate = asyncio.Event()
        pool = WorkerPool(_Runner(gates={"file_0.cr2": gate}), max_workers=1)
        pool.enqueue(_jobs(1))
        run = asyncio.ensure_future(pool.run_all())
        await asyncio.sleep(0)
        with self.assertRaises(RuntimeError):
            await pool.run_all()
        gate.set()
        await run


class EventStreamTests(unittest.IsolatedAsyncioTestCase):
    async def test_async_iterator_receives_emitted_events(self) -> None:
        stream = EventStream()
        received = []

        async def _consume() -> None:
            async for event in stream.events():
                received.append(event)
                if isinstance(event, SlotCompleted):
                    return

        consumer = asyncio.ensure_future(_consume())
        await asyncio.sleep(0)
        stream.emit(SlotStarted(slot_id=0, file_key="a.cr2"))
        stream.emit(SlotCompleted(slot_id=0, file_key="a.cr2"))
        await consumer

        self.assertEqual([type(e) for e in received], [SlotStarted, SlotCompleted])

    def test_failing_listener_does_not_block_others(self) -> None:
        stream = EventStream()
        seen = []

        def _broken(_event) -> None:
            raise RuntimeError("boom")

        stream.subscribe(_broken)
        stream.subscribe(seen.append)
        with self.assertLogs("rawdirt.processing.events", level="ERROR"):
            stream.emit(SlotStarted(slot_id=1, file_key="b.cr2"))
        self.assertEqual(len(seen), 1)


if __name__ == "__main__":
    unittest.main()
