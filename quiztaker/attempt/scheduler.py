"""
Single tick source for every timer in an attempt.

Countdown ticks, the liveness poll, override expiry and fullscreen
re-entry retries are all jobs on one Scheduler so their ordering is
deterministic: due jobs run in (due time, creation order).
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import time
from functools import partial
from typing import Any, Awaitable, Callable, List, Set

from quiztaker.logger import setup_logger

logger = setup_logger(__name__)

JobCallback = Callable[[], Awaitable[Any] | None]

# Loop passes `settle()` gives running jobs before the clock moves on
SETTLE_ROUNDS = 50


class SystemClock:
    """Wall-clock time in epoch seconds."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """Clock that only moves when told to. Used for replays and tests."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def set(self, value: float) -> None:
        if value < self._now:
            raise ValueError("ManualClock cannot move backwards")
        self._now = float(value)

    def advance(self, seconds: float) -> None:
        self.set(self._now + seconds)


class Job:
    """A scheduled callback. Cancel it to stop future runs."""

    __slots__ = ("due", "interval", "callback", "name", "seq", "cancelled", "task")

    def __init__(
        self,
        due: float,
        callback: JobCallback,
        interval: float | None,
        name: str,
        seq: int,
    ) -> None:
        self.due = due
        self.callback = callback
        self.interval = interval
        self.name = name
        self.seq = seq
        self.cancelled = False
        self.task: asyncio.Future | None = None

    def cancel(self) -> None:
        self.cancelled = True

    def __lt__(self, other: "Job") -> bool:
        return (self.due, self.seq) < (other.due, other.seq)

    def __repr__(self) -> str:
        return f"<Job {self.name} due={self.due:.3f} interval={self.interval}>"


class Scheduler:
    """
    Deterministic job queue driven by one tick source.

    In production `run()` polls the clock every `resolution` seconds.
    Tests drive it with `advance()` on a ManualClock.
    """

    def __init__(self, clock=None, resolution: float = 0.1) -> None:
        self.clock = clock or SystemClock()
        self.resolution = resolution
        self._heap: List[Job] = []
        self._seq = itertools.count()
        self._closed = False
        self._tasks: Set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def call_later(self, delay: float, callback: JobCallback, name: str = "job") -> Job:
        """Run `callback` once, `delay` seconds from now."""
        return self._push(self.clock.now() + max(0.0, delay), callback, None, name)

    def call_every(
        self,
        interval: float,
        callback: JobCallback,
        name: str = "job",
        start_delay: float | None = None,
    ) -> Job:
        """Run `callback` at a fixed rate until the job is cancelled."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        delay = interval if start_delay is None else max(0.0, start_delay)
        return self._push(self.clock.now() + delay, callback, interval, name)

    def _push(
        self, due: float, callback: JobCallback, interval: float | None, name: str
    ) -> Job:
        if self._closed:
            raise RuntimeError("Scheduler is closed")
        job = Job(due, callback, interval, name, next(self._seq))
        heapq.heappush(self._heap, job)
        return job

    @property
    def pending(self) -> int:
        return sum(1 for job in self._heap if not job.cancelled)

    def next_due(self) -> float | None:
        self._drop_cancelled()
        return self._heap[0].due if self._heap else None

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------
    async def tick(self) -> int:
        """
        Start every job due at the current clock time. Returns jobs started.

        Coroutine jobs run as tasks, so a slow job never holds up the jobs
        behind it. A repeating job whose previous run is still going skips
        this run.
        """
        ran = 0
        now = self.clock.now()
        while True:
            self._drop_cancelled()
            if not self._heap or self._heap[0].due > now:
                break
            job = heapq.heappop(self._heap)
            if job.interval is not None:
                job.due += job.interval
                if job.due <= now:
                    # Fell behind, skip missed runs
                    job.due = now + job.interval
                heapq.heappush(self._heap, job)
            if self._run_job(job):
                ran += 1
        return ran

    def _run_job(self, job: Job) -> bool:
        if job.task is not None and not job.task.done():
            logger.debug(f"⏭️ Job {job.name} still running, skipping this run")
            return False
        try:
            result = job.callback()
        except Exception as e:
            logger.error(f"🔥 Scheduled job {job.name} failed: {e}", exc_info=True)
            return True
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            job.task = task
            self._tasks.add(task)
            task.add_done_callback(partial(self._job_finished, job))
        return True

    def _job_finished(self, job: Job, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"🔥 Scheduled job {job.name} failed: {error}", exc_info=error)

    @property
    def running(self) -> int:
        """Coroutine jobs started and not yet finished."""
        return len(self._tasks)

    async def settle(self, rounds: int = SETTLE_ROUNDS) -> None:
        """Yield to running jobs until they finish or `rounds` passes go by."""
        for _ in range(rounds):
            if not self._tasks:
                return
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> int:
        """
        Move a ManualClock forward, stopping at every due time on the way.

        Jobs started at each stop get a chance to finish before the clock
        moves on. Jobs blocked on something outside the loop are left running.

        Args:
            seconds: How far to move the clock

        Returns:
            Number of jobs started
        """
        target = self.clock.now() + seconds
        ran = 0
        while True:
            due = self.next_due()
            if due is None or due > target:
                break
            if due > self.clock.now():
                self.clock.set(due)
            ran += await self.tick()
            await self.settle()
        self.clock.set(target)
        ran += await self.tick()
        await self.settle()
        return ran

    async def run(self) -> None:
        """Tick until closed."""
        logger.info(f"⏱️  Scheduler running (resolution: {self.resolution}s)")
        while not self._closed:
            await self.tick()
            await asyncio.sleep(self.resolution)

    def close(self) -> None:
        """Cancel every job and running task, and stop `run()`."""
        for job in self._heap:
            job.cancel()
        self._heap.clear()
        for task in list(self._tasks):
            task.cancel()
        self._closed = True

    def _drop_cancelled(self) -> None:
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)
