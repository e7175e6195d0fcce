"""Periodic expiry sweeps.

One asyncio task drives every named job at its own fixed interval, so
expiring records never needs a timer per entry. A failing job is logged
and retried on its next tick.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

# Upper bound on how long the loop sleeps between checks
MAX_TICK_SECONDS = 1.0


@dataclass
class SweepJob:
    name: str
    interval: float
    run: Callable[[], Awaitable]
    next_run: float = 0.0


class PeriodicSweeper:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._jobs: list[SweepJob] = []
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

    def add_job(self, name: str, interval: float, run: Callable[[], Awaitable]) -> None:
        self._jobs.append(SweepJob(name, interval, run, self._clock() + interval))

    @property
    def jobs(self) -> list[str]:
        return [job.name for job in self._jobs]

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_due(self) -> list[str]:
        """Run every job whose interval has elapsed. Returns the names run."""
        now = self._clock()
        ran = []
        for job in self._jobs:
            if now < job.next_run:
                continue
            job.next_run = now + job.interval
            try:
                await job.run()
            except Exception:
                logger.exception(f"[SWEEP] Job {job.name} failed")
            ran.append(job.name)
        return ran

    async def _loop(self) -> None:
        while not self._stop.is_set():
            await self.run_due()
            try:
                await asyncio.wait_for(self._stop.wait(), self._sleep_time())
            except asyncio.TimeoutError:
                pass

    def _sleep_time(self) -> float:
        if not self._jobs:
            return MAX_TICK_SECONDS
        wait = min(job.next_run for job in self._jobs) - self._clock()
        return max(0.0, min(wait, MAX_TICK_SECONDS))

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"[SWEEP] Started jobs: {', '.join(self.jobs)}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        await self._task
        self._task = None
        logger.info("[SWEEP] Stopped")
