"""Background TTL sweeps for the in-memory OAuth stores.

Each store is swept on its own fixed interval by an asyncio task started
from the application lifespan. Sweeps only delete keys that are still
present, so they never conflict with a request that consumed the entry
first.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class SweepJob:
    name: str
    interval: float
    sweep: Callable[[], int]


def run_sweep(job: SweepJob) -> int:
    """Run one sweep. Errors are logged so the loop keeps going."""
    try:
        removed = job.sweep()
    except Exception as e:
        logger.warning(f"[SWEEP] {job.name} sweep failed: {e}")
        return 0
    if removed:
        logger.debug(f"[SWEEP] {job.name}: removed {removed} expired entries")
    return removed


async def _sweep_worker(job: SweepJob) -> None:
    while True:
        await asyncio.sleep(job.interval)
        run_sweep(job)


class Sweeper:
    """Owns the periodic sweep tasks."""

    def __init__(self, jobs: list[SweepJob]):
        self.jobs = jobs
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(_sweep_worker(job), name=f"sweep-{job.name}")
            for job in self.jobs
        ]
        logger.info(f"[SWEEP] Started {len(self._tasks)} sweep tasks")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

    def sweep_all(self) -> int:
        return sum(run_sweep(job) for job in self.jobs)
