"""In-process job queue using asyncio.

A fixed pool of worker tasks drains one queue of job ids, so at most
``concurrency`` try-ons are in flight at once. No external broker needed.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Set

from tryon.jobs.dispatcher import JobDispatcher

logger = logging.getLogger(__name__)


class InProcessQueue(JobDispatcher):
    """Local async job queue with bounded concurrency."""

    def __init__(self, worker_fn: Callable[[str], Awaitable[None]], concurrency: int = 4):
        """
        worker_fn: async callable(job_id) -> None
            Drives one job to a terminal state. Expected to record its own
            failures; anything it raises is logged and dropped.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker_fn = worker_fn
        self._concurrency = concurrency
        self._workers: List[asyncio.Task] = []
        # Job ids queued or running; a job is owned by exactly one worker
        self._owned: Set[str] = set()
        self._running = False

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def queued_count(self) -> int:
        return self._queue.qsize()

    def active_count(self) -> int:
        return len(self._owned) - self._queue.qsize()

    async def submit(self, job_id: str) -> bool:
        if job_id in self._owned:
            logger.warning("Job %s is already queued or running, ignoring resubmit", job_id)
            return False
        self._owned.add(job_id)
        self._queue.put_nowait(job_id)
        return True

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(n), name=f"tryon-worker-{n}")
            for n in range(self._concurrency)
        ]
        logger.info("Started %d try-on workers", self._concurrency)

    async def stop(self) -> None:
        self._running = False
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers = []

    async def join(self) -> None:
        await self._queue.join()

    async def _worker_loop(self, worker_no: int) -> None:
        """Process jobs one at a time from the shared queue."""
        while self._running:
            try:
                job_id = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            try:
                logger.debug("Worker %d picked up job %s", worker_no, job_id)
                await self._worker_fn(job_id)
            except Exception:
                logger.exception("Worker %d: unhandled error in job %s", worker_no, job_id)
            finally:
                self._owned.discard(job_id)
                self._queue.task_done()
