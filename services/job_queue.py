"""
Bounded in-process queue connecting submission to the worker pool.
"""
import asyncio
from typing import Optional, Set

from core.logger import setup_logger

logger = setup_logger(__name__)


class JobQueue:
    """Bounded FIFO of job ids that ignores ids it already holds."""

    def __init__(self, maxsize: int = 100):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._queued: Set[int] = set()

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    def qsize(self) -> int:
        return self._queue.qsize()

    def __contains__(self, job_id: int) -> bool:
        return job_id in self._queued

    async def enqueue(self, job_id: int, timeout: Optional[float] = None) -> bool:
        """
        Add a job id, waiting up to ``timeout`` seconds for capacity.

        Returns:
            True if the id is in the queue afterwards, False if the queue stayed full
        """
        if job_id in self._queued:
            logger.debug(f"Job {job_id} already queued")
            return True

        self._queued.add(job_id)
        try:
            if timeout is None:
                await self._queue.put(job_id)
            else:
                await asyncio.wait_for(self._queue.put(job_id), timeout=timeout)
        except asyncio.TimeoutError:
            self._queued.discard(job_id)
            logger.warning(f"Queue full ({self.maxsize}), job {job_id} not enqueued")
            return False
        except BaseException:
            self._queued.discard(job_id)
            raise

        logger.debug(f"Job {job_id} enqueued ({self.qsize()}/{self.maxsize})")
        return True

    async def dequeue(self) -> int:
        """Wait for the next job id."""
        job_id = await self._queue.get()
        self._queued.discard(job_id)
        return job_id

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every dequeued job has been marked done."""
        await self._queue.join()
