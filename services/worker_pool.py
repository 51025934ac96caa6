"""
Background workers that turn pending jobs into categorized spendings.

Each worker is an asyncio task pulling job ids from the shared queue.
Blocking work (sqlite, the classification HTTP call) runs in the default
thread pool. Every failure is converted into a terminal ``failed`` job;
nothing escapes the worker loop.
"""
import asyncio
from typing import List, Optional

from core.apportionment import resolve_line_items
from core.config import Settings, get_settings
from core.db import Database
from core.exceptions import CategorizerException
from core.job_store import JobStore
from core.logger import setup_logger
from core.schema import ClassificationResult, Job
from llm.classify import SpendingClassifier
from services.job_queue import JobQueue

logger = setup_logger(__name__)

INTERRUPTED_MESSAGE = "Processing was interrupted before completion"


class WorkerPool:
    """Fixed-size pool of categorization workers sharing one queue."""

    def __init__(
        self,
        database: Database,
        job_store: JobStore,
        classifier: SpendingClassifier,
        queue: JobQueue,
        settings: Optional[Settings] = None,
        num_workers: Optional[int] = None,
    ):
        self.database = database
        self.job_store = job_store
        self.classifier = classifier
        self.queue = queue
        self.settings = settings or get_settings()
        self.num_workers = num_workers or self.settings.num_workers
        self.running = False
        self._tasks: List[asyncio.Task] = []

    async def _run_blocking(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def start(self, reconcile: bool = True) -> None:
        """Recover jobs left over from a previous run and start the workers."""
        if self.running:
            logger.warning("Worker pool is already running")
            return

        self.running = True
        if reconcile:
            await self.recover()

        for worker_id in range(1, self.num_workers + 1):
            self._tasks.append(asyncio.create_task(self._worker_loop(worker_id)))
        if reconcile:
            self._tasks.append(asyncio.create_task(self._reconcile_loop()))

        logger.info(f"Categorization pool started with {self.num_workers} worker(s)")

    async def stop(self) -> None:
        """Stop the workers. A job being processed is cancelled with its task."""
        self.running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Categorization pool stopped")

    async def recover(self) -> None:
        """
        Fail jobs interrupted mid-processing and enqueue every pending job.

        Completion is committed together with the spendings, so an
        interrupted job has no rows to clean up.
        """
        interrupted = await self._run_blocking(self.job_store.fail_interrupted_jobs, INTERRUPTED_MESSAGE)
        if interrupted:
            logger.warning(f"Marked {interrupted} interrupted job(s) as failed")
        await self.requeue_pending()

    async def requeue_pending(self, older_than_seconds: Optional[float] = None) -> int:
        """
        Enqueue pending jobs that are not in the queue.

        Returns:
            Number of jobs enqueued
        """
        job_ids = await self._run_blocking(self.job_store.list_pending_job_ids, older_than_seconds)
        enqueued = 0
        for job_id in job_ids:
            if job_id in self.queue:
                continue
            if not await self.queue.enqueue(job_id, timeout=self.settings.enqueue_timeout_seconds):
                break
            enqueued += 1
        if enqueued:
            logger.info(f"Re-enqueued {enqueued} pending job(s)")
        return enqueued

    async def _reconcile_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.settings.reconcile_interval_seconds)
            try:
                await self.requeue_pending(self.settings.stale_pending_after_seconds)
            except Exception as e:
                logger.error(f"Error in reconciliation loop: {e}", exc_info=True)

    async def _worker_loop(self, worker_id: int) -> None:
        logger.info(f"Starting worker {worker_id}")
        while self.running:
            job_id = await self.queue.dequeue()
            try:
                logger.info(f"Worker {worker_id} picked up job {job_id}")
                await self.process_job(job_id)
            except Exception as e:
                logger.error(f"Worker {worker_id} failed on job {job_id}: {e}", exc_info=True)
            finally:
                self.queue.task_done()

    def _classify(self, job: Job) -> ClassificationResult:
        buyer_name = self.database.get_user_name(job.buyer_id) or f"User {job.buyer_id}"
        partner_name = None
        if job.partner_id is not None:
            partner_name = self.database.get_user_name(job.partner_id) or "Partner"
        categories = self.database.list_categories()

        return self.classifier.classify(
            description=job.prompt,
            total_amount=job.total_amount,
            buyer_name=buyer_name,
            partner_name=partner_name,
            categories=categories,
        )

    def _persist(self, job: Job, result: ClassificationResult) -> List[int]:
        items = resolve_line_items(result.spendings, job.partner_id, self.database.resolve_category_ids)
        reason = result.ambiguity_flag if result.is_ambiguity_flagged else None
        return self.job_store.complete_job(job, items, reason)

    async def _fail(self, job_id: int, message: str) -> None:
        try:
            await self._run_blocking(self.job_store.mark_failed, job_id, message)
        except Exception as e:
            logger.error(f"Job {job_id} could not be marked failed and stays processing: {e}")

    async def process_job(self, job_id: int) -> bool:
        """
        Claim, classify, validate and persist one job.

        Returns:
            True if the job completed, False if it failed or was not claimable
        """
        job = await self._run_blocking(self.job_store.claim_job, job_id)
        if job is None:
            logger.info(f"Job {job_id} is not pending, skipping")
            return False

        try:
            result = await asyncio.wait_for(
                self._run_blocking(self._classify, job),
                timeout=self.settings.classification_timeout_seconds,
            )
            spending_ids = await self._run_blocking(self._persist, job, result)
        except asyncio.TimeoutError:
            message = f"Classification timed out after {self.settings.classification_timeout_seconds:g}s"
            logger.error(f"Job {job_id} failed: {message}")
            await self._fail(job_id, message)
            return False
        except CategorizerException as e:
            logger.error(f"Job {job_id} failed: {e.message}")
            await self._fail(job_id, e.message)
            return False
        except Exception as e:
            logger.error(f"Job {job_id} failed with unexpected error: {e}", exc_info=True)
            await self._fail(job_id, f"Unexpected error: {e}")
            return False

        logger.info(f"Job {job_id} completed with {len(spending_ids)} spending(s)")
        return True
