"""
Submission of spending descriptions for categorization.
Validates the request, persists a pending job and hands it to the queue.
"""
import asyncio
from datetime import date
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from core.config import Settings, get_settings
from core.db import Database
from core.exceptions import DataNotFoundError, ValidationError
from core.job_store import JobStore
from core.logger import setup_logger
from core.schema import CategorizationRequest, describe_validation_errors
from services.job_queue import JobQueue

logger = setup_logger(__name__)


class SubmissionService:
    """Accepts categorization requests on behalf of a buyer."""

    def __init__(
        self,
        database: Database,
        job_store: JobStore,
        queue: JobQueue,
        settings: Optional[Settings] = None,
    ):
        self.database = database
        self.job_store = job_store
        self.queue = queue
        self.settings = settings or get_settings()

    def _create_job(self, buyer_id: int, request: CategorizationRequest) -> int:
        if self.database.get_user_name(buyer_id) is None:
            raise DataNotFoundError(f"User {buyer_id} not found", details={"buyer_id": buyer_id})

        partner_id = self.database.get_partner_id(buyer_id)
        return self.job_store.create_job(
            buyer_id=buyer_id,
            partner_id=partner_id,
            prompt=request.prompt,
            total_amount=request.amount,
            pre_settled=request.pre_settled,
            transaction_date=request.transaction_date,
        )

    async def submit(
        self,
        buyer_id: int,
        prompt: str,
        amount: float,
        pre_settled: bool = False,
        transaction_date: Optional[date] = None,
    ) -> int:
        """
        Submit a purchase description for categorization.

        Args:
            buyer_id: User who paid
            prompt: Free-text description of the purchase
            amount: Declared total, must be positive
            pre_settled: Mark the resulting spendings as already settled
            transaction_date: Date of the purchase, defaults to submission time

        Returns:
            The new job id

        Raises:
            ValidationError: If the prompt is empty or the amount is not positive
            DataNotFoundError: If the buyer does not exist
        """
        try:
            request = CategorizationRequest(
                amount=amount,
                prompt=prompt,
                pre_settled=pre_settled,
                transaction_date=transaction_date,
            )
        except PydanticValidationError as e:
            logger.warning(f"Rejected submission from user {buyer_id}: {e.error_count()} validation error(s)")
            raise ValidationError(
                describe_validation_errors(e.errors()),
                details={"errors": [err["msg"] for err in e.errors()]}
            )

        return await self.submit_request(buyer_id, request)

    async def submit_request(self, buyer_id: int, request: CategorizationRequest) -> int:
        """Persist an already validated request and enqueue it."""
        loop = asyncio.get_running_loop()
        job_id = await loop.run_in_executor(None, self._create_job, buyer_id, request)

        enqueued = await self.queue.enqueue(job_id, timeout=self.settings.enqueue_timeout_seconds)
        if enqueued:
            logger.info(f"Job {job_id} queued for user {buyer_id} (amount {request.amount})")
        else:
            logger.warning(f"Job {job_id} persisted as pending; reconciliation will enqueue it")

        return job_id
