"""
Persistent record of categorization jobs and their lifecycle.

Every write that produces spendings for a job happens in one sqlite
transaction together with the job's transition to ``completed``, so a job
is either fully realized or leaves no rows behind.
"""
import sqlite3
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from core.db import Database, utc_now
from core.exceptions import DataNotFoundError, PersistenceError
from core.logger import setup_logger
from core.schema import Job, JobSpending, JobStatus, ResolvedLineItem

logger = setup_logger(__name__)

DEFAULT_DESCRIPTION = "AI Categorized"

JOB_COLUMNS = """
    id, buyer, shared_with, prompt, total_amount, transaction_date, pre_settled,
    status, is_finished, error_message, is_ambiguity_flagged, ambiguity_flag_reason,
    created_at, status_updated_at
"""


def _row_to_job(row: sqlite3.Row) -> Job:
    return Job(
        id=row["id"],
        buyer_id=row["buyer"],
        partner_id=row["shared_with"],
        prompt=row["prompt"],
        total_amount=row["total_amount"],
        transaction_date=row["transaction_date"],
        pre_settled=bool(row["pre_settled"]),
        status=JobStatus(row["status"]),
        is_finished=bool(row["is_finished"]),
        error_message=row["error_message"],
        is_ambiguity_flagged=bool(row["is_ambiguity_flagged"]),
        ambiguity_flag_reason=row["ambiguity_flag_reason"],
        created_at=row["created_at"],
        status_updated_at=row["status_updated_at"],
    )


class JobStore:
    """Table-backed store for categorization jobs."""

    def __init__(self, database: Database):
        self.database = database

    def create_job(
        self,
        buyer_id: int,
        partner_id: Optional[int],
        prompt: str,
        total_amount: float,
        pre_settled: bool,
        transaction_date: Optional[date] = None,
    ) -> int:
        """
        Insert a new job with status ``pending``.

        Returns:
            The new job id
        """
        now = utc_now()
        conn = self.database.get_connection()

        try:
            cursor = conn.execute(
                """
                INSERT INTO ai_categorization_jobs
                    (buyer, shared_with, prompt, total_amount, pre_settled, transaction_date,
                     status, is_finished, created_at, status_updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    buyer_id,
                    partner_id,
                    prompt,
                    total_amount,
                    pre_settled,
                    transaction_date.isoformat() if transaction_date else None,
                    JobStatus.PENDING.value,
                    now,
                    now,
                )
            )
            conn.commit()
            return cursor.lastrowid
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Failed to insert job for buyer {buyer_id}: {e}")
            raise PersistenceError("Failed to create job", details={"buyer_id": buyer_id, "error": str(e)})
        finally:
            conn.close()

    def get_job(self, job_id: int) -> Job:
        """
        Load a job row.

        Raises:
            DataNotFoundError: If the job does not exist
        """
        conn = self.database.get_connection()

        try:
            row = conn.execute(
                f"SELECT {JOB_COLUMNS} FROM ai_categorization_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to load job {job_id}: {e}")
            raise PersistenceError(f"Failed to load job {job_id}", details={"error": str(e)})
        finally:
            conn.close()

        if row is None:
            raise DataNotFoundError(f"Job {job_id} not found", details={"job_id": job_id})
        return _row_to_job(row)

    def claim_job(self, job_id: int) -> Optional[Job]:
        """
        Atomically move a job from ``pending`` to ``processing``.

        Returns:
            The claimed job, or None if it was not pending
        """
        conn = self.database.get_connection()

        try:
            cursor = conn.execute(
                """
                UPDATE ai_categorization_jobs SET status = ?, status_updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (JobStatus.PROCESSING.value, utc_now(), job_id, JobStatus.PENDING.value)
            )
            if cursor.rowcount == 0:
                conn.rollback()
                return None
            row = conn.execute(
                f"SELECT {JOB_COLUMNS} FROM ai_categorization_jobs WHERE id = ?", (job_id,)
            ).fetchone()
            conn.commit()
            return _row_to_job(row)
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Failed to claim job {job_id}: {e}")
            raise PersistenceError(f"Failed to claim job {job_id}", details={"error": str(e)})
        finally:
            conn.close()

    def mark_failed(self, job_id: int, error_message: str) -> None:
        """Move a non-terminal job to ``failed`` with an error message."""
        conn = self.database.get_connection()

        try:
            conn.execute(
                """
                UPDATE ai_categorization_jobs
                SET status = ?, is_finished = 1, error_message = ?, status_updated_at = ?
                WHERE id = ? AND status IN (?, ?)
                """,
                (
                    JobStatus.FAILED.value,
                    error_message,
                    utc_now(),
                    job_id,
                    JobStatus.PENDING.value,
                    JobStatus.PROCESSING.value,
                )
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Failed to mark job {job_id} as failed: {e}")
            raise PersistenceError(f"Failed to mark job {job_id} as failed", details={"error": str(e)})
        finally:
            conn.close()

    def complete_job(
        self,
        job: Job,
        items: List[ResolvedLineItem],
        ambiguity_reason: Optional[str],
    ) -> List[int]:
        """
        Persist all spendings of a job and mark it ``completed`` in one transaction.

        Args:
            job: The claimed job
            items: Validated line items
            ambiguity_reason: Ambiguity reason, None when not flagged

        Returns:
            Ids of the created spendings

        Raises:
            PersistenceError: If any write fails; nothing is committed
        """
        now = utc_now()
        spending_date = (job.transaction_date or datetime.fromisoformat(job.created_at).date()).isoformat()
        settled_at = now if job.pre_settled else None
        spending_ids = []

        conn = self.database.get_connection()
        try:
            for item in items:
                cursor = conn.execute(
                    """
                    INSERT INTO spendings (amount, description, category, made_by, spending_date, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        item.amount,
                        item.description or DEFAULT_DESCRIPTION,
                        item.category_id,
                        job.buyer_id,
                        spending_date,
                        now,
                    )
                )
                spending_id = cursor.lastrowid

                conn.execute(
                    "INSERT INTO ai_categorized_spendings (job_id, spending_id) VALUES (?, ?)",
                    (job.id, spending_id)
                )
                conn.execute(
                    """
                    INSERT INTO user_spendings (spending_id, buyer, shared_with, shared_user_takes_all, settled_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (spending_id, job.buyer_id, item.shared_with, item.takes_all, settled_at)
                )
                spending_ids.append(spending_id)

            cursor = conn.execute(
                """
                UPDATE ai_categorization_jobs
                SET status = ?, is_finished = 1, error_message = NULL,
                    is_ambiguity_flagged = ?, ambiguity_flag_reason = ?, status_updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    JobStatus.COMPLETED.value,
                    ambiguity_reason is not None,
                    ambiguity_reason,
                    now,
                    job.id,
                    JobStatus.PROCESSING.value,
                )
            )
            if cursor.rowcount != 1:
                raise PersistenceError(
                    f"Job {job.id} is no longer processing",
                    details={"job_id": job.id}
                )

            conn.commit()
            return spending_ids
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Rolled back spendings for job {job.id}: {e}")
            raise PersistenceError(
                f"Failed to persist spendings: {e}",
                details={"job_id": job.id, "error": str(e)}
            )
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def list_job_spendings(self, job_id: int) -> List[JobSpending]:
        """Get the spendings linked to a job."""
        conn = self.database.get_connection()

        try:
            rows = conn.execute(
                """
                SELECT s.id, s.amount, s.description, c.name AS category, s.spending_date,
                       us.shared_with, us.shared_user_takes_all, us.settled_at
                FROM ai_categorized_spendings acs
                JOIN spendings s ON s.id = acs.spending_id
                JOIN categories c ON c.id = s.category
                LEFT JOIN user_spendings us ON us.spending_id = s.id
                WHERE acs.job_id = ?
                ORDER BY s.id
                """,
                (job_id,)
            ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to list spendings for job {job_id}: {e}")
            raise PersistenceError(f"Failed to list spendings for job {job_id}", details={"error": str(e)})
        finally:
            conn.close()

        return [
            JobSpending(
                id=row["id"],
                amount=row["amount"],
                description=row["description"] or "",
                category=row["category"],
                spending_date=row["spending_date"],
                shared_with=row["shared_with"],
                takes_all=bool(row["shared_user_takes_all"]),
                settled_at=row["settled_at"],
            )
            for row in rows
        ]

    def list_pending_job_ids(self, older_than_seconds: Optional[float] = None) -> List[int]:
        """
        Get ids of pending jobs, oldest first.

        Args:
            older_than_seconds: Only return jobs whose last status update is at least this old
        """
        query = "SELECT id FROM ai_categorization_jobs WHERE status = ?"
        params = [JobStatus.PENDING.value]
        if older_than_seconds is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
            query += " AND status_updated_at <= ?"
            params.append(cutoff.isoformat())
        query += " ORDER BY id"

        conn = self.database.get_connection()
        try:
            return [row["id"] for row in conn.execute(query, params).fetchall()]
        except sqlite3.Error as e:
            logger.error(f"Failed to list pending jobs: {e}")
            raise PersistenceError("Failed to list pending jobs", details={"error": str(e)})
        finally:
            conn.close()

    def fail_interrupted_jobs(self, message: str) -> int:
        """
        Fail every job left in ``processing`` by a previous run.

        Returns:
            Number of jobs failed
        """
        conn = self.database.get_connection()

        try:
            cursor = conn.execute(
                """
                UPDATE ai_categorization_jobs
                SET status = ?, is_finished = 1, error_message = ?, status_updated_at = ?
                WHERE status = ?
                """,
                (JobStatus.FAILED.value, message, utc_now(), JobStatus.PROCESSING.value)
            )
            conn.commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Failed to fail interrupted jobs: {e}")
            raise PersistenceError("Failed to fail interrupted jobs", details={"error": str(e)})
        finally:
            conn.close()
