"""
Read path for job status, used by pollers.
"""
from core.job_store import JobStore
from core.schema import JobStatus, JobStatusReport


class StatusTracker:
    """Reports the committed state of categorization jobs."""

    def __init__(self, job_store: JobStore):
        self.job_store = job_store

    def get_status(self, job_id: int) -> JobStatusReport:
        """
        Get the status of a job.

        Linked spendings are included once the job has completed.

        Raises:
            DataNotFoundError: If the job does not exist
        """
        job = self.job_store.get_job(job_id)

        report = JobStatusReport(
            job_id=job.id,
            status=job.status,
            is_finished=job.is_finished,
            error_message=job.error_message,
            created_at=job.created_at,
            status_updated_at=job.status_updated_at,
        )
        if job.is_finished:
            report.is_ambiguity_flagged = job.is_ambiguity_flagged
            report.ambiguity_flag_reason = job.ambiguity_flag_reason
        if job.status is JobStatus.COMPLETED:
            report.spendings = self.job_store.list_job_spendings(job.id)
        return report
