"""
Business services for the categorization pipeline.

This package contains:
- job_queue: Bounded in-process job queue
- submission_service: Request validation and job creation
- worker_pool: Background categorization workers
- status_tracker: Job status read path
"""
