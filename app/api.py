"""
FastAPI routes for categorization job submission and status polling.
Buyer identity arrives in the X-User-Id header set by the auth layer.
"""
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.config import Settings, get_settings
from core.db import Database
from core.exceptions import DataNotFoundError, ValidationError
from core.job_store import JobStore
from core.logger import setup_logger
from core.schema import (
    CategorizationRequest,
    Category,
    JobStatusReport,
    SubmissionResponse,
    describe_validation_errors,
)
from llm.classify import SpendingClassifier
from services.job_queue import JobQueue
from services.status_tracker import StatusTracker
from services.submission_service import SubmissionService
from services.worker_pool import WorkerPool

logger = setup_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    classifier: Optional[SpendingClassifier] = None,
    start_workers: bool = True,
) -> FastAPI:
    """
    Build the application. Components are wired on startup.

    Args:
        settings: Settings override, defaults to environment settings
        database: Database override, defaults to DATABASE_PATH
        classifier: Classifier override, defaults to the OpenRouter-backed classifier
        start_workers: Start the worker pool with the app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = settings or get_settings()
        db = database or Database(app_settings.database_path)
        db.init_db()

        job_store = JobStore(db)
        queue = JobQueue(maxsize=app_settings.queue_size)
        spending_classifier = classifier or SpendingClassifier(
            max_attempts=app_settings.max_validation_retries,
            tolerance=app_settings.amount_tolerance,
        )
        pool = WorkerPool(db, job_store, spending_classifier, queue, app_settings)

        app.state.database = db
        app.state.submission_service = SubmissionService(db, job_store, queue, app_settings)
        app.state.status_tracker = StatusTracker(job_store)
        app.state.pool = pool

        if start_workers:
            await pool.start()
        try:
            yield
        finally:
            await pool.stop()

    app = FastAPI(
        title="Shared Spending Categorizer",
        description="Categorize free-text purchases into shared spending records",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": exc.message, "errors": exc.details.get("errors", [])})

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if any(err.get("type") == "json_invalid" for err in errors):
            detail = "Invalid JSON"
        else:
            detail = describe_validation_errors(errors)
        logger.warning(f"Rejected request to {request.url.path}: {detail}")
        return JSONResponse(
            status_code=400,
            content={"detail": detail, "errors": [err.get("msg") for err in errors]}
        )

    @app.exception_handler(DataNotFoundError)
    async def not_found_handler(request: Request, exc: DataNotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "categorizer",
            "version": "1.0.0"
        }

    @app.get("/v1/categories", response_model=List[Category])
    def list_categories(request: Request):
        """List the category catalog."""
        return request.app.state.database.list_categories()

    @app.post("/v1/categorize", status_code=202, response_model=SubmissionResponse)
    async def categorize(
        payload: CategorizationRequest,
        request: Request,
        user_id: int = Header(..., alias="X-User-Id"),
    ):
        """
        Accept a purchase description and queue it for categorization.
        Returns immediately with a job ID for status polling.

        Args:
            payload: Amount, description, pre-settled flag and optional date
            user_id: Buyer id, supplied by the authentication layer

        Returns:
            202 Accepted with job_id
        """
        logger.info(f"Received categorization request from user {user_id} (amount {payload.amount})")
        job_id = await request.app.state.submission_service.submit_request(user_id, payload)
        return SubmissionResponse(job_id=job_id)

    @app.get("/v1/categorize/jobs/{job_id}", response_model=JobStatusReport)
    def get_job_status(job_id: int, request: Request):
        """
        Get status of a categorization job.

        Args:
            job_id: Job identifier

        Returns:
            Job status information
        """
        return request.app.state.status_tracker.get_status(job_id)

    return app


app = create_app()
