"""
Pydantic schemas for request/response validation.
Defines the structure the classification service must return and
the job records exposed to pollers.
"""
from datetime import date
from enum import Enum
from typing import Annotated, Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, BeforeValidator, Field, field_validator


class ApportionMode(str, Enum):
    """How the cost of one line item is divided between buyer and partner."""
    ALONE = "alone"
    SHARED = "shared"
    OWED_BY_PARTNER = "other"


class JobStatus(str, Enum):
    """Lifecycle of a categorization job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


def normalize_text(v):
    """Normalize optional text fields (LLM may return null)."""
    if v is None:
        return ""
    return str(v).strip()


def normalize_apportion_mode(v):
    """Normalize apportion mode casing and whitespace."""
    if isinstance(v, str):
        return v.strip().lower()
    return v


class ClassifiedLineItem(BaseModel):
    """One categorized part of a purchase, as returned by the classifier."""
    apportion_mode: Annotated[ApportionMode, BeforeValidator(normalize_apportion_mode)]
    category: Annotated[str, BeforeValidator(normalize_text)] = Field(..., min_length=1)
    amount: float = Field(..., gt=0, allow_inf_nan=False)
    description: Annotated[str, BeforeValidator(normalize_text)] = ""


class ClassificationResult(BaseModel):
    """
    Structured output schema for the classification service.
    This is the JSON format the LLM must return.
    """
    ambiguity_flag: Annotated[str, BeforeValidator(normalize_text)] = Field(
        default="",
        description="Short reason when the description is unclear, empty otherwise"
    )
    spendings: List[ClassifiedLineItem] = Field(..., description="Categorized line items")

    @property
    def is_ambiguity_flagged(self) -> bool:
        return bool(self.ambiguity_flag)

    @property
    def total(self) -> float:
        return sum(item.amount for item in self.spendings)


class CategorizationRequest(BaseModel):
    """Submission payload for a categorization job."""
    amount: float = Field(..., gt=0, allow_inf_nan=False)
    prompt: str
    pre_settled: bool = False
    transaction_date: Optional[date] = None

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v):
        """Reject empty or whitespace-only descriptions."""
        if not v or not v.strip():
            raise ValueError("Prompt must not be empty")
        return v.strip()


# Client-facing message per failing request field, keyed by the last element of the error loc
REQUEST_ERROR_DETAILS = {
    "body": "Missing prompt or invalid amount",
    "prompt": "Missing prompt or invalid amount",
    "amount": "Missing prompt or invalid amount",
    "transaction_date": "Invalid transaction date, expected YYYY-MM-DD",
    "pre_settled": "Invalid pre_settled flag",
    "X-User-Id": "Missing or invalid X-User-Id header",
}


def describe_validation_errors(errors: Iterable[Dict[str, Any]]) -> str:
    """Summarize pydantic errors as a message naming the first failing field."""
    for err in errors:
        loc = err.get("loc") or ()
        field = str(loc[-1]) if loc else ""
        if field in REQUEST_ERROR_DETAILS:
            return REQUEST_ERROR_DETAILS[field]
    return "Invalid request"


class SubmissionResponse(BaseModel):
    """Returned when a job is accepted."""
    job_id: int


class Job(BaseModel):
    """A persisted categorization job row."""
    id: int
    buyer_id: int
    partner_id: Optional[int] = None
    prompt: str
    total_amount: float
    transaction_date: Optional[date] = None
    pre_settled: bool = False
    status: JobStatus
    is_finished: bool = False
    error_message: Optional[str] = None
    is_ambiguity_flagged: bool = False
    ambiguity_flag_reason: Optional[str] = None
    created_at: str
    status_updated_at: str


class Category(BaseModel):
    """Category catalog entry."""
    id: int
    name: str
    ai_notes: Optional[str] = None


class ResolvedLineItem(BaseModel):
    """A validated line item ready to be written."""
    amount: float
    description: str
    category_id: int
    apportion_mode: ApportionMode
    shared_with: Optional[int] = None
    takes_all: bool = False


class JobSpending(BaseModel):
    """A spending produced by a job, as reported to pollers."""
    id: int
    amount: float
    description: str
    category: str
    spending_date: str
    shared_with: Optional[int] = None
    takes_all: bool = False
    settled_at: Optional[str] = None


class JobStatusReport(BaseModel):
    """Status of a job as seen by pollers."""
    job_id: int
    status: JobStatus
    is_finished: bool
    error_message: Optional[str] = None
    is_ambiguity_flagged: bool = False
    ambiguity_flag_reason: Optional[str] = None
    created_at: str
    status_updated_at: str
    spendings: List[JobSpending] = Field(default_factory=list)
