"""
codemark/schemas/submission.py
Response schemas: one tagged variant per submission status
"""
from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from codemark.orm.submission import Submission, SubmissionStatus


class CategoryScores(BaseModel):
    correctness: int = Field(ge=0, le=30)
    security: int = Field(ge=0, le=20)
    maintainability: int = Field(ge=0, le=20)
    documentation: int = Field(ge=0, le=15)
    clean_code: int = Field(ge=0, le=10)
    simplicity: int = Field(ge=0, le=5)


class AnalysisResultSchema(BaseModel):
    id: int
    score: int = Field(ge=0, le=100)
    category_scores: CategoryScores
    raw_metrics: Dict[str, float]
    feedback: str
    source: str
    provider_job_id: Optional[str] = None
    provider_key: Optional[str] = None
    created_at: datetime


class ReviewSchema(BaseModel):
    id: int
    reviewer_id: int
    score: int = Field(ge=0, le=100)
    feedback: str
    created_at: datetime


class FileEntrySchema(BaseModel):
    id: int
    name: str
    relative_path: str
    file_type: str
    language: Optional[str] = None
    size: int
    result: Optional[AnalysisResultSchema] = None


class _SubmissionBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    project_id: int
    task_id: Optional[int] = None
    owner_id: int
    kind: Literal["file", "archive"]
    file_name: str
    file_size: int
    file_hash: str
    language: Optional[str] = None
    files: List[FileEntrySchema]
    created_at: datetime
    updated_at: datetime


class UploadedSubmission(_SubmissionBase):
    status: Literal["Uploaded"]


class ProcessingSubmission(_SubmissionBase):
    status: Literal["Processing"]
    provider_job_id: str
    analysis_source: str
    dispatched_at: datetime


class AnalyzedSubmission(_SubmissionBase):
    status: Literal["Analyzed"]
    provider_job_id: str
    analysis_source: str
    analyzed_at: datetime
    result: AnalysisResultSchema


class FailedSubmission(_SubmissionBase):
    status: Literal["Failed"]
    provider_job_id: str
    analysis_source: str
    analyzed_at: datetime
    error_message: str


class ReviewedSubmission(_SubmissionBase):
    status: Literal["Reviewed"]
    analysis_source: Optional[str] = None
    result: Optional[AnalysisResultSchema] = None
    error_message: Optional[str] = None
    review: ReviewSchema


SubmissionView = Annotated[
    Union[
        UploadedSubmission,
        ProcessingSubmission,
        AnalyzedSubmission,
        FailedSubmission,
        ReviewedSubmission,
    ],
    Field(discriminator="status"),
]

submission_view_adapter = TypeAdapter(SubmissionView)


def serialize_submission(submission: Submission) -> dict:
    """Validate a submission against its status variant and dump it as JSON-safe data."""
    view = submission_view_adapter.validate_python(submission.to_dict())
    return view.model_dump(mode="json")


class SubmissionStatusView(BaseModel):
    """Compact payload for status polling."""
    id: int
    status: str
    score: Optional[int] = None
    analysis_source: Optional[str] = None
    provider_job_id: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_submission(cls, submission: Submission) -> "SubmissionStatusView":
        result = submission.latest_result
        # A running re-analysis has no score yet
        scored = submission.status in (SubmissionStatus.ANALYZED, SubmissionStatus.REVIEWED)
        return cls(
            id=submission.id,
            status=submission.status.value,
            score=result.score if result and scored else None,
            analysis_source=submission.analysis_source,
            provider_job_id=submission.provider_job_id,
            error_message=submission.error_message,
        )
