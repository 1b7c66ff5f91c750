"""
codemark/orm/submission.py
Code submissions (single files or archives), their entries, analysis results and tutor reviews
"""
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, JSON, CheckConstraint,
    Enum as SQLEnum, event
)
from sqlalchemy.orm import relationship

from codemark.orm.base import Base, BaseModel, isoformat


class SubmissionKind(str, PyEnum):
    FILE = "file"
    ARCHIVE = "archive"


class SubmissionStatus(str, PyEnum):
    """Submission lifecycle status"""
    UPLOADED = "Uploaded"        # Stored, not yet sent to the provider
    PROCESSING = "Processing"    # Provider job in flight
    ANALYZED = "Analyzed"        # Provider finished, result stored
    FAILED = "Failed"            # Provider reported a failed job
    REVIEWED = "Reviewed"        # Tutor has graded the submission


class Submission(BaseModel):
    """
    A student's uploaded file or archive and its analysis lifecycle.
    Status changes go through SubmissionStateMachine only.
    """
    __tablename__ = "submissions"

    project_id = Column(
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    task_id = Column(
        Integer,
        ForeignKey("tasks.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    owner_id = Column(Integer, nullable=False, index=True)

    kind = Column(SQLEnum(SubmissionKind), nullable=False)
    status = Column(SQLEnum(SubmissionStatus), default=SubmissionStatus.UPLOADED, nullable=False, index=True)

    # File storage
    file_name = Column(String(255), nullable=False)
    storage_key = Column(String(64), nullable=False, unique=True)
    storage_path = Column(String(500), nullable=False)
    extracted_path = Column(String(500), nullable=True)
    file_size = Column(Integer, nullable=False)
    file_hash = Column(String(64), nullable=False)
    language = Column(String(50), nullable=True)

    # Provider provenance
    provider_job_id = Column(String(255), nullable=True, index=True)
    analysis_source = Column(String(50), nullable=True)
    dispatched_at = Column(DateTime, nullable=True)
    analyzed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    files = relationship(
        "FileEntry",
        back_populates="submission",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FileEntry.id",
    )
    results = relationship(
        "AnalysisResult",
        back_populates="submission",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AnalysisResult.id",
    )
    reviews = relationship(
        "SubmissionReview",
        back_populates="submission",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SubmissionReview.id",
    )

    def __repr__(self):
        return f"<Submission(id={self.id}, file={self.file_name!r}, status={self.status})>"

    @property
    def latest_result(self):
        return self.results[-1] if self.results else None

    @property
    def latest_review(self):
        return self.reviews[-1] if self.reviews else None

    def to_dict(self):
        result = self.latest_result
        review = self.latest_review
        data = {
            "id": self.id,
            "project_id": self.project_id,
            "task_id": self.task_id,
            "owner_id": self.owner_id,
            "kind": self.kind.value if self.kind else None,
            "status": self.status.value if self.status else None,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "file_hash": self.file_hash,
            "language": self.language,
            "provider_job_id": self.provider_job_id,
            "analysis_source": self.analysis_source,
            "dispatched_at": isoformat(self.dispatched_at),
            "analyzed_at": isoformat(self.analyzed_at),
            "error_message": self.error_message,
            "files": [entry.to_dict() for entry in self.files],
            "result": result.to_dict() if result else None,
            "review": review.to_dict() if review else None,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        return data


class FileEntry(Base):
    """One file inside a submission. Never exists without its parent."""
    __tablename__ = "submission_files"

    id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(
        Integer,
        ForeignKey("submissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(255), nullable=False)
    relative_path = Column(String(500), nullable=False)
    file_type = Column(String(50), nullable=False)
    language = Column(String(50), nullable=True)
    size = Column(Integer, nullable=False, default=0)

    submission = relationship("Submission", back_populates="files")
    results = relationship(
        "AnalysisResult",
        back_populates="file_entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AnalysisResult.id",
    )

    @property
    def latest_result(self):
        return self.results[-1] if self.results else None

    def to_dict(self):
        result = self.latest_result
        return {
            "id": self.id,
            "name": self.name,
            "relative_path": self.relative_path,
            "file_type": self.file_type,
            "language": self.language,
            "size": self.size,
            "result": result.to_dict() if result else None,
        }


class AnalysisResult(Base):
    """
    Scored outcome of one provider job.
    Attached to exactly one submission or one file entry; append-only.
    """
    __tablename__ = "analysis_results"
    __table_args__ = (
        CheckConstraint(
            "(submission_id IS NULL) <> (file_entry_id IS NULL)",
            name="ck_analysis_result_single_owner"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(
        Integer,
        ForeignKey("submissions.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    file_entry_id = Column(
        Integer,
        ForeignKey("submission_files.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    score = Column(Integer, nullable=False)
    category_scores = Column(JSON, nullable=False)
    raw_metrics = Column(JSON, nullable=False)
    feedback = Column(Text, nullable=False)
    source = Column(String(50), nullable=False)
    provider_job_id = Column(String(255), nullable=True)
    provider_key = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    submission = relationship("Submission", back_populates="results")
    file_entry = relationship("FileEntry", back_populates="results")

    def to_dict(self):
        return {
            "id": self.id,
            "score": self.score,
            "category_scores": self.category_scores,
            "raw_metrics": self.raw_metrics,
            "feedback": self.feedback,
            "source": self.source,
            "provider_job_id": self.provider_job_id,
            "provider_key": self.provider_key,
            "created_at": isoformat(self.created_at),
        }


class SubmissionReview(Base):
    """Tutor grade and feedback that moves a submission to Reviewed."""
    __tablename__ = "submission_reviews"

    id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(
        Integer,
        ForeignKey("submissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    reviewer_id = Column(Integer, nullable=False)
    score = Column(Integer, nullable=False)
    feedback = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    submission = relationship("Submission", back_populates="reviews")

    def to_dict(self):
        return {
            "id": self.id,
            "reviewer_id": self.reviewer_id,
            "score": self.score,
            "feedback": self.feedback,
            "created_at": isoformat(self.created_at),
        }


@event.listens_for(AnalysisResult, 'before_update')
def prevent_analysis_result_update(mapper, connection, target):
    """Analysis results are written once."""
    raise ValueError("AnalysisResult is immutable once written")
