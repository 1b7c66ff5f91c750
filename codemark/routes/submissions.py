"""
codemark/routes/submissions.py
Upload, analysis, status, review and deletion of code submissions
"""
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from codemark.config import settings
from codemark.config.feature_flags import FeatureFlags
from codemark.database import get_db, AsyncSessionLocal
from codemark.errors import ErrorResponse, NotFoundError
from codemark.orm.submission import SubmissionStatus
from codemark.rbac import Identity, get_identity, require_staff
from codemark.schemas.submission import serialize_submission, SubmissionStatusView
from codemark.services import analysis_dispatcher, submission_service
from codemark.services.analysis_provider import AnalysisProvider, get_analysis_provider
from codemark.services.status_poller import poll_once
from codemark.tasks.poll_tasks import poll_submission_in_background

logger = logging.getLogger(__name__)
router = APIRouter(
    tags=["Submissions"],
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
limiter = Limiter(key_func=get_remote_address)


# ================= SCHEMAS =================

class ReviewRequest(BaseModel):
    """Tutor grade for an analyzed submission"""
    score: int = Field(..., ge=0, le=100)
    feedback: str = Field(..., min_length=1, max_length=5000)


# ================= UPLOAD =================

@router.post("/projects/{project_id}/submissions", status_code=201)
@limiter.limit(settings.UPLOAD_RATE_LIMIT)
async def upload_submission(
    request: Request,  # Required by slowapi
    project_id: int,
    file: UploadFile = File(...),
    task_id: Optional[int] = Form(None),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    """
    Upload a single code file or an archive.
    Archives are extracted and every contained file is listed.
    """
    content = await file.read()

    submission = await submission_service.create_submission(
        db,
        identity,
        project_id=project_id,
        task_id=task_id,
        filename=file.filename,
        content=content,
    )

    return {
        "success": True,
        "submission": serialize_submission(submission),
        "message": f"{submission.file_name} uploaded with {len(submission.files)} file(s)"
    }


@router.get("/projects/{project_id}/submissions")
async def list_project_submissions(
    project_id: int,
    task_id: Optional[int] = Query(None),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    """List submissions for a project, newest first, optionally for one task."""
    submissions = await submission_service.list_by_project(db, identity, project_id, task_id)
    return {
        "success": True,
        "project_id": project_id,
        "task_id": task_id,
        "count": len(submissions),
        "submissions": [serialize_submission(s) for s in submissions]
    }


# ================= ANALYSIS =================

@router.post("/submissions/{submission_id}/analyze", status_code=202)
async def analyze_submission(
    submission_id: int,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(require_staff),
    provider: AnalysisProvider = Depends(get_analysis_provider),
    db: AsyncSession = Depends(get_db)
):
    """Send an Uploaded submission to the analysis provider."""
    submission = await analysis_dispatcher.dispatch(db, identity, submission_id, provider)

    polling = FeatureFlags.FEATURE_BACKGROUND_POLLING
    if polling:
        background_tasks.add_task(poll_submission_in_background, AsyncSessionLocal, submission.id, provider)

    return {
        "success": True,
        "submission": serialize_submission(submission),
        "background_polling": polling
    }


@router.post("/submissions/{submission_id}/reanalyze", status_code=202)
async def reanalyze_submission(
    submission_id: int,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(require_staff),
    provider: AnalysisProvider = Depends(get_analysis_provider),
    db: AsyncSession = Depends(get_db)
):
    """Restart analysis of a finished submission with a new provider job."""
    submission = await analysis_dispatcher.reanalyze(db, identity, submission_id, provider)

    polling = FeatureFlags.FEATURE_BACKGROUND_POLLING
    if polling:
        background_tasks.add_task(poll_submission_in_background, AsyncSessionLocal, submission.id, provider)

    return {
        "success": True,
        "submission": serialize_submission(submission),
        "background_polling": polling
    }


@router.get("/submissions/{submission_id}/status")
async def get_submission_status(
    submission_id: int,
    identity: Identity = Depends(get_identity),
    provider: AnalysisProvider = Depends(get_analysis_provider),
    db: AsyncSession = Depends(get_db)
):
    """
    Report the current status. Only a Processing submission asks the
    provider once; every other state answers from the database.
    """
    submission = await submission_service.get_submission_for(db, identity, submission_id)
    if submission.status == SubmissionStatus.PROCESSING:
        submission = await poll_once(db, submission_id, provider)
    return {
        "success": True,
        **SubmissionStatusView.from_submission(submission).model_dump()
    }


# ================= DETAILS =================

@router.get("/submissions/{submission_id}")
async def get_submission_details(
    submission_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    submission = await submission_service.get_submission_for(db, identity, submission_id)
    return {
        "success": True,
        "submission": serialize_submission(submission)
    }


@router.get("/submissions/{submission_id}/files")
async def list_submission_files(
    submission_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    submission = await submission_service.get_submission_for(db, identity, submission_id)
    return {
        "success": True,
        "submission_id": submission.id,
        "count": len(submission.files),
        "files": [entry.to_dict() for entry in submission.files]
    }


@router.get("/submissions/{submission_id}/download")
async def download_submission(
    submission_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    """Return the originally uploaded payload."""
    submission = await submission_service.get_submission_for(db, identity, submission_id)
    path = Path(submission.storage_path)
    if not path.exists():
        logger.error(f"Stored payload missing for submission {submission_id}: {path}")
        raise NotFoundError("Stored file for submission", submission_id)
    return FileResponse(path, filename=submission.file_name, media_type="application/octet-stream")


# ================= REVIEW & DELETE =================

@router.post("/submissions/{submission_id}/review")
async def review_submission(
    submission_id: int,
    data: ReviewRequest,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    """Grade an Analyzed or Failed submission. Moves it to Reviewed."""
    submission = await submission_service.review_submission(
        db, identity, submission_id, score=data.score, feedback=data.feedback
    )
    return {
        "success": True,
        "submission": serialize_submission(submission)
    }


@router.delete("/submissions/{submission_id}")
async def delete_submission(
    submission_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    """Delete a submission. Owner or staff only."""
    await submission_service.delete_submission(db, identity, submission_id)
    return {
        "success": True,
        "submission_id": submission_id,
        "message": "Submission deleted"
    }
