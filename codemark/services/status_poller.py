"""
codemark/services/status_poller.py
Polls the analysis provider until a submission reaches a terminal state

A terminal observation is written with a guarded UPDATE (status still
Processing, job id unchanged). A poller that loses that race discards its
observation and returns what the winner stored.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from codemark.config import settings
from codemark.config.feature_flags import FeatureFlags
from codemark.errors import StateConflictError, UpstreamError, PollTimeoutError
from codemark.orm.activity import ActivityType
from codemark.orm.submission import Submission, SubmissionStatus, AnalysisResult
from codemark.services.activity_logger import log_activity
from codemark.services.analysis_provider import (
    AnalysisProvider, AnalysisProviderError, ProviderJob, build_project_key
)
from codemark.services.scoring import calculate_score, build_feedback
from codemark.services.submission_service import get_submission
from codemark.state_machines.submission_state import SubmissionStateMachine

logger = logging.getLogger(__name__)


def _build_result(scored: dict, source: str, job: ProviderJob, project_key: str, **owner) -> AnalysisResult:
    return AnalysisResult(
        score=scored["score"],
        category_scores=scored["category_scores"],
        raw_metrics=scored["raw_metrics"],
        feedback=build_feedback(scored, source),
        source=source,
        provider_job_id=job.job_id,
        provider_key=project_key,
        **owner,
    )


async def _record_terminal(db: AsyncSession, submission: Submission, job: ProviderJob) -> Submission:
    submission_id = submission.id
    new_status = SubmissionStatus.ANALYZED if job.succeeded else SubmissionStatus.FAILED
    source = submission.analysis_source or "provider"
    project_key = build_project_key(submission)

    machine = SubmissionStateMachine(db, submission)
    try:
        await machine.transition(
            new_status,
            expected_job_id=job.job_id,
            analyzed_at=datetime.utcnow(),
            error_message=None if job.succeeded else (job.error or "Analysis failed"),
        )
    except StateConflictError:
        # Rollback expires the loaded instance
        await db.rollback()
        logger.info(f"Submission {submission_id} already finalized by another poller; keeping stored result")
        return await get_submission(db, submission_id)

    score = None
    file_results = 0
    if job.succeeded:
        scored = calculate_score(job.metrics)
        score = scored["score"]
        db.add(_build_result(scored, source, job, project_key, submission_id=submission.id))

        if FeatureFlags.FEATURE_PER_FILE_RESULTS and job.files:
            for entry in submission.files:
                metrics = job.files.get(entry.relative_path)
                if metrics is None:
                    continue
                db.add(_build_result(
                    calculate_score(metrics), source, job, project_key, file_entry_id=entry.id
                ))
                file_results += 1

    await db.commit()

    logger.info(
        f"Submission {submission.id} finished job {job.job_id}: {new_status.value}"
        + (f" score={score} ({file_results} file results)" if score is not None else f" ({job.error})")
    )

    await log_activity(
        db,
        actor=None,
        action_type=ActivityType.UPDATE,
        subject_name=submission.file_name,
        subject_language=submission.language,
        project_id=submission.project_id,
        task_id=submission.task_id,
        submission_id=submission.id,
        context={
            "from": SubmissionStatus.PROCESSING.value,
            "to": new_status.value,
            "job_id": job.job_id,
            "score": score,
        },
    )

    return await get_submission(db, submission.id)


def _ensure_dispatched(submission: Submission) -> None:
    if submission.status != SubmissionStatus.PROCESSING or not submission.provider_job_id:
        raise StateConflictError(
            f"Submission {submission.id} has not been dispatched for analysis",
            details={"submission_id": submission.id, "status": submission.status.value}
        )


async def poll_once(db: AsyncSession, submission_id: int, provider: AnalysisProvider) -> Submission:
    """
    One status check.

    Terminal submissions are returned as stored without contacting the
    provider. A Processing submission whose job is still running is
    returned unchanged.

    Raises:
        NotFoundError: unknown submission
        StateConflictError: submission was never dispatched
        UpstreamError: provider status call failed (nothing written)
    """
    submission = await get_submission(db, submission_id)

    if SubmissionStateMachine.is_terminal(submission.status):
        return submission

    _ensure_dispatched(submission)

    try:
        job = await provider.get_status(submission.provider_job_id)
    except AnalysisProviderError as e:
        raise UpstreamError(
            f"Could not fetch analysis status for submission {submission_id}",
            details={"submission_id": submission_id, "job_id": submission.provider_job_id, "reason": str(e)}
        )

    if not job.is_terminal:
        logger.debug(f"Submission {submission_id} job {job.job_id} still {job.status.value}")
        return submission

    return await _record_terminal(db, submission, job)


async def poll_until_terminal(
    db: AsyncSession,
    submission_id: int,
    provider: AnalysisProvider,
    max_attempts: Optional[int] = None,
    interval: Optional[float] = None,
) -> Submission:
    """
    Poll at a fixed interval, at most max_attempts provider calls.

    Provider errors count as a spent attempt. Running out of attempts raises
    PollTimeoutError and leaves the stored status at Processing; a later
    poll can still complete it. A submission that was never dispatched
    raises StateConflictError whatever the attempt budget.
    """
    max_attempts = settings.POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts
    interval = settings.POLL_INTERVAL_SECONDS if interval is None else interval

    submission = await get_submission(db, submission_id)
    if SubmissionStateMachine.is_terminal(submission.status):
        return submission
    _ensure_dispatched(submission)

    last_error = None
    for attempt in range(1, max_attempts + 1):
        try:
            submission = await poll_once(db, submission_id, provider)
        except UpstreamError as e:
            last_error = e.message
            logger.warning(f"Poll attempt {attempt}/{max_attempts} for submission {submission_id} failed: {e.message}")
        else:
            if SubmissionStateMachine.is_terminal(submission.status):
                return submission

        if attempt < max_attempts:
            await asyncio.sleep(interval)

    logger.warning(f"Polling submission {submission_id} gave up after {max_attempts} attempts")
    raise PollTimeoutError(
        f"Analysis of submission {submission_id} did not finish after {max_attempts} attempts",
        details={
            "submission_id": submission_id,
            "attempts": max_attempts,
            "status": submission.status.value,
            "last_error": last_error,
        }
    )
