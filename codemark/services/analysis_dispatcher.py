"""
codemark/services/analysis_dispatcher.py
Sends stored submissions to the analysis provider

Only an Uploaded submission may be dispatched. Anything else is refused
before the provider is contacted, so an in-flight or finished submission
never gets a second provider job. Re-analysis is a separate, explicit call.
"""
import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from codemark.errors import StateConflictError, UpstreamError
from codemark.orm.activity import ActivityType
from codemark.orm.submission import Submission, SubmissionStatus
from codemark.rbac import Identity
from codemark.services.activity_logger import log_activity
from codemark.services.analysis_provider import AnalysisProvider, AnalysisProviderError
from codemark.services.submission_service import get_submission
from codemark.state_machines.submission_state import SubmissionStateMachine

logger = logging.getLogger(__name__)


async def _send(
    db: AsyncSession,
    identity: Identity,
    submission: Submission,
    provider: AnalysisProvider,
    reanalyze: bool,
) -> Submission:
    submission_id = submission.id
    previous = submission.status

    try:
        job_id = await provider.submit(submission)
    except AnalysisProviderError as e:
        logger.error(f"Dispatch of submission {submission.id} failed: {e}")
        raise UpstreamError(
            f"Analysis provider rejected submission {submission.id}",
            details={"submission_id": submission.id, "reason": str(e), "status": previous.value}
        )

    machine = SubmissionStateMachine(db, submission)
    try:
        await machine.transition(
            SubmissionStatus.PROCESSING,
            actor_id=identity.user_id,
            reanalyze=reanalyze,
            provider_job_id=job_id,
            analysis_source=provider.source_name,
            dispatched_at=datetime.utcnow(),
            analyzed_at=None,
            error_message=None,
        )
        await db.commit()
    except StateConflictError:
        await db.rollback()
        logger.warning(f"Submission {submission_id} changed state while job {job_id} was being created")
        raise

    await log_activity(
        db,
        actor=identity,
        action_type=ActivityType.UPDATE,
        subject_name=submission.file_name,
        subject_language=submission.language,
        project_id=submission.project_id,
        task_id=submission.task_id,
        submission_id=submission.id,
        context={
            "from": previous.value,
            "to": SubmissionStatus.PROCESSING.value,
            "job_id": job_id,
            "source": provider.source_name,
            "reanalyze": reanalyze,
        },
    )

    return await get_submission(db, submission.id)


async def dispatch(
    db: AsyncSession,
    identity: Identity,
    submission_id: int,
    provider: AnalysisProvider,
) -> Submission:
    """
    Uploaded -> Processing.

    Raises:
        NotFoundError: unknown submission
        StateConflictError: submission is not Uploaded (provider not contacted)
        UpstreamError: provider call failed (status stays Uploaded)
    """
    submission = await get_submission(db, submission_id)

    if submission.status != SubmissionStatus.UPLOADED:
        raise StateConflictError(
            f"Submission {submission_id} is {submission.status.value}; only Uploaded submissions can be dispatched",
            details={"submission_id": submission_id, "status": submission.status.value}
        )

    return await _send(db, identity, submission, provider, reanalyze=False)


async def reanalyze(
    db: AsyncSession,
    identity: Identity,
    submission_id: int,
    provider: AnalysisProvider,
) -> Submission:
    """Analyzed, Failed or Reviewed -> Processing with a fresh provider job."""
    submission = await get_submission(db, submission_id)

    if submission.status not in SubmissionStateMachine.REANALYZABLE_STATES:
        raise StateConflictError(
            f"Submission {submission_id} is {submission.status.value}; "
            f"only finished submissions can be re-analyzed",
            details={"submission_id": submission_id, "status": submission.status.value}
        )

    return await _send(db, identity, submission, provider, reanalyze=True)
