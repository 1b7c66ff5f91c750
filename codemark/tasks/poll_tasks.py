"""
codemark/tasks/poll_tasks.py
Scheduled polling of submissions that are waiting on the analysis provider
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from codemark.errors import APIError, PollTimeoutError
from codemark.orm.submission import Submission, SubmissionStatus
from codemark.services.analysis_provider import AnalysisProvider
from codemark.services.status_poller import poll_once, poll_until_terminal

logger = logging.getLogger(__name__)


async def poll_submission_in_background(
    session_factory: async_sessionmaker,
    submission_id: int,
    provider: AnalysisProvider,
    max_attempts: Optional[int] = None,
    interval: Optional[float] = None,
) -> Optional[str]:
    """
    Follow one submission to a terminal state with its own session.
    Returns the final status value, or None if polling stopped early.
    """
    async with session_factory() as db:
        try:
            submission = await poll_until_terminal(
                db, submission_id, provider, max_attempts=max_attempts, interval=interval
            )
            return submission.status.value
        except PollTimeoutError as e:
            logger.warning(f"Background poll timed out: {e.message}")
        except APIError as e:
            logger.error(f"Background poll for submission {submission_id} stopped: {e.code} - {e.message}")
    return None


async def run_poll_sweep_once(session_factory: async_sessionmaker, provider: AnalysisProvider) -> int:
    """Check every Processing submission once. Returns how many finished."""
    async with session_factory() as db:
        result = await db.execute(
            select(Submission.id).where(Submission.status == SubmissionStatus.PROCESSING)
        )
        submission_ids = list(result.scalars().all())

        finished = 0
        for submission_id in submission_ids:
            try:
                submission = await poll_once(db, submission_id, provider)
            except APIError as e:
                logger.warning(f"Sweep could not poll submission {submission_id}: {e.message}")
                continue
            if submission.status != SubmissionStatus.PROCESSING:
                finished += 1

    if submission_ids:
        logger.info(f"Poll sweep completed: {finished}/{len(submission_ids)} submissions finished")
    return finished


async def poll_sweep_loop(session_factory: async_sessionmaker, provider: AnalysisProvider,
                          interval_seconds: int = 300):
    """
    Background sweep loop.
    Picks up submissions whose request-scoped poll ended early (timeout, restart).
    """
    logger.info(f"Starting poll sweep loop with interval {interval_seconds}s")

    while True:
        try:
            await run_poll_sweep_once(session_factory, provider)
        except Exception as e:
            logger.error(f"Poll sweep loop error: {str(e)}")

        await asyncio.sleep(interval_seconds)


def start_poll_sweep_task(session_factory: async_sessionmaker, provider: AnalysisProvider,
                          interval_seconds: int = 300) -> asyncio.Task:
    """Start the sweep as a background coroutine."""
    return asyncio.create_task(poll_sweep_loop(session_factory, provider, interval_seconds))
