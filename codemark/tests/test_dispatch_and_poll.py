"""
Analysis lifecycle tests: dispatch, polling, re-analysis and review

Covers:
- Uploaded -> Processing exactly once per provider job
- Provider failures leave the stored status untouched
- Terminal results are stored once and answered from the database afterwards
- Poll timeout leaves the submission Processing
"""
import pytest
import pytest_asyncio

from codemark.config.feature_flags import FeatureFlags
from codemark.errors import PollTimeoutError, StateConflictError, UpstreamError
from codemark.orm.activity import ActivityType
from codemark.orm.submission import SubmissionStatus
from codemark.services import analysis_dispatcher, submission_service
from codemark.services.activity_logger import list_activities
from codemark.services.status_poller import _record_terminal, poll_once, poll_until_terminal
from codemark.tests.helpers import FakeProvider, GOOD_METRICS, STUDENT, TUTOR


class RacingProvider(FakeProvider):
    """Lets a second session finish the same step while the first call is in flight."""

    def __init__(self, session_factory):
        super().__init__()
        self.session_factory = session_factory
        self.race_submit_for = None
        self.race_status_for = None

    async def submit(self, submission) -> str:
        submission_id, self.race_submit_for = self.race_submit_for, None
        if submission_id is not None:
            async with self.session_factory() as other:
                await analysis_dispatcher.dispatch(other, TUTOR, submission_id, self)
        return await super().submit(submission)

    async def get_status(self, job_id: str):
        submission_id, self.race_status_for = self.race_status_for, None
        if submission_id is not None:
            self.complete(job_id)
            async with self.session_factory() as other:
                await poll_once(other, submission_id, self)
        return await super().get_status(job_id)


@pytest_asyncio.fixture
async def uploaded(db_session, project, task, make_zip):
    return await submission_service.create_submission(
        db_session,
        STUDENT,
        project_id=project.id,
        task_id=task.id,
        filename="report.zip",
        content=make_zip({"src/app.py": "print('hi')\n", "src/util.py": "def f():\n    return 1\n"}),
    )


@pytest_asyncio.fixture
async def processing(db_session, uploaded, provider):
    return await analysis_dispatcher.dispatch(db_session, TUTOR, uploaded.id, provider)


# ================= DISPATCH =================

@pytest.mark.asyncio
async def test_dispatch_moves_to_processing(db_session, uploaded, provider):
    submission = await analysis_dispatcher.dispatch(db_session, TUTOR, uploaded.id, provider)

    assert submission.status == SubmissionStatus.PROCESSING
    assert submission.provider_job_id == "job-1"
    assert submission.analysis_source == "fake-sonar"
    assert submission.dispatched_at is not None
    assert provider.submitted == [uploaded.id]


@pytest.mark.asyncio
async def test_second_dispatch_refused_without_provider_call(db_session, processing, provider):
    with pytest.raises(StateConflictError) as exc_info:
        await analysis_dispatcher.dispatch(db_session, TUTOR, processing.id, provider)

    assert exc_info.value.status_code == 409
    assert len(provider.submitted) == 1


@pytest.mark.asyncio
async def test_provider_failure_keeps_uploaded(db_session, uploaded, provider):
    provider.fail_submit = True

    with pytest.raises(UpstreamError) as exc_info:
        await analysis_dispatcher.dispatch(db_session, TUTOR, uploaded.id, provider)

    assert exc_info.value.status_code == 502
    stored = await submission_service.get_submission(db_session, uploaded.id)
    assert stored.status == SubmissionStatus.UPLOADED
    assert stored.provider_job_id is None


# ================= POLLING =================

@pytest.mark.asyncio
async def test_poll_while_pending_changes_nothing(db_session, processing, provider):
    submission = await poll_once(db_session, processing.id, provider)

    assert submission.status == SubmissionStatus.PROCESSING
    assert submission.results == []
    assert provider.status_calls == 1


@pytest.mark.asyncio
async def test_poll_records_analysis(db_session, processing, provider):
    provider.complete("job-1")

    submission = await poll_once(db_session, processing.id, provider)

    assert submission.status == SubmissionStatus.ANALYZED
    assert submission.analyzed_at is not None
    assert len(submission.results) == 1
    result = submission.latest_result
    assert 0 <= result.score <= 100
    assert result.score == 100
    assert result.source == "fake-sonar"
    assert result.provider_job_id == "job-1"
    assert "Overall score: 100/100" in result.feedback


@pytest.mark.asyncio
async def test_terminal_poll_answers_from_database(db_session, processing, provider):
    provider.complete("job-1")
    first = await poll_once(db_session, processing.id, provider)
    calls = provider.status_calls

    # Provider now reports something different; the stored result must not move
    provider.complete("job-1", metrics={"bugs": 40})
    second = await poll_once(db_session, processing.id, provider)

    assert provider.status_calls == calls
    assert second.status == SubmissionStatus.ANALYZED
    assert len(second.results) == 1
    assert second.latest_result.score == first.latest_result.score


@pytest.mark.asyncio
async def test_failed_job_records_error(db_session, processing, provider):
    provider.fail("job-1", "scanner crashed")

    submission = await poll_once(db_session, processing.id, provider)

    assert submission.status == SubmissionStatus.FAILED
    assert submission.error_message == "scanner crashed"
    assert submission.results == []


@pytest.mark.asyncio
async def test_poll_of_undispatched_submission_refused(db_session, uploaded, provider):
    with pytest.raises(StateConflictError):
        await poll_once(db_session, uploaded.id, provider)
    assert provider.status_calls == 0


@pytest.mark.asyncio
async def test_poll_status_error_is_upstream(db_session, processing, provider):
    provider.fail_status = True

    with pytest.raises(UpstreamError):
        await poll_once(db_session, processing.id, provider)

    stored = await submission_service.get_submission(db_session, processing.id)
    assert stored.status == SubmissionStatus.PROCESSING


@pytest.mark.asyncio
async def test_per_file_results(db_session, processing, provider, monkeypatch):
    monkeypatch.setattr(FeatureFlags, "FEATURE_PER_FILE_RESULTS", True)
    provider.complete("job-1", files={"src/app.py": GOOD_METRICS, "missing.py": GOOD_METRICS})

    submission = await poll_once(db_session, processing.id, provider)

    by_path = {entry.relative_path: entry for entry in submission.files}
    assert len(by_path["src/app.py"].results) == 1
    assert by_path["src/app.py"].latest_result.score == 100
    assert by_path["src/util.py"].results == []
    # The submission-level result is still the one reported on the submission
    assert len(submission.results) == 1


@pytest.mark.asyncio
async def test_poll_until_terminal_completes(db_session, processing, provider):
    provider.complete("job-1")

    submission = await poll_until_terminal(db_session, processing.id, provider, max_attempts=3, interval=0)

    assert submission.status == SubmissionStatus.ANALYZED
    assert provider.status_calls == 1


@pytest.mark.asyncio
async def test_zero_attempts_times_out_and_stays_processing(db_session, processing, provider):
    with pytest.raises(PollTimeoutError) as exc_info:
        await poll_until_terminal(db_session, processing.id, provider, max_attempts=0, interval=0)

    assert exc_info.value.status_code == 504
    assert provider.status_calls == 0
    stored = await submission_service.get_submission(db_session, processing.id)
    assert stored.status == SubmissionStatus.PROCESSING


@pytest.mark.asyncio
async def test_attempts_are_bounded(db_session, processing, provider):
    with pytest.raises(PollTimeoutError) as exc_info:
        await poll_until_terminal(db_session, processing.id, provider, max_attempts=3, interval=0)

    assert provider.status_calls == 3
    assert exc_info.value.details["attempts"] == 3


@pytest.mark.asyncio
async def test_provider_errors_spend_attempts(db_session, processing, provider):
    provider.fail_status = True

    with pytest.raises(PollTimeoutError) as exc_info:
        await poll_until_terminal(db_session, processing.id, provider, max_attempts=2, interval=0)

    assert provider.status_calls == 2
    assert exc_info.value.details["last_error"] is not None


# ================= RE-ANALYSIS & REVIEW =================

@pytest.mark.asyncio
async def test_reanalyze_creates_new_job(db_session, processing, provider):
    provider.complete("job-1")
    await poll_once(db_session, processing.id, provider)

    submission = await analysis_dispatcher.reanalyze(db_session, TUTOR, processing.id, provider)
    assert submission.status == SubmissionStatus.PROCESSING
    assert submission.provider_job_id == "job-2"
    assert submission.analyzed_at is None

    provider.complete("job-2", metrics={})
    submission = await poll_once(db_session, processing.id, provider)
    assert submission.status == SubmissionStatus.ANALYZED
    assert len(submission.results) == 2
    assert submission.latest_result.provider_job_id == "job-2"
    assert submission.latest_result.score == 57


@pytest.mark.asyncio
async def test_reanalyze_refused_while_processing(db_session, processing, provider):
    with pytest.raises(StateConflictError):
        await analysis_dispatcher.reanalyze(db_session, TUTOR, processing.id, provider)
    assert len(provider.submitted) == 1


@pytest.mark.asyncio
async def test_late_result_for_old_job_is_ignored(db_session, processing, provider):
    """A poller holding the first job id cannot finish the re-analysis."""
    provider.complete("job-1")
    await poll_once(db_session, processing.id, provider)
    await analysis_dispatcher.reanalyze(db_session, TUTOR, processing.id, provider)

    current = await submission_service.get_submission(db_session, processing.id)
    submission = await _record_terminal(db_session, current, provider.jobs["job-1"])

    assert submission.status == SubmissionStatus.PROCESSING
    assert submission.provider_job_id == "job-2"
    assert len(submission.results) == 1


@pytest.mark.asyncio
async def test_review_after_analysis(db_session, processing, provider):
    provider.complete("job-1")
    await poll_once(db_session, processing.id, provider)

    submission = await submission_service.review_submission(
        db_session, TUTOR, processing.id, score=88, feedback="Solid structure"
    )

    assert submission.status == SubmissionStatus.REVIEWED
    assert submission.latest_review.score == 88
    assert submission.latest_review.reviewer_id == TUTOR.user_id


@pytest.mark.asyncio
async def test_review_before_analysis_refused(db_session, uploaded):
    with pytest.raises(StateConflictError):
        await submission_service.review_submission(db_session, TUTOR, uploaded.id, score=50, feedback="Too early")


@pytest.mark.asyncio
async def test_lifecycle_is_logged(db_session, processing, provider):
    provider.complete("job-1")
    await poll_once(db_session, processing.id, provider)

    activities = await list_activities(db_session, submission_id=processing.id)

    assert [a.action_type for a in activities] == [
        ActivityType.UPDATE, ActivityType.UPDATE, ActivityType.CREATE
    ]
    assert activities[0].actor_id is None
    assert activities[0].context["to"] == "Analyzed"
    assert activities[1].actor_id == TUTOR.user_id
    assert activities[2].actor_id == STUDENT.user_id


# ================= CONCURRENT WRITERS =================

@pytest.mark.asyncio
async def test_poll_losing_terminal_write_returns_stored_result(db_session, session_factory, uploaded):
    provider = RacingProvider(session_factory)
    await analysis_dispatcher.dispatch(db_session, TUTOR, uploaded.id, provider)
    provider.race_status_for = uploaded.id

    submission = await poll_once(db_session, uploaded.id, provider)

    assert submission.status == SubmissionStatus.ANALYZED
    assert submission.provider_job_id == "job-1"
    assert len(submission.results) == 1
    assert provider.status_calls == 2


@pytest.mark.asyncio
async def test_dispatch_losing_race_raises_conflict(db_session, session_factory, uploaded):
    provider = RacingProvider(session_factory)
    provider.race_submit_for = uploaded.id

    with pytest.raises(StateConflictError) as exc_info:
        await analysis_dispatcher.dispatch(db_session, TUTOR, uploaded.id, provider)

    assert exc_info.value.status_code == 409
    assert len(provider.submitted) == 2
    stored = await submission_service.get_submission(db_session, uploaded.id)
    assert stored.status == SubmissionStatus.PROCESSING
    assert stored.provider_job_id == "job-1"


@pytest.mark.asyncio
async def test_poll_until_terminal_refuses_undispatched_for_any_attempt_count(db_session, uploaded, provider):
    for attempts in (0, 2):
        with pytest.raises(StateConflictError):
            await poll_until_terminal(db_session, uploaded.id, provider, max_attempts=attempts, interval=0)
    assert provider.status_calls == 0
