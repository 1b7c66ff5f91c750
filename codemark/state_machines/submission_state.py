"""
Submission State Machine
Server-side enforcement of the submission analysis lifecycle.

    Uploaded -> Processing -> {Analyzed | Failed} -> Reviewed

Re-analysis is the only way back: Analyzed, Failed or Reviewed may
restart at Processing when the caller asks for it explicitly.
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from codemark.errors import ErrorCode, NotFoundError, StateConflictError
from codemark.orm.submission import Submission, SubmissionStatus

logger = logging.getLogger(__name__)


class SubmissionStateMachine:
    """
    Guards every status change on a Submission.

    Each transition is a conditional UPDATE keyed on the status the caller
    observed, so two writers racing on the same row cannot both succeed.
    """

    ALLOWED_TRANSITIONS: Dict[SubmissionStatus, List[SubmissionStatus]] = {
        SubmissionStatus.UPLOADED: [
            SubmissionStatus.PROCESSING
        ],
        SubmissionStatus.PROCESSING: [
            SubmissionStatus.ANALYZED,
            SubmissionStatus.FAILED
        ],
        SubmissionStatus.ANALYZED: [
            SubmissionStatus.REVIEWED
        ],
        SubmissionStatus.FAILED: [
            SubmissionStatus.REVIEWED
        ],
        SubmissionStatus.REVIEWED: [],
    }

    # States that may restart at Processing through an explicit re-analysis
    REANALYZABLE_STATES = frozenset({
        SubmissionStatus.ANALYZED,
        SubmissionStatus.FAILED,
        SubmissionStatus.REVIEWED,
    })

    # Polling stops here
    TERMINAL_STATES = frozenset({
        SubmissionStatus.ANALYZED,
        SubmissionStatus.FAILED,
        SubmissionStatus.REVIEWED,
    })

    def __init__(self, db: AsyncSession, submission: Submission):
        self.db = db
        self.submission = submission

    @classmethod
    def is_terminal(cls, state: SubmissionStatus) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def can_transition(cls, from_state: SubmissionStatus, to_state: SubmissionStatus,
                       reanalyze: bool = False) -> bool:
        if reanalyze:
            return from_state in cls.REANALYZABLE_STATES and to_state == SubmissionStatus.PROCESSING
        return to_state in cls.ALLOWED_TRANSITIONS.get(from_state, [])

    def get_allowed_transitions(self) -> List[str]:
        allowed = [s.value for s in self.ALLOWED_TRANSITIONS.get(self.submission.status, [])]
        if self.submission.status in self.REANALYZABLE_STATES:
            allowed.append(f"{SubmissionStatus.PROCESSING.value} (reanalyze)")
        return allowed

    async def transition(
        self,
        new_state: SubmissionStatus,
        actor_id: Optional[int] = None,
        reanalyze: bool = False,
        expected_job_id: Optional[str] = None,
        **fields: Any
    ) -> Submission:
        """
        Move the submission to new_state and write any extra column values.

        Args:
            new_state: Target status
            actor_id: User performing the action (None for the poller)
            reanalyze: Allow restarting a finished submission at Processing
            expected_job_id: Only apply if the stored provider job still matches
            **fields: Extra Submission columns to set in the same UPDATE

        Raises:
            StateConflictError: If the transition is not allowed, or another
                writer changed the row first
        """
        old_state = self.submission.status

        if not self.can_transition(old_state, new_state, reanalyze=reanalyze):
            raise StateConflictError(
                f"Cannot transition submission {self.submission.id} from "
                f"{old_state.value} to {new_state.value}",
                details={
                    "submission_id": self.submission.id,
                    "from": old_state.value,
                    "to": new_state.value,
                    "allowed": self.get_allowed_transitions(),
                }
            )

        values = dict(fields)
        values["status"] = new_state
        values["updated_at"] = datetime.utcnow()

        stmt = (
            update(Submission)
            .where(Submission.id == self.submission.id)
            .where(Submission.status == old_state)
        )
        if expected_job_id is not None:
            stmt = stmt.where(Submission.provider_job_id == expected_job_id)

        result = await self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            raise StateConflictError(
                f"Submission {self.submission.id} was modified by another process",
                code=ErrorCode.CONCURRENT_MODIFICATION,
                details={"submission_id": self.submission.id, "expected": old_state.value}
            )

        for key, value in values.items():
            set_committed_value(self.submission, key, value)

        logger.info(
            f"Submission {self.submission.id} transitioned: {old_state.value} -> {new_state.value} "
            f"by {actor_id if actor_id is not None else 'system'} (reanalyze={reanalyze})"
        )

        return self.submission

    @classmethod
    async def get_machine(cls, db: AsyncSession, submission_id: int) -> "SubmissionStateMachine":
        """Factory method to get state machine for a submission."""
        result = await db.execute(
            select(Submission)
            .where(Submission.id == submission_id)
            .execution_options(populate_existing=True)
        )
        submission = result.scalar_one_or_none()

        if not submission:
            raise NotFoundError("Submission", submission_id)

        return cls(db, submission)
