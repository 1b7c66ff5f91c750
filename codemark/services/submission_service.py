"""
codemark/services/submission_service.py
Submission store: upload, read, list, review and delete
"""
import logging
from typing import List, Optional

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from codemark.errors import NotFoundError, ValidationError
from codemark.orm.activity import ActivityType
from codemark.orm.project import Project, Task
from codemark.orm.submission import (
    Submission, SubmissionKind, SubmissionStatus, FileEntry, SubmissionReview
)
from codemark.rbac import Identity, ensure_owner_or_staff
from codemark.services import archive_service
from codemark.services.activity_logger import log_activity
from codemark.state_machines.submission_state import SubmissionStateMachine

logger = logging.getLogger(__name__)


async def get_submission(db: AsyncSession, submission_id: int) -> Submission:
    """Load a submission with its files, results and reviews, bypassing the identity map."""
    result = await db.execute(
        select(Submission)
        .where(Submission.id == submission_id)
        .execution_options(populate_existing=True)
    )
    submission = result.scalar_one_or_none()
    if not submission:
        raise NotFoundError("Submission", submission_id)
    return submission


async def get_submission_for(db: AsyncSession, identity: Identity, submission_id: int) -> Submission:
    submission = await get_submission(db, submission_id)
    ensure_owner_or_staff(identity, submission.owner_id, "submission")
    return submission


async def _check_project_and_task(db: AsyncSession, project_id: int, task_id: Optional[int]) -> None:
    project = await db.get(Project, project_id)
    if not project:
        raise NotFoundError("Project", project_id)

    if task_id is not None:
        task = await db.get(Task, task_id)
        if not task:
            raise NotFoundError("Task", task_id)
        if task.project_id != project_id:
            raise ValidationError(
                f"Task {task_id} does not belong to project {project_id}",
                details={"task_id": task_id, "project_id": project_id}
            )


async def create_submission(
    db: AsyncSession,
    identity: Identity,
    project_id: int,
    task_id: Optional[int],
    filename: Optional[str],
    content: bytes,
) -> Submission:
    """
    Store an uploaded file or archive and register it as Uploaded.

    Raises:
        ValidationError: empty, oversized, unsupported or corrupt payload
        NotFoundError: unknown project or task
    """
    filename = archive_service.sanitize_filename(filename)
    archive_service.validate_upload(filename, content)
    await _check_project_and_task(db, project_id, task_id)

    storage_key, file_path = archive_service.store_payload(filename, content)
    kind = SubmissionKind.ARCHIVE if archive_service.is_archive(filename) else SubmissionKind.FILE

    try:
        if kind == SubmissionKind.ARCHIVE:
            extracted_dir = file_path.parent / "extracted"
            entries = archive_service.extract_archive(file_path, extracted_dir)
        else:
            extracted_dir = None
            entries = [{
                "name": filename,
                "relative_path": filename,
                "file_type": archive_service.get_file_type(filename),
                "language": archive_service.detect_language(filename),
                "size": len(content),
            }]

        submission = Submission(
            project_id=project_id,
            task_id=task_id,
            owner_id=identity.user_id,
            kind=kind,
            status=SubmissionStatus.UPLOADED,
            file_name=filename,
            storage_key=storage_key,
            storage_path=str(file_path),
            extracted_path=str(extracted_dir) if extracted_dir else None,
            file_size=len(content),
            file_hash=archive_service.calculate_file_hash(file_path),
            language=archive_service.detect_language(filename),
            files=[FileEntry(**entry) for entry in entries],
        )
        db.add(submission)
        await db.commit()
    except Exception:
        await db.rollback()
        archive_service.remove_storage(storage_key)
        raise

    logger.info(
        f"Submission {submission.id} uploaded by user {identity.user_id}: "
        f"{filename} ({kind.value}, {len(entries)} files)"
    )

    await log_activity(
        db,
        actor=identity,
        action_type=ActivityType.CREATE,
        subject_name=filename,
        subject_language=submission.language,
        project_id=project_id,
        task_id=task_id,
        submission_id=submission.id,
        context={"kind": kind.value, "file_count": len(entries), "size": len(content)},
    )

    return await get_submission(db, submission.id)


async def list_by_project(
    db: AsyncSession,
    identity: Identity,
    project_id: int,
    task_id: Optional[int] = None,
) -> List[Submission]:
    """Newest first. Students only see their own submissions."""
    project = await db.get(Project, project_id)
    if not project:
        raise NotFoundError("Project", project_id)

    query = select(Submission).where(Submission.project_id == project_id)
    if task_id is not None:
        query = query.where(Submission.task_id == task_id)
    if not identity.is_staff:
        query = query.where(Submission.owner_id == identity.user_id)

    result = await db.execute(query.order_by(desc(Submission.created_at), desc(Submission.id)))
    return list(result.scalars().all())


async def review_submission(
    db: AsyncSession,
    identity: Identity,
    submission_id: int,
    score: int,
    feedback: str,
) -> Submission:
    """Record a tutor grade; Analyzed or Failed -> Reviewed."""
    submission = await get_submission(db, submission_id)
    machine = SubmissionStateMachine(db, submission)
    previous = submission.status

    await machine.transition(SubmissionStatus.REVIEWED, actor_id=identity.user_id)
    db.add(SubmissionReview(
        submission_id=submission.id,
        reviewer_id=identity.user_id,
        score=score,
        feedback=feedback,
    ))
    await db.commit()

    logger.info(f"Submission {submission.id} reviewed by user {identity.user_id} with score {score}")

    await log_activity(
        db,
        actor=identity,
        action_type=ActivityType.UPDATE,
        subject_name=submission.file_name,
        subject_language=submission.language,
        project_id=submission.project_id,
        task_id=submission.task_id,
        submission_id=submission.id,
        context={"from": previous.value, "to": SubmissionStatus.REVIEWED.value, "score": score},
    )

    return await get_submission(db, submission.id)


async def delete_submission(db: AsyncSession, identity: Identity, submission_id: int) -> None:
    """
    Remove a submission, its entries and results, and the stored payload.
    Allowed to the owning student and to staff.
    """
    submission = await get_submission_for(db, identity, submission_id)

    file_name = submission.file_name
    language = submission.language
    project_id = submission.project_id
    task_id = submission.task_id
    storage_key = submission.storage_key
    status = submission.status

    await db.delete(submission)
    await db.commit()

    archive_service.remove_storage(storage_key)

    logger.info(f"Submission {submission_id} deleted by user {identity.user_id}")

    await log_activity(
        db,
        actor=identity,
        action_type=ActivityType.DELETE,
        subject_name=file_name,
        subject_language=language,
        project_id=project_id,
        task_id=task_id,
        submission_id=submission_id,
        context={"status": status.value},
    )
