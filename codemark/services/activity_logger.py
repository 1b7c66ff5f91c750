"""
codemark/services/activity_logger.py
Centralized activity logging

Every create/update/delete on a submission or code file goes through
`log_activity()`. Logs are append-only and read-only. Logging is
best-effort: the action it describes has already been committed.
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from codemark.orm.activity import Activity, ActivityType
from codemark.rbac import Identity

logger = logging.getLogger(__name__)


async def log_activity(
    db: AsyncSession,
    actor: Optional[Identity],
    action_type: ActivityType,
    subject_name: str,
    subject_language: Optional[str] = None,
    project_id: Optional[int] = None,
    task_id: Optional[int] = None,
    submission_id: Optional[int] = None,
    code_file_id: Optional[int] = None,
    context: Optional[Dict[str, Any]] = None,
) -> Optional[Activity]:
    """
    Append one Activity. Call AFTER the action itself is committed.

    Args:
        db: Database session
        actor: Caller identity, or None for background work
        action_type: create, update or delete
        subject_name: File name the action was about
        subject_language: Detected language of that file
        project_id/task_id/submission_id/code_file_id: What the action touched
        context: Additional JSON-serializable context

    Returns:
        The stored Activity, or None if the append failed
    """
    try:
        entry = Activity(
            action_type=action_type,
            subject_name=subject_name,
            subject_language=subject_language,
            actor_id=actor.user_id if actor else None,
            actor_role=actor.role.value if actor else "system",
            project_id=project_id,
            task_id=task_id,
            submission_id=submission_id,
            code_file_id=code_file_id,
            context=context,
            timestamp=datetime.utcnow(),
        )
        db.add(entry)
        await db.commit()
        await db.refresh(entry)

        logger.debug(
            f"Activity logged: {action_type.value} on {subject_name!r} "
            f"by {actor.user_id if actor else 'system'}"
        )
        return entry

    except SQLAlchemyError as e:
        # The action is already committed; losing its audit entry must not fail it
        logger.error(f"Failed to log activity: {e}")
        await db.rollback()
        return None


async def list_activities(
    db: AsyncSession,
    task_id: Optional[int] = None,
    user_id: Optional[int] = None,
    submission_id: Optional[int] = None,
    action_type: Optional[ActivityType] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Activity]:
    """Activities matching every given filter, newest first."""
    query = select(Activity)
    if task_id is not None:
        query = query.where(Activity.task_id == task_id)
    if user_id is not None:
        query = query.where(Activity.actor_id == user_id)
    if submission_id is not None:
        query = query.where(Activity.submission_id == submission_id)
    if action_type is not None:
        query = query.where(Activity.action_type == action_type)

    result = await db.execute(
        query.order_by(desc(Activity.timestamp), desc(Activity.id)).offset(offset).limit(limit)
    )
    return list(result.scalars().all())
