"""
codemark/routes/activities.py
Read-only views of the activity trail
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from codemark.database import get_db
from codemark.errors import ErrorCode, ForbiddenError, NotFoundError
from codemark.orm.activity import ActivityType
from codemark.orm.project import Task
from codemark.rbac import Identity, get_identity
from codemark.services.activity_logger import list_activities

router = APIRouter(tags=["Activities"])


def _page(activities, **scope):
    return {
        "success": True,
        **scope,
        "count": len(activities),
        "activities": [a.to_dict() for a in activities]
    }


@router.get("/tasks/{task_id}/activities")
async def get_task_activities(
    task_id: int,
    type: Optional[ActivityType] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    if not await db.get(Task, task_id):
        raise NotFoundError("Task", task_id)
    activities = await list_activities(db, task_id=task_id, action_type=type, limit=limit, offset=offset)
    return _page(activities, task_id=task_id)


@router.get("/users/{user_id}/activities")
async def get_user_activities(
    user_id: int,
    type: Optional[ActivityType] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    """Students may only read their own trail."""
    if not identity.is_staff and identity.user_id != user_id:
        raise ForbiddenError("You can only view your own activity", code=ErrorCode.OWNERSHIP_VIOLATION)
    activities = await list_activities(db, user_id=user_id, action_type=type, limit=limit, offset=offset)
    return _page(activities, user_id=user_id)


@router.get("/submissions/{submission_id}/activities")
async def get_submission_activities(
    submission_id: int,
    type: Optional[ActivityType] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    """Works for deleted submissions too; the trail outlives them."""
    activities = await list_activities(
        db, submission_id=submission_id, action_type=type, limit=limit, offset=offset
    )
    if not identity.is_staff:
        uploaders = {a.actor_id for a in activities if a.action_type == ActivityType.CREATE}
        if uploaders and identity.user_id not in uploaders:
            raise ForbiddenError("This submission does not belong to you", code=ErrorCode.OWNERSHIP_VIOLATION)
    return _page(activities, submission_id=submission_id)
