"""
codemark/routes/projects.py
Projects and tasks that submissions are filed against
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from codemark.database import get_db
from codemark.errors import NotFoundError, ForbiddenError, ErrorCode
from codemark.orm.project import Project, Task, TaskPriority, TaskStatus
from codemark.rbac import Identity, get_identity, require_staff

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Projects"])


# ================= SCHEMAS =================

class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    key_features: List[str] = Field(default_factory=list)


class TaskCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None
    assignee_id: Optional[int] = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


async def _get_project(db: AsyncSession, project_id: int) -> Project:
    project = await db.get(Project, project_id)
    if not project:
        raise NotFoundError("Project", project_id)
    return project


# ================= PROJECTS =================

@router.post("/projects", status_code=201)
async def create_project(
    data: ProjectCreate,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    project = Project(
        title=data.title,
        description=data.description,
        key_features=data.key_features,
        created_by=identity.user_id,
        tasks=[],
    )
    db.add(project)
    await db.commit()
    await db.refresh(project)

    logger.info(f"Project {project.id} created by user {identity.user_id}")

    return {
        "success": True,
        "project": project.to_dict()
    }


@router.get("/projects")
async def list_projects(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(select(Project).order_by(desc(Project.created_at), desc(Project.id)))
    projects = result.scalars().all()
    return {
        "success": True,
        "projects": [p.to_dict() for p in projects]
    }


@router.get("/projects/{project_id}")
async def get_project(
    project_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    project = await _get_project(db, project_id)
    return {
        "success": True,
        "project": project.to_dict(include_tasks=True)
    }


# ================= TASKS =================

@router.post("/projects/{project_id}/tasks", status_code=201)
async def create_task(
    project_id: int,
    data: TaskCreate,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    await _get_project(db, project_id)

    task = Task(
        project_id=project_id,
        name=data.name,
        description=data.description,
        priority=data.priority,
        status=TaskStatus.TODO,
        due_date=data.due_date,
        assignee_id=data.assignee_id,
    )
    db.add(task)
    await db.commit()
    await db.refresh(task)

    logger.info(f"Task {task.id} created in project {project_id} by user {identity.user_id}")

    return {
        "success": True,
        "task": task.to_dict()
    }


@router.get("/projects/{project_id}/tasks")
async def list_tasks(
    project_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    await _get_project(db, project_id)
    result = await db.execute(select(Task).where(Task.project_id == project_id).order_by(Task.id))
    return {
        "success": True,
        "project_id": project_id,
        "tasks": [t.to_dict() for t in result.scalars().all()]
    }


@router.patch("/tasks/{task_id}/status")
async def update_task_status(
    task_id: int,
    data: TaskStatusUpdate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    """Staff may move any task; students only the tasks assigned to them."""
    task = await db.get(Task, task_id)
    if not task:
        raise NotFoundError("Task", task_id)

    if not identity.is_staff and task.assignee_id != identity.user_id:
        raise ForbiddenError("This task is not assigned to you", code=ErrorCode.OWNERSHIP_VIOLATION)

    task.status = data.status
    await db.commit()
    await db.refresh(task)

    logger.info(f"Task {task_id} moved to {data.status.value} by user {identity.user_id}")

    return {
        "success": True,
        "task": task.to_dict()
    }
