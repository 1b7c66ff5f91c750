"""
codemark/routes/code_files.py
Inline code files attached to tasks; every change is recorded as an Activity
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from codemark.database import get_db
from codemark.errors import NotFoundError, ValidationError, ErrorCode
from codemark.orm.activity import ActivityType
from codemark.orm.code_file import CodeFile
from codemark.orm.project import Task
from codemark.rbac import Identity, get_identity, ensure_owner_or_staff
from codemark.services.activity_logger import log_activity
from codemark.services.archive_service import detect_language, sanitize_filename

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Code Files"])


# ================= SCHEMAS =================

class CodeFileCreate(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    language: Optional[str] = Field(None, max_length=50)
    code: str = ""


class CodeFileUpdate(BaseModel):
    file_name: Optional[str] = Field(None, min_length=1, max_length=255)
    language: Optional[str] = Field(None, max_length=50)
    code: Optional[str] = None


# ================= HELPERS =================

async def _get_task(db: AsyncSession, task_id: int) -> Task:
    task = await db.get(Task, task_id)
    if not task:
        raise NotFoundError("Task", task_id)
    return task


async def _get_code_file(db: AsyncSession, file_id: int) -> CodeFile:
    code_file = await db.get(CodeFile, file_id)
    if not code_file:
        raise NotFoundError("Code file", file_id)
    return code_file


async def _ensure_name_free(db: AsyncSession, task_id: int, file_name: str, exclude_id: Optional[int] = None):
    query = select(CodeFile.id).where(and_(CodeFile.task_id == task_id, CodeFile.file_name == file_name))
    if exclude_id is not None:
        query = query.where(CodeFile.id != exclude_id)
    if (await db.execute(query)).first():
        raise ValidationError(
            f"A file named {file_name!r} already exists for this task",
            code=ErrorCode.DUPLICATE_RESOURCE,
            details={"task_id": task_id, "file_name": file_name}
        )


# ================= ROUTES =================

@router.post("/tasks/{task_id}/codefiles", status_code=201)
async def create_code_file(
    task_id: int,
    data: CodeFileCreate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    task = await _get_task(db, task_id)
    file_name = sanitize_filename(data.file_name)
    await _ensure_name_free(db, task_id, file_name)

    code_file = CodeFile(
        task_id=task_id,
        file_name=file_name,
        language=data.language or detect_language(file_name) or "Plain Text",
        code=data.code,
        created_by=identity.user_id,
    )
    db.add(code_file)
    await db.commit()
    await db.refresh(code_file)

    logger.info(f"Code file {code_file.id} created in task {task_id} by user {identity.user_id}")

    await log_activity(
        db,
        actor=identity,
        action_type=ActivityType.CREATE,
        subject_name=code_file.file_name,
        subject_language=code_file.language,
        project_id=task.project_id,
        task_id=task_id,
        code_file_id=code_file.id,
    )

    return {
        "success": True,
        "code_file": code_file.to_dict()
    }


@router.get("/tasks/{task_id}/codefiles")
async def list_code_files(
    task_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    await _get_task(db, task_id)
    result = await db.execute(
        select(CodeFile).where(CodeFile.task_id == task_id).order_by(CodeFile.file_name)
    )
    return {
        "success": True,
        "task_id": task_id,
        "code_files": [f.to_dict(include_code=False) for f in result.scalars().all()]
    }


@router.get("/codefiles/{file_id}")
async def get_code_file(
    file_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    code_file = await _get_code_file(db, file_id)
    return {
        "success": True,
        "code_file": code_file.to_dict()
    }


@router.put("/codefiles/{file_id}")
async def update_code_file(
    file_id: int,
    data: CodeFileUpdate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    code_file = await _get_code_file(db, file_id)
    ensure_owner_or_staff(identity, code_file.created_by, "code file")

    changed = []
    if data.file_name is not None:
        file_name = sanitize_filename(data.file_name)
        if file_name != code_file.file_name:
            await _ensure_name_free(db, code_file.task_id, file_name, exclude_id=code_file.id)
            code_file.file_name = file_name
            changed.append("file_name")
    if data.language is not None and data.language != code_file.language:
        code_file.language = data.language
        changed.append("language")
    if data.code is not None and data.code != code_file.code:
        code_file.code = data.code
        changed.append("code")

    if changed:
        await db.commit()
        await db.refresh(code_file)

        task = await _get_task(db, code_file.task_id)
        await log_activity(
            db,
            actor=identity,
            action_type=ActivityType.UPDATE,
            subject_name=code_file.file_name,
            subject_language=code_file.language,
            project_id=task.project_id,
            task_id=code_file.task_id,
            code_file_id=code_file.id,
            context={"changed": changed},
        )

    return {
        "success": True,
        "code_file": code_file.to_dict(),
        "changed": changed
    }


@router.delete("/codefiles/{file_id}")
async def delete_code_file(
    file_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    code_file = await _get_code_file(db, file_id)
    ensure_owner_or_staff(identity, code_file.created_by, "code file")
    task = await _get_task(db, code_file.task_id)

    file_name = code_file.file_name
    language = code_file.language
    task_id = code_file.task_id

    await db.delete(code_file)
    await db.commit()

    logger.info(f"Code file {file_id} deleted by user {identity.user_id}")

    await log_activity(
        db,
        actor=identity,
        action_type=ActivityType.DELETE,
        subject_name=file_name,
        subject_language=language,
        project_id=task.project_id,
        task_id=task_id,
        code_file_id=file_id,
    )

    return {
        "success": True,
        "code_file_id": file_id,
        "message": "Code file deleted"
    }
