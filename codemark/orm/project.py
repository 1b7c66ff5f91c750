"""
codemark/orm/project.py
Projects and the tasks students submit work against
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship

from codemark.orm.base import BaseModel, isoformat


class TaskPriority(str, PyEnum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class TaskStatus(str, PyEnum):
    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    IN_REVIEW = "In Review"
    COMPLETED = "Completed"


class Project(BaseModel):
    """A project created by a manager or tutor; owns tasks and submissions."""
    __tablename__ = "projects"

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    key_features = Column(JSON, nullable=False, default=list)
    created_by = Column(Integer, nullable=False, index=True)

    tasks = relationship(
        "Task",
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Task.id",
    )

    def __repr__(self):
        return f"<Project(id={self.id}, title={self.title!r})>"

    def to_dict(self, include_tasks=False):
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "key_features": self.key_features or [],
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if include_tasks:
            data["tasks"] = [task.to_dict() for task in self.tasks]
        return data


class Task(BaseModel):
    """A unit of work inside a project, optionally assigned to a student."""
    __tablename__ = "tasks"

    project_id = Column(
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(SQLEnum(TaskPriority), default=TaskPriority.MEDIUM, nullable=False)
    status = Column(SQLEnum(TaskStatus), default=TaskStatus.TODO, nullable=False)
    due_date = Column(DateTime, nullable=True)
    assignee_id = Column(Integer, nullable=True, index=True)

    project = relationship("Project", back_populates="tasks")

    def __repr__(self):
        return f"<Task(id={self.id}, name={self.name!r}, status={self.status})>"

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "priority": self.priority.value if self.priority else None,
            "status": self.status.value if self.status else None,
            "due_date": isoformat(self.due_date),
            "assignee_id": self.assignee_id,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
