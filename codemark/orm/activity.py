"""
codemark/orm/activity.py
Append-only audit trail of create/update/delete actions on files and submissions
"""
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, DateTime, JSON, Enum as SQLEnum, event

from codemark.orm.base import Base, isoformat


class ActivityType(str, PyEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Activity(Base):
    """
    One audit entry.

    Subject references are plain integers so the trail outlives the
    submission or code file it describes.
    """
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)

    action_type = Column(SQLEnum(ActivityType), nullable=False, index=True)
    subject_name = Column(String(255), nullable=False)
    subject_language = Column(String(50), nullable=True)

    # Actor at time of action; NULL for the background poller
    actor_id = Column(Integer, nullable=True, index=True)
    actor_role = Column(String(20), nullable=False, default="system")

    project_id = Column(Integer, nullable=True, index=True)
    task_id = Column(Integer, nullable=True, index=True)
    submission_id = Column(Integer, nullable=True, index=True)
    code_file_id = Column(Integer, nullable=True, index=True)

    context = Column(JSON, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<Activity(id={self.id}, type={self.action_type}, subject={self.subject_name!r})>"

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.action_type.value if self.action_type else None,
            "subject_name": self.subject_name,
            "subject_language": self.subject_language,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "project_id": self.project_id,
            "task_id": self.task_id,
            "submission_id": self.submission_id,
            "code_file_id": self.code_file_id,
            "context": self.context,
            "timestamp": isoformat(self.timestamp),
        }


@event.listens_for(Activity, 'before_update')
def prevent_activity_update(mapper, connection, target):
    """Prevent any updates to activities (append-only)."""
    raise ValueError("Activity is append-only. Updates are prohibited.")


@event.listens_for(Activity, 'before_delete')
def prevent_activity_delete(mapper, connection, target):
    """Prevent any deletions of activities (append-only)."""
    raise ValueError("Activity is append-only. Deletions are prohibited.")
