"""
codemark/orm/code_file.py
Inline code files edited directly against a task
"""
from sqlalchemy import Column, Integer, String, Text, ForeignKey, UniqueConstraint

from codemark.orm.base import BaseModel, isoformat


class CodeFile(BaseModel):
    __tablename__ = "code_files"
    __table_args__ = (
        UniqueConstraint("task_id", "file_name", name="uq_code_file_task_name"),
    )

    task_id = Column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    file_name = Column(String(255), nullable=False)
    language = Column(String(50), nullable=False)
    code = Column(Text, nullable=False, default="")
    created_by = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<CodeFile(id={self.id}, task={self.task_id}, name={self.file_name!r})>"

    def to_dict(self, include_code=True):
        data = {
            "id": self.id,
            "task_id": self.task_id,
            "file_name": self.file_name,
            "language": self.language,
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if include_code:
            data["code"] = self.code
        return data
