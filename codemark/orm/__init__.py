from .base import Base

from .project import Project, Task, TaskPriority, TaskStatus
from .submission import (
    Submission,
    SubmissionKind,
    SubmissionStatus,
    FileEntry,
    AnalysisResult,
    SubmissionReview,
)
from .activity import Activity, ActivityType
from .code_file import CodeFile
