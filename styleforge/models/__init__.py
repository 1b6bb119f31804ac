"""Database models"""

from styleforge.models.content import Content, ContentFormat, Platform
from styleforge.models.learning_job import LearningJob, LearningJobStatus
from styleforge.models.user import User

__all__ = [
    "Content",
    "ContentFormat",
    "Platform",
    "LearningJob",
    "LearningJobStatus",
    "User",
]
