"""
LearningJob model: one queued unit of feedback learning per content edit.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from styleforge.core.database import Base


class LearningJobStatus(str, Enum):
    """Learning job lifecycle status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class LearningJob(Base):
    """Created in ``pending`` state; processing transitions are owned by the worker."""

    __tablename__ = "learning_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    content_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("contents.id", ondelete="CASCADE"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(20), default=LearningJobStatus.PENDING.value, nullable=False
    )
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text)

    style_delta: Mapped[Optional[dict]] = mapped_column(JSON(none_as_null=True))
    extra_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    # {"is_thread": true, "content_format": "thread", "tweet_count": 4}

    processing_started: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    processing_completed: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_learning_jobs_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<LearningJob(id={self.id}, status={self.status}, attempts={self.attempts})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for logging and task results."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "content_id": self.content_id,
            "status": self.status,
            "priority": self.priority,
            "attempts": self.attempts,
            "error": self.error,
            "metadata": self.extra_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
