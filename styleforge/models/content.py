"""
Content model: generated drafts with optional embedded edit metadata.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from styleforge.core.database import Base
from styleforge.schemas.style import EditMetadata, TweetPart


class Platform(str, Enum):
    """Supported publishing platforms."""
    LINKEDIN = "linkedin"
    X = "x"


class ContentFormat(str, Enum):
    SINGLE = "single"
    THREAD = "thread"


# Kept in their own columns so they can be sorted and bulk-updated
_EDIT_COLUMNS = {"edit_timestamp", "learning_processed"}


class Content(Base):
    """
    Generated content for one platform, edited by the user at most once per
    stored EditMetadata.

    A record "carries edit metadata" when ``edit_timestamp`` is set. Pruning
    clears the three edit columns together and keeps the record itself.
    """

    __tablename__ = "contents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    analysis_id: Mapped[Optional[str]] = mapped_column(String(36))

    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    content_format: Mapped[str] = mapped_column(
        String(20), default=ContentFormat.SINGLE.value, nullable=False
    )
    tone: Mapped[str] = mapped_column(String(50), nullable=False, default="professional")
    generated_text: Mapped[str] = mapped_column(Text, nullable=False)
    edited_text: Mapped[Optional[str]] = mapped_column(Text)
    tweets: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True))
    # [{"position": 1, "text": "..."}, ...]
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Edit metadata (StyleDelta + texts); see EditMetadata
    edit_metadata_data: Mapped[Optional[dict]] = mapped_column(
        "edit_metadata", JSON(none_as_null=True)
    )
    edit_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    learning_processed: Mapped[Optional[bool]] = mapped_column()

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_contents_user_edit_ts", "user_id", "edit_timestamp"),
    )

    def __repr__(self) -> str:
        return f"<Content(id={self.id}, platform={self.platform}, format={self.content_format})>"

    @property
    def has_edit_metadata(self) -> bool:
        return self.edit_timestamp is not None

    @property
    def edit_metadata(self) -> Optional[EditMetadata]:
        if not self.has_edit_metadata or self.edit_metadata_data is None:
            return None
        return EditMetadata.model_validate({
            **self.edit_metadata_data,
            "edit_timestamp": self.edit_timestamp,
            "learning_processed": bool(self.learning_processed),
        })

    @edit_metadata.setter
    def edit_metadata(self, metadata: Optional[EditMetadata]) -> None:
        if metadata is None:
            self.edit_metadata_data = None
            self.edit_timestamp = None
            self.learning_processed = None
            return
        self.edit_metadata_data = metadata.to_document(exclude=_EDIT_COLUMNS)
        self.edit_timestamp = metadata.edit_timestamp
        self.learning_processed = metadata.learning_processed

    @property
    def is_thread(self) -> bool:
        return self.content_format == ContentFormat.THREAD.value

    @property
    def thread_parts(self) -> list[TweetPart]:
        """Thread parts sorted by position; empty for single posts."""
        parts = [TweetPart.model_validate(t) for t in (self.tweets or [])]
        return sorted(parts, key=lambda p: p.position)
