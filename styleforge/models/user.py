"""
User model with embedded style profile and bounded version history.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from styleforge.core.database import Base
from styleforge.schemas.style import ManualOverrides, ProfileVersion, StyleProfile


class User(Base):
    """
    GitHub user owning one optional StyleProfile and up to N ProfileVersions.

    ``version_id`` is the optimistic-concurrency token: every ORM flush of a
    user row is a compare-and-swap on it, and a lost race raises
    ``StaleDataError``.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    github_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False)

    # Embedded documents
    style_profile_data: Mapped[Optional[dict]] = mapped_column(
        "style_profile", JSON(none_as_null=True)
    )
    profile_versions_data: Mapped[list] = mapped_column(
        "profile_versions", JSON, default=list, nullable=False
    )
    manual_overrides_data: Mapped[Optional[dict]] = mapped_column(
        "manual_overrides", JSON(none_as_null=True)
    )

    # Generation preferences
    voice_strength: Mapped[int] = mapped_column(Integer, default=80, nullable=False)  # 0-100
    emoji_preference: Mapped[bool] = mapped_column(default=True, nullable=False)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username})>"

    @property
    def style_profile(self) -> Optional[StyleProfile]:
        """Hydrated live profile, or None if the user has none."""
        if not self.style_profile_data:
            return None
        return StyleProfile.model_validate(self.style_profile_data)

    @style_profile.setter
    def style_profile(self, profile: Optional[StyleProfile]) -> None:
        self.style_profile_data = profile.to_document() if profile is not None else None

    @property
    def profile_versions(self) -> list[ProfileVersion]:
        """Version history, oldest first."""
        return [ProfileVersion.model_validate(v) for v in (self.profile_versions_data or [])]

    @profile_versions.setter
    def profile_versions(self, versions: list[ProfileVersion]) -> None:
        # Always assign a fresh list so the JSON column is marked dirty
        self.profile_versions_data = [v.to_document() for v in versions]

    @property
    def version_count(self) -> int:
        return len(self.profile_versions_data or [])

    @property
    def manual_overrides(self) -> ManualOverrides:
        if not self.manual_overrides_data:
            return ManualOverrides()
        return ManualOverrides.model_validate(self.manual_overrides_data)

    @manual_overrides.setter
    def manual_overrides(self, overrides: Optional[ManualOverrides]) -> None:
        self.manual_overrides_data = overrides.to_document() if overrides else None
