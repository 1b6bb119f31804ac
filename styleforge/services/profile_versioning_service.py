"""
Profile Versioning Service.

Bounded, insertion-ordered history of StyleProfile snapshots per user, with
point-in-time rollback. Version indices are only valid for the read that
produced them: any write may evict from the front and shift them.
"""

from datetime import datetime
from typing import Optional

import structlog

from styleforge.core.cache import StyleCache
from styleforge.core.config import Settings
from styleforge.core.exceptions import ValidationError
from styleforge.models.user import User
from styleforge.schemas.style import ProfileVersion, StyleProfile, VersionSource
from styleforge.services.user_writes import UserRecordWriter

logger = structlog.get_logger(__name__)


def resolve_version_index(version_index: int, length: int) -> Optional[int]:
    """Resolve a possibly negative index (-1 = most recent); None if out of range."""
    actual = length + version_index if version_index < 0 else version_index
    if actual < 0 or actual >= length:
        return None
    return actual


def append_version(
    versions: list[ProfileVersion], version: ProfileVersion, max_versions: int
) -> list[ProfileVersion]:
    """Append, then drop from the front down to ``max_versions``."""
    return [*versions, version][-max_versions:]


class ProfileVersioningService:
    """Owns ``users.profile_versions``."""

    def __init__(self, settings: Settings, writer: UserRecordWriter, cache: StyleCache):
        self.settings = settings
        self.writer = writer
        self.cache = cache

    @property
    def max_versions(self) -> int:
        return self.settings.max_profile_versions

    def snapshot_into(self, user: User, source: VersionSource) -> Optional[ProfileVersion]:
        """Append a snapshot of the user's live profile in memory; no I/O."""
        profile = user.style_profile
        if profile is None:
            return None
        version = ProfileVersion.capture(profile, source)
        user.profile_versions = append_version(user.profile_versions, version, self.max_versions)
        return version

    async def create_version_snapshot(self, user_id: str, source: VersionSource) -> Optional[ProfileVersion]:
        """
        Snapshot the live profile. No-op when the user has no profile.

        Callers that go on to change the live profile should use
        StyleProfileService.begin_update instead, which pairs the snapshot
        with the write.
        """
        async def _snapshot(user: User) -> Optional[ProfileVersion]:
            return self.snapshot_into(user, source)

        version = await self.writer.run(user_id, _snapshot, missing=lambda: None)
        if version is not None:
            logger.info(
                "Created profile version snapshot",
                user_id=user_id,
                source=version.source.value,
                learning_iterations=version.learning_iterations,
            )
        return version

    async def rollback_to_version(self, user_id: str, version_index: int) -> Optional[StyleProfile]:
        """
        Restore the live profile from a version.

        Returns None when the user has no versions. Raises ValidationError
        for an out-of-range index. The current profile is snapshotted with
        source "rollback" first, so the rollback can itself be undone.
        """
        async def _rollback(user: User) -> Optional[StyleProfile]:
            versions = user.profile_versions
            if not versions:
                return None

            actual = resolve_version_index(version_index, len(versions))
            if actual is None:
                raise ValidationError("Invalid version index")
            target = versions[actual]

            self.snapshot_into(user, VersionSource.ROLLBACK)

            restored = target.profile.clone()
            restored.last_updated = datetime.utcnow()
            user.style_profile = restored
            return restored

        restored = await self.writer.run(user_id, _rollback, missing=lambda: None)
        if restored is not None:
            await self.cache.invalidate_user(user_id)
            logger.info("Rolled back style profile", user_id=user_id, version_index=version_index)
        return restored

    async def get_version_history(self, user_id: str) -> list[ProfileVersion]:
        """
        Get a user's profile versions.

        Args:
            user_id: User identifier

        Returns:
            Versions oldest first; empty for an unknown user
        """
        user = await self.writer.load(user_id)
        if user is None:
            return []
        return user.profile_versions

    async def get_version(self, user_id: str, version_index: int) -> Optional[ProfileVersion]:
        """Read-only lookup; out-of-range returns None."""
        versions = await self.get_version_history(user_id)
        actual = resolve_version_index(version_index, len(versions))
        return versions[actual] if actual is not None else None

    async def prune_versions(self, user_id: str, max_versions: Optional[int] = None) -> int:
        """Trim to the most recent ``max_versions``; returns how many were dropped."""
        keep = self.max_versions if max_versions is None else max_versions
        if keep < 0:
            raise ValidationError("max_versions must not be negative")

        async def _prune(user: User) -> int:
            versions = user.profile_versions
            if len(versions) <= keep:
                return 0
            user.profile_versions = versions[len(versions) - keep:]
            return len(versions) - keep

        pruned = await self.writer.run(user_id, _prune, missing=lambda: 0)
        if pruned:
            logger.info("Pruned profile versions", user_id=user_id, pruned=pruned)
        return pruned

    async def clear_version_history(self, user_id: str) -> int:
        """
        Drop every stored version, leaving the live profile alone.

        Args:
            user_id: User identifier

        Returns:
            Number of versions removed; 0 for an unknown user
        """
        async def _clear(user: User) -> int:
            count = user.version_count
            if count:
                user.profile_versions = []
            return count

        cleared = await self.writer.run(user_id, _clear, missing=lambda: 0)
        logger.info("Cleared profile version history", user_id=user_id, cleared=cleared)
        return cleared
