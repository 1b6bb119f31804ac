"""
Style Profile Service.

Read-through cached access to a user's live StyleProfile, and the only
write path that changes it. Every change snapshots the pre-update profile
into version history in the same compare-and-swap write.
"""

from datetime import datetime
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, ConfigDict
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from styleforge.core.cache import StyleCache
from styleforge.core.config import Settings
from styleforge.core.exceptions import ConcurrentUpdateError, NotFoundError, ValidationError
from styleforge.models.user import User
from styleforge.schemas.style import (
    ManualOverrides,
    ProfileSource,
    ProfileVersion,
    StyleProfile,
    VersionSource,
)
from styleforge.services.profile_versioning_service import (
    ProfileVersioningService,
    append_version,
)
from styleforge.services.user_writes import UserRecordWriter

logger = structlog.get_logger(__name__)

ProfileMutation = Callable[[StyleProfile], StyleProfile]


class ProfileUpdateHandle(BaseModel):
    """
    Result of ``begin_update``: the profile to edit plus what the commit needs.

    ``profile`` is an owned copy; edit it (or build a new one) and pass the
    result to ``commit_update``.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    source: VersionSource
    snapshot: ProfileVersion
    profile: StyleProfile
    expected_version: int


class StyleProfileService:
    """Owns ``users.style_profile`` and ``users.manual_overrides``."""

    def __init__(
        self,
        settings: Settings,
        writer: UserRecordWriter,
        versioning: ProfileVersioningService,
        cache: StyleCache,
    ):
        self.settings = settings
        self.writer = writer
        self.versioning = versioning
        self.cache = cache

    # ==================== Reads ====================

    async def get_style_profile(self, user_id: str) -> Optional[StyleProfile]:
        """Live profile, served from cache when possible (1 hour TTL)."""
        cached = await self.cache.get_style_profile(user_id)
        if cached is not None:
            return cached

        user = await self.writer.load(user_id)
        if user is None:
            raise NotFoundError("User", user_id)

        profile = user.style_profile
        if profile is not None:
            await self.cache.set_style_profile(user_id, profile)
        return profile

    async def get_manual_overrides(self, user_id: str) -> ManualOverrides:
        user = await self.writer.load(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user.manual_overrides

    # ==================== Two-phase update ====================

    async def begin_update(self, user_id: str, source: VersionSource) -> ProfileUpdateHandle:
        """
        Capture the pre-update snapshot and the user's concurrency token.

        Raises:
            NotFoundError: The user does not exist or has no live profile
        """
        user = await self.writer.load(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        profile = user.style_profile
        if profile is None:
            raise NotFoundError("StyleProfile", user_id)

        source = VersionSource(source)
        return ProfileUpdateHandle(
            user_id=user_id,
            source=source,
            snapshot=ProfileVersion.capture(profile, source),
            profile=profile.clone(),
            expected_version=user.version_id,
        )

    async def commit_update(
        self, handle: ProfileUpdateHandle, new_profile: StyleProfile
    ) -> StyleProfile:
        """
        Append the handle's snapshot and store ``new_profile`` in one write.

        Feedback updates have manual overrides written back over them.

        Raises:
            ConcurrentUpdateError: The user row changed since ``begin_update``
            ValidationError: ``learning_iterations`` would go backwards
        """
        base_iterations = handle.snapshot.learning_iterations
        if new_profile.learning_iterations < base_iterations:
            raise ValidationError(
                f"learning_iterations cannot decrease ({base_iterations} -> "
                f"{new_profile.learning_iterations})"
            )

        async def _commit(user: User) -> StyleProfile:
            profile = new_profile.clone()
            if handle.source == VersionSource.FEEDBACK:
                profile = user.manual_overrides.apply_to(profile)
            profile.last_updated = datetime.utcnow()

            user.profile_versions = append_version(
                user.profile_versions, handle.snapshot, self.settings.max_profile_versions
            )
            user.style_profile = profile
            return profile

        def _missing() -> StyleProfile:
            raise NotFoundError("User", handle.user_id)

        stored = await self.writer.write_once(
            handle.user_id, _commit, _missing, expected_version=handle.expected_version
        )
        await self.cache.invalidate_user(handle.user_id)

        logger.info(
            "Committed style profile update",
            user_id=handle.user_id,
            source=handle.source.value,
            learning_iterations=stored.learning_iterations,
        )
        return stored

    async def update_profile(
        self, user_id: str, mutate: ProfileMutation, source: VersionSource
    ) -> StyleProfile:
        """
        begin/commit with the whole cycle retried on conflict.

        ``mutate`` receives an owned copy of the live profile and returns the
        new profile. It may run more than once.
        """
        max_attempts = self.settings.profile_update_max_retries
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(multiplier=self.settings.profile_update_backoff_seconds),
                retry=retry_if_exception_type(ConcurrentUpdateError),
                reraise=True,
            ):
                with attempt:
                    handle = await self.begin_update(user_id, source)
                    return await self.commit_update(handle, mutate(handle.profile))
        except ConcurrentUpdateError as e:
            logger.error("Profile update conflict persisted", user_id=user_id, attempts=max_attempts)
            raise ConcurrentUpdateError(user_id, e.expected_version, max_attempts) from e

    # ==================== Replacement ====================

    async def set_profile(
        self,
        user_id: str,
        profile: StyleProfile,
        source: VersionSource = VersionSource.MANUAL,
    ) -> StyleProfile:
        """
        Replace the live profile (voice analysis, file upload, manual edit).

        Any existing profile is snapshotted first. The learning counter
        carries over so it never goes backwards.
        """
        source = VersionSource(source)

        async def _replace(user: User) -> StyleProfile:
            current = user.style_profile
            self.versioning.snapshot_into(user, source)

            new_profile = profile.clone()
            if current is not None:
                new_profile.learning_iterations = max(
                    new_profile.learning_iterations, current.learning_iterations
                )
            new_profile.last_updated = datetime.utcnow()
            user.style_profile = new_profile
            return new_profile

        def _missing() -> StyleProfile:
            raise NotFoundError("User", user_id)

        stored = await self.writer.run(user_id, _replace, _missing)
        await self.cache.invalidate_user(user_id)
        logger.info("Set style profile", user_id=user_id, source=source.value)
        return stored

    async def apply_archetype(
        self, user_id: str, archetype_name: str, archetype_profile: StyleProfile
    ) -> StyleProfile:
        """Adopt a predefined starter profile."""
        profile = archetype_profile.model_copy(
            deep=True,
            update={
                "profile_source": ProfileSource.ARCHETYPE,
                "archetype_base": archetype_name,
                "learning_iterations": 0,
            },
        )
        return await self.set_profile(user_id, profile, source=VersionSource.ARCHETYPE)

    async def set_manual_overrides(self, user_id: str, overrides: ManualOverrides) -> Optional[StyleProfile]:
        """
        Pin profile values against feedback learning.

        The pinned values are also written into the live profile, with a
        ``manual`` snapshot taken first.
        """
        async def _pin(user: User) -> Optional[StyleProfile]:
            user.manual_overrides = overrides
            current = user.style_profile
            if current is None:
                return None
            self.versioning.snapshot_into(user, VersionSource.MANUAL)
            pinned = overrides.apply_to(current)
            pinned.last_updated = datetime.utcnow()
            user.style_profile = pinned
            return pinned

        def _missing() -> Optional[StyleProfile]:
            raise NotFoundError("User", user_id)

        pinned = await self.writer.run(user_id, _pin, _missing)
        await self.cache.invalidate_user(user_id)
        logger.info("Set manual overrides", user_id=user_id, overrides=len(overrides.overrides))
        return pinned
