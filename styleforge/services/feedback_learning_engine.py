"""
Feedback Learning Engine.

Turns user edits into profile updates:

    edit -> extract delta -> store EditMetadata -> queue LearningJob
         -> (worker) detect patterns over recent edits -> feedback update

Profile writes go through StyleProfileService.update_profile, so every
update snapshots the pre-update profile and is retried on conflict.
"""

import math
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from pydantic import Field
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from styleforge.core.cache import StyleCache
from styleforge.core.config import Settings
from styleforge.core.database import session_scope
from styleforge.core.exceptions import NotFoundError, ValidationError
from styleforge.models.content import Content
from styleforge.models.learning_job import LearningJob, LearningJobStatus
from styleforge.schemas.style import (
    EditMetadata,
    LearningJobMetadata,
    ManualOverrides,
    StyleModel,
    StyleProfile,
    ToneMetrics,
    TweetPart,
    VersionSource,
    dedupe,
)
from styleforge.services.edit_metadata_service import EditMetadataService
from styleforge.services.style_delta_extractor import StyleDeltaExtractor
from styleforge.services.style_profile_service import StyleProfileService

logger = structlog.get_logger(__name__)

# Sends a job id (and priority) to the execution queue
JobDispatcher = Callable[[str, int], None]

CTA_MARKERS = ("check out", "learn more", "click", "visit", "try", "get started")

# tone shift label -> (axis, step)
TONE_ADJUSTMENTS = {
    "more casual": ("formality", -1),
    "more professional": ("formality", 1),
    "more enthusiastic": ("enthusiasm", 1),
    "more subdued": ("enthusiasm", -1),
    "more direct": ("directness", 1),
    "more indirect": ("directness", -1),
    "more humorous": ("humor", 1),
    "more serious": ("humor", -1),
}


class EmojiPattern(StyleModel):
    should_use: bool = True
    frequency: int = Field(0, ge=0, le=5)


class DetectedPatterns(StyleModel):
    """Patterns found across a user's recent edits."""

    sentence_length_pattern: Optional[float] = None
    emoji_pattern: Optional[EmojiPattern] = None
    cta_pattern: bool = False
    banned_phrases: list[str] = Field(default_factory=list)
    common_phrases: list[str] = Field(default_factory=list)
    tone_pattern: Optional[str] = None


def recency_weights(count: int) -> list[float]:
    """Linear weights, most recent first: 1.0 down to 0.5 for the oldest."""
    if count <= 0:
        return []
    if count == 1:
        return [1.0]
    return [1.0 - 0.5 * i / (count - 1) for i in range(count)]


def weighted_average(values: list[float], weights: list[float]) -> float:
    total = sum(weights)
    if not values or total == 0:
        return 0.0
    return sum(v * w for v, w in zip(values, weights)) / total


def adjust_tone(tone: ToneMetrics, shift: str, overrides: ManualOverrides) -> ToneMetrics:
    """Move one tone axis by one step, staying within [1, 10]."""
    adjustment = TONE_ADJUSTMENTS.get(shift)
    if adjustment is None:
        return tone
    axis, step = adjustment
    if overrides.protects("tone", axis):
        return tone
    value = min(10, max(1, getattr(tone, axis) + step))
    return tone.model_copy(update={axis: value})


class FeedbackLearningEngine:
    """
    Orchestrates feedback learning.

    The per-user rate limit is a Redis key with the window as its TTL, so it
    holds across worker tasks and processes. The lazy-prune counters live on
    the instance.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        extractor: StyleDeltaExtractor,
        edit_store: EditMetadataService,
        profiles: StyleProfileService,
        cache: StyleCache,
        dispatcher: Optional[JobDispatcher] = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.extractor = extractor
        self.edit_store = edit_store
        self.profiles = profiles
        self.cache = cache
        self.dispatcher = dispatcher
        self._edits_since_prune: Counter = Counter()

    # ==================== Edit capture ====================

    async def record_edit(self, content_id: str, edited_text: str) -> LearningJob:
        """Capture a single-post edit and queue learning for it."""
        content = await self._get_content(content_id)
        if content.is_thread:
            raise ValidationError(f"Content {content_id} is a thread; use record_thread_edit")

        delta = await self.extractor.extract_with_retry(content.generated_text, edited_text)
        metadata = EditMetadata.from_delta(delta, content.generated_text, edited_text)
        await self.edit_store.store_edit_metadata(content_id, metadata)

        job = await self.queue_learning_job(content_id, content.user_id)
        await self._maybe_prune(content.user_id)
        return job

    async def record_thread_edit(self, content_id: str, edited_tweets: list[TweetPart]) -> LearningJob:
        """Capture an edit of some or all parts of a thread."""
        content = await self._get_content(content_id)
        if not content.is_thread:
            raise ValidationError(f"Content {content_id} is not a thread")

        await self.edit_store.store_thread_edit_metadata(
            content_id, edited_tweets, content.thread_parts
        )

        job = await self.queue_learning_job(content_id, content.user_id)
        await self._maybe_prune(content.user_id)
        return job

    async def _maybe_prune(self, user_id: str) -> int:
        """Prune once every ``prune_every_n_edits`` recorded edits."""
        self._edits_since_prune[user_id] += 1
        if self._edits_since_prune[user_id] < self.settings.prune_every_n_edits:
            return 0
        self._edits_since_prune[user_id] = 0
        return await self.edit_store.prune_old_edit_metadata(user_id)

    # ==================== Jobs ====================

    async def queue_learning_job(self, content_id: str, user_id: str, priority: int = 0) -> LearningJob:
        """
        Create a pending job and hand it to the dispatcher.

        The job row is committed before dispatch; if dispatch fails the
        error is logged and the pending row stays for the maintenance sweep.
        """
        async with session_scope(self.session_factory) as session:
            content = await session.get(Content, content_id)
            if content is None:
                raise NotFoundError("Content", content_id)

            metadata = LearningJobMetadata(content_format=content.content_format)
            if content.is_thread:
                metadata.is_thread = True
                metadata.tweet_count = len(content.tweets or [])

            job = LearningJob(
                id=str(uuid.uuid4()),
                user_id=user_id,
                content_id=content_id,
                status=LearningJobStatus.PENDING.value,
                priority=priority,
                attempts=0,
                extra_metadata=metadata.to_document(exclude_none=True),
            )
            session.add(job)
            await session.commit()
            await session.refresh(job)

        logger.info(
            "Queued learning job",
            job_id=job.id,
            user_id=user_id,
            content_id=content_id,
            is_thread=metadata.is_thread,
        )

        if self.dispatcher is not None:
            try:
                self.dispatcher(job.id, priority)
            except Exception as e:
                logger.error("Failed to dispatch learning job", job_id=job.id, error=str(e))
        return job

    async def process_learning_job(self, job_id: str) -> LearningJob:
        """
        Run one job: pending -> processing -> completed | failed.

        A failure is recorded on the job and re-raised for the queue's retry.
        """
        async with session_scope(self.session_factory) as session:
            job = await session.get(LearningJob, job_id)
            if job is None:
                raise NotFoundError("LearningJob", job_id)
            if job.status == LearningJobStatus.COMPLETED.value:
                logger.info("Learning job already completed", job_id=job_id)
                return job
            job.status = LearningJobStatus.PROCESSING.value
            job.processing_started = datetime.utcnow()
            job.attempts += 1
            await session.commit()

        logger.info("Processing learning job", job_id=job_id, attempt=job.attempts)

        try:
            content = await self._get_content(job.content_id)
            metadata = content.edit_metadata
            if metadata is None:
                raise ValidationError(f"Content {job.content_id} has no edit metadata")

            await self._update_job(job_id, style_delta=metadata.as_delta().to_document())
            await self.update_profile_from_deltas(job.user_id)
        except Exception as e:
            logger.error("Learning job failed", job_id=job_id, error=str(e))
            await self._update_job(
                job_id,
                status=LearningJobStatus.FAILED.value,
                error=str(e),
                processing_completed=datetime.utcnow(),
            )
            raise

        completed = await self._update_job(
            job_id,
            status=LearningJobStatus.COMPLETED.value,
            error=None,
            processing_completed=datetime.utcnow(),
        )
        logger.info("Completed learning job", job_id=job_id)
        return completed

    async def requeue_pending_jobs(
        self, older_than_seconds: int, stuck_after_seconds: Optional[int] = None
    ) -> int:
        """
        Re-dispatch jobs that will not finish on their own.

        Covers pending jobs whose first dispatch never ran and, when
        ``stuck_after_seconds`` is given, processing jobs started longer ago
        than that (their worker died mid-task).
        """
        if self.dispatcher is None:
            return 0

        now = datetime.utcnow()
        stale = and_(
            LearningJob.status == LearningJobStatus.PENDING.value,
            LearningJob.created_at < now - timedelta(seconds=older_than_seconds),
        )
        if stuck_after_seconds is not None:
            stale = or_(
                stale,
                and_(
                    LearningJob.status == LearningJobStatus.PROCESSING.value,
                    LearningJob.processing_started < now - timedelta(seconds=stuck_after_seconds),
                ),
            )

        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(LearningJob)
                .where(stale)
                .order_by(LearningJob.priority.desc(), LearningJob.created_at)
            )
            jobs = list(result.scalars().all())

        for job in jobs:
            self.dispatcher(job.id, job.priority)
        if jobs:
            logger.info("Requeued stale learning jobs", count=len(jobs))
        return len(jobs)

    async def _update_job(self, job_id: str, **values) -> LearningJob:
        async with session_scope(self.session_factory) as session:
            job = await session.get(LearningJob, job_id)
            if job is None:
                raise NotFoundError("LearningJob", job_id)
            for key, value in values.items():
                setattr(job, key, value)
            await session.commit()
            return job

    async def _get_content(self, content_id: str) -> Content:
        async with session_scope(self.session_factory) as session:
            content = await session.get(Content, content_id)
        if content is None:
            raise NotFoundError("Content", content_id)
        return content

    # ==================== Profile learning ====================

    async def can_update_profile(self, user_id: str) -> bool:
        """False while the user's last update is inside the rate-limit window."""
        if self.settings.learning_rate_limit_seconds <= 0:
            return True
        return await self.cache.get_last_learning_update(user_id) is None

    async def update_profile_from_deltas(self, user_id: str) -> Optional[StyleProfile]:
        """
        Fold recent edit patterns into the live profile.

        Returns None, without writing, when the user was updated less than
        ``learning_rate_limit_seconds`` ago or has no profile yet.
        """
        if not await self.can_update_profile(user_id):
            logger.info("Profile update rate limited", user_id=user_id)
            return None

        overrides = await self.profiles.get_manual_overrides(user_id)
        if await self.profiles.get_style_profile(user_id) is None:
            logger.info("User has no style profile, skipping learning", user_id=user_id)
            return None

        recent = await self.edit_store.get_recent_edits(
            user_id, limit=self.settings.recent_edits_limit
        )
        edits = [m for m in (c.edit_metadata for c in recent) if m is not None]
        patterns = self.detect_patterns(edits)
        edit_count = await self.edit_store.get_edit_count(user_id)
        allow_major = edit_count >= self.settings.min_edits_for_major_changes

        def _apply(profile: StyleProfile) -> StyleProfile:
            updated = self.apply_weighted_updates(profile, patterns, overrides, allow_major)
            updated.learning_iterations = profile.learning_iterations + 1
            return updated

        updated = await self.profiles.update_profile(user_id, _apply, VersionSource.FEEDBACK)
        if self.settings.learning_rate_limit_seconds > 0:
            await self.cache.set_last_learning_update(user_id, datetime.utcnow())

        unprocessed = await self.edit_store.get_unprocessed_edits(
            user_id, limit=self.settings.max_edit_metadata_per_user
        )
        await self.edit_store.mark_edits_as_processed([c.id for c in unprocessed])

        logger.info(
            "Updated profile from feedback",
            user_id=user_id,
            learning_iterations=updated.learning_iterations,
            edits=len(edits),
        )
        return updated

    def detect_patterns(self, edits: list[EditMetadata]) -> DetectedPatterns:
        """Find patterns across edits ordered most recent first."""
        settings = self.settings
        patterns = DetectedPatterns()
        if not edits:
            return patterns

        min_edits = settings.min_edits_for_pattern_detection

        if len(edits) >= min_edits:
            weights = recency_weights(len(edits))
            avg = weighted_average([e.sentence_length_delta for e in edits], weights)
            if abs(avg) > 2:
                patterns.sentence_length_pattern = avg

        emoji_edits = sum(1 for e in edits if e.emoji_changes.added > 0)
        if emoji_edits >= min_edits:
            avg_added = sum(e.emoji_changes.added for e in edits) / len(edits)
            patterns.emoji_pattern = EmojiPattern(frequency=min(5, math.ceil(avg_added)))

        cta_edits = sum(
            1 for e in edits
            if any(marker in p for p in e.phrases_added for marker in CTA_MARKERS)
        )
        patterns.cta_pattern = cta_edits >= min_edits

        removed = Counter(p for e in edits for p in dedupe(e.phrases_removed))
        patterns.banned_phrases = [
            p for p, n in removed.items() if n >= settings.min_edits_for_banned_phrases
        ]
        added = Counter(p for e in edits for p in dedupe(e.phrases_added))
        patterns.common_phrases = [p for p, n in added.items() if n >= min_edits]

        shifts = [e.tone_shift for e in edits if e.has_tone_shift]
        if len(shifts) >= min_edits:
            patterns.tone_pattern = Counter(shifts).most_common(1)[0][0]

        return patterns

    def apply_weighted_updates(
        self,
        profile: StyleProfile,
        patterns: DetectedPatterns,
        overrides: ManualOverrides,
        allow_major: bool,
    ) -> StyleProfile:
        """Return an updated copy of ``profile``; manual overrides are left alone."""
        settings = self.settings
        updated = profile.clone()
        traits = updated.writing_traits

        if patterns.sentence_length_pattern is not None and not overrides.protects(
            "writing_traits", "avg_sentence_length"
        ):
            target = traits.avg_sentence_length + (
                patterns.sentence_length_pattern * settings.adjustment_percentage
            )
            traits.avg_sentence_length = min(
                settings.sentence_length_max, max(settings.sentence_length_min, target)
            )

        if patterns.emoji_pattern is not None and not overrides.protects("writing_traits", "uses_emojis"):
            traits.uses_emojis = patterns.emoji_pattern.should_use
            if not overrides.protects("writing_traits", "emoji_frequency"):
                traits.emoji_frequency = patterns.emoji_pattern.frequency

        if patterns.cta_pattern and not overrides.protects("structure", "ending_style"):
            updated.structure_preferences.ending_style = "cta"

        if patterns.banned_phrases:
            updated.banned_phrases = dedupe(
                updated.banned_phrases + patterns.banned_phrases
            )[-settings.max_banned_phrases:]

        if patterns.common_phrases:
            updated.common_phrases = dedupe(
                updated.common_phrases + patterns.common_phrases
            )[-settings.max_common_phrases:]

        if patterns.tone_pattern and allow_major:
            updated.tone = adjust_tone(updated.tone, patterns.tone_pattern, overrides)

        return updated
