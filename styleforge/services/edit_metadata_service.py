"""
Edit Metadata Store.

Persists one EditMetadata per edited Content record, caps how many a user
retains, and aggregates recent edits into patterns for learning.
"""

import asyncio
import math
from collections import Counter
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import func, null, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from styleforge.core.config import Settings
from styleforge.core.database import session_scope
from styleforge.core.exceptions import NotFoundError, ValidationError
from styleforge.models.content import Content
from styleforge.schemas.style import (
    NO_TONE_CHANGE,
    AggregatedEditPatterns,
    EditMetadata,
    EmojiChanges,
    PhraseCount,
    StructureChangeFrequency,
    StructureChanges,
    StyleDelta,
    ToneShiftCount,
    TweetPart,
    VocabularyChanges,
    dedupe,
)
from styleforge.services.style_delta_extractor import StyleDeltaExtractor

logger = structlog.get_logger(__name__)

THREAD_PART_SEPARATOR = "\n\n"


def round_half_up(value: float) -> int:
    """Round half up (0.5 -> 1, -0.5 -> 0)."""
    return int(math.floor(value + 0.5))


def fold_thread_deltas(
    deltas: list[StyleDelta],
    max_phrases: int = 10,
    max_substitutions: int = 10,
) -> StyleDelta:
    """
    Fold per-part deltas (already in position order) into one delta.

    Sentence length and complexity are averaged, counts are summed, the tone
    shift is the most frequent non-"no change" label, and list fields are
    deduplicated and truncated.
    """
    if not deltas:
        return StyleDelta()

    count = len(deltas)
    emoji_added = sum(d.emoji_changes.added for d in deltas)
    emoji_removed = sum(d.emoji_changes.removed for d in deltas)

    tone_counts = Counter(d.tone_shift for d in deltas if d.has_tone_shift)
    tone_shift = tone_counts.most_common(1)[0][0] if tone_counts else NO_TONE_CHANGE

    substitutions = [s for d in deltas for s in d.vocabulary_changes.words_substituted]

    return StyleDelta(
        sentence_length_delta=sum(d.sentence_length_delta for d in deltas) / count,
        emoji_changes=EmojiChanges.from_counts(emoji_added, emoji_removed),
        structure_changes=StructureChanges(
            paragraphs_added=sum(d.structure_changes.paragraphs_added for d in deltas),
            paragraphs_removed=sum(d.structure_changes.paragraphs_removed for d in deltas),
            bullets_added=any(d.structure_changes.bullets_added for d in deltas),
            formatting_changes=dedupe(
                [c for d in deltas for c in d.structure_changes.formatting_changes]
            )[:max_phrases],
        ),
        tone_shift=tone_shift,
        vocabulary_changes=VocabularyChanges(
            words_substituted=substitutions[:max_substitutions],
            complexity_shift=round_half_up(
                sum(d.vocabulary_changes.complexity_shift for d in deltas) / count
            ),
        ),
        phrases_added=dedupe([p for d in deltas for p in d.phrases_added])[:max_phrases],
        phrases_removed=dedupe([p for d in deltas for p in d.phrases_removed])[:max_phrases],
    )


class EditMetadataService:
    """
    Capped, queryable storage of per-edit style deltas.

    "Most recent" always means ``edit_timestamp`` descending, with the content
    id as a stable tie-break.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        extractor: StyleDeltaExtractor,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.extractor = extractor

    @staticmethod
    def _edits_for_user(user_id: str):
        return (
            select(Content)
            .where(Content.user_id == user_id, Content.edit_timestamp.is_not(None))
            .order_by(Content.edit_timestamp.desc(), Content.id)
        )

    async def prune_old_edit_metadata(self, user_id: str) -> int:
        """
        Keep the most recent edits and unset edit metadata on the rest.

        The Content records themselves are kept. Returns the number of
        records unset; 0 when the user is at or under the cap.
        """
        cap = self.settings.max_edit_metadata_per_user

        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(Content.id)
                .where(Content.user_id == user_id, Content.edit_timestamp.is_not(None))
                .order_by(Content.edit_timestamp.desc(), Content.id)
            )
            edit_ids = list(result.scalars().all())

            if len(edit_ids) <= cap:
                logger.debug("No pruning needed", user_id=user_id, edits=len(edit_ids))
                return 0

            stale_ids = edit_ids[cap:]
            result = await session.execute(
                update(Content)
                .where(Content.id.in_(stale_ids))
                .values(edit_metadata_data=null(), edit_timestamp=None, learning_processed=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        logger.info("Pruned edit metadata", user_id=user_id, pruned=result.rowcount)
        return result.rowcount

    async def get_recent_edits(
        self,
        user_id: str,
        limit: Optional[int] = None,
        include_processed: bool = True,
    ) -> list[Content]:
        """Edited content for a user, most recent first."""
        limit = limit if limit is not None else self.settings.recent_edits_limit
        stmt = self._edits_for_user(user_id).limit(limit)
        if not include_processed:
            stmt = stmt.where(Content.learning_processed.is_(False))

        async with session_scope(self.session_factory) as session:
            result = await session.execute(stmt)
            edits = list(result.scalars().all())

        logger.debug("Fetched recent edits", user_id=user_id, count=len(edits))
        return edits

    async def get_unprocessed_edits(self, user_id: str, limit: Optional[int] = None) -> list[Content]:
        """
        Get edits not yet folded into the profile.

        Args:
            user_id: User identifier
            limit: Maximum number of edits; defaults to ``recent_edits_limit``

        Returns:
            Unprocessed edited content, most recent first
        """
        return await self.get_recent_edits(user_id, limit=limit, include_processed=False)

    async def mark_edits_as_processed(self, content_ids: list[str]) -> int:
        """Set ``learning_processed`` on the given records; nothing else changes."""
        if not content_ids:
            return 0

        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                update(Content)
                .where(Content.id.in_(content_ids), Content.edit_timestamp.is_not(None))
                .values(learning_processed=True)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        logger.info("Marked edits as processed", count=result.rowcount)
        return result.rowcount

    async def aggregate_edit_patterns(
        self, user_id: str, limit: Optional[int] = None
    ) -> AggregatedEditPatterns:
        """Summarize up to ``limit`` recent edits. Zero edits gives an all-zero result."""
        limit = limit if limit is not None else self.settings.aggregate_edits_limit
        edits = await self.get_recent_edits(user_id, limit=limit)
        deltas = [c.edit_metadata for c in edits if c.has_edit_metadata]
        deltas = [d for d in deltas if d is not None]

        if not deltas:
            return AggregatedEditPatterns()

        tone_counts = Counter(d.tone_shift for d in deltas if d.has_tone_shift)
        added_counts: Counter = Counter()
        removed_counts: Counter = Counter()
        for delta in deltas:
            added_counts.update(dedupe(delta.phrases_added))
            removed_counts.update(dedupe(delta.phrases_removed))

        patterns = AggregatedEditPatterns(
            total_edits=len(deltas),
            avg_sentence_length_delta=sum(d.sentence_length_delta for d in deltas) / len(deltas),
            total_emoji_changes=EmojiChanges.from_counts(
                sum(d.emoji_changes.added for d in deltas),
                sum(d.emoji_changes.removed for d in deltas),
            ),
            common_tone_shifts=[
                ToneShiftCount(shift=shift, count=n) for shift, n in tone_counts.most_common()
            ],
            common_phrases_added=[
                PhraseCount(phrase=phrase, count=n) for phrase, n in added_counts.most_common()
            ],
            common_phrases_removed=[
                PhraseCount(phrase=phrase, count=n) for phrase, n in removed_counts.most_common()
            ],
            structure_change_frequency=StructureChangeFrequency(
                paragraphs_added=sum(d.structure_changes.paragraphs_added for d in deltas),
                paragraphs_removed=sum(d.structure_changes.paragraphs_removed for d in deltas),
                bullets_added=sum(1 for d in deltas if d.structure_changes.bullets_added),
            ),
        )

        logger.info("Aggregated edit patterns", user_id=user_id, edits=patterns.total_edits)
        return patterns

    async def get_edit_count(self, user_id: str) -> int:
        """
        Count a user's records that carry edit metadata.

        Args:
            user_id: User identifier

        Returns:
            Number of edited records, processed or not
        """
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(func.count(Content.id)).where(
                    Content.user_id == user_id, Content.edit_timestamp.is_not(None)
                )
            )
            return result.scalar_one()

    async def find_users_over_cap(self) -> list[str]:
        """Users carrying more edit metadata than the cap allows."""
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(Content.user_id)
                .where(Content.edit_timestamp.is_not(None))
                .group_by(Content.user_id)
                .having(func.count(Content.id) > self.settings.max_edit_metadata_per_user)
            )
            return list(result.scalars().all())

    async def store_edit_metadata(
        self,
        content_id: str,
        metadata: EditMetadata,
    ) -> Content:
        """Attach metadata for a single-post edit and record the edited text."""
        async with session_scope(self.session_factory) as session:
            content = await session.get(Content, content_id)
            if content is None:
                raise NotFoundError("Content", content_id)

            content.edit_metadata = metadata
            content.edited_text = metadata.edited_text
            await session.commit()

        logger.info(
            "Stored edit metadata",
            content_id=content_id,
            user_id=content.user_id,
            tone_shift=metadata.tone_shift,
        )
        return content

    async def store_thread_edit_metadata(
        self,
        content_id: str,
        edited_tweets: list[TweetPart],
        original_tweets: list[TweetPart],
        edit_timestamp: Optional[datetime] = None,
    ) -> Content:
        """
        Extract a delta per edited thread part and store their fold.

        Parts are matched to originals by position. A part with no original,
        or whose extraction fails, is logged and skipped. Nothing is written
        when no part could be processed.

        Extraction runs with no session open; the record is loaded again
        for the write.
        """
        if not edited_tweets:
            raise ValidationError("At least one edited thread part is required")

        async with session_scope(self.session_factory) as session:
            if await session.get(Content, content_id) is None:
                raise NotFoundError("Content", content_id)

        originals = {t.position: t for t in original_tweets}
        edited_sorted = sorted(edited_tweets, key=lambda t: t.position)

        pairs = []
        for part in edited_sorted:
            original = originals.get(part.position)
            if original is None:
                logger.warning(
                    "Original thread part not found",
                    content_id=content_id,
                    position=part.position,
                )
                continue
            pairs.append((part, original))

        results = await asyncio.gather(
            *(self.extractor.extract_with_retry(o.text, e.text) for e, o in pairs),
            return_exceptions=True,
        )

        deltas = []
        for (part, _), result in zip(pairs, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    "Skipping thread part",
                    content_id=content_id,
                    position=part.position,
                    error=str(result),
                )
                continue
            deltas.append(result)

        if not deltas:
            raise ValidationError(f"No thread part of content {content_id} could be processed")

        folded = fold_thread_deltas(
            deltas,
            max_phrases=self.settings.max_thread_phrases,
            max_substitutions=self.settings.max_thread_word_substitutions,
        )
        original_text = THREAD_PART_SEPARATOR.join(
            t.text for t in sorted(original_tweets, key=lambda t: t.position)
        )
        edited_text = THREAD_PART_SEPARATOR.join(t.text for t in edited_sorted)
        metadata = EditMetadata.from_delta(folded, original_text, edited_text, edit_timestamp)

        async with session_scope(self.session_factory) as session:
            content = await session.get(Content, content_id)
            if content is None:
                raise NotFoundError("Content", content_id)
            content.edit_metadata = metadata
            content.edited_text = edited_text
            await session.commit()

        logger.info(
            "Stored thread edit metadata",
            content_id=content_id,
            parts=len(edited_tweets),
            processed=len(deltas),
        )
        return content
