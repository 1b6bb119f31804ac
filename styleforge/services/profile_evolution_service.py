"""
Profile Evolution Service.

Scores how well-trained a user's style profile is, 0-100:
- Initial samples: 20 points
- Feedback iterations: 40 points (min(iterations / 10, 1) * 40)
- Profile completeness: 20 points
- Edit consistency: 20 points
"""

import math
from collections import Counter

import structlog

from styleforge.core.cache import StyleCache
from styleforge.schemas.style import EditMetadata, StyleProfile
from styleforge.services.edit_metadata_service import EditMetadataService, round_half_up
from styleforge.services.user_writes import UserRecordWriter

logger = structlog.get_logger(__name__)

CONSISTENCY_WINDOW = 20


def profile_completeness(profile: StyleProfile) -> int:
    """Four points per populated profile component."""
    score = 4  # tone is always populated
    if profile.writing_traits.avg_sentence_length > 0:
        score += 4
    score += 4  # structure preferences have defaults
    if profile.vocabulary_level:
        score += 4
    if profile.common_phrases or profile.banned_phrases:
        score += 4
    return score


def edit_consistency(edits: list[EditMetadata]) -> int:
    """Up to 5 points each for consistent sentence length, emoji, tone and phrase edits."""
    if not edits:
        return 0

    score = 0.0

    deltas = [e.sentence_length_delta for e in edits]
    mean = sum(deltas) / len(deltas)
    std_dev = math.sqrt(sum((d - mean) ** 2 for d in deltas) / len(deltas))
    score += max(0.0, min(5.0, 5 - std_dev / 2))

    net_changes = [e.emoji_changes.net_change for e in edits]
    positive = sum(1 for c in net_changes if c > 0)
    negative = sum(1 for c in net_changes if c < 0)
    score += max(positive, negative) / len(net_changes) * 5

    tone_counts = Counter(e.tone_shift for e in edits if e.has_tone_shift)
    if tone_counts:
        score += max(tone_counts.values()) / sum(tone_counts.values()) * 5

    phrase_counts = Counter(p for e in edits for p in e.phrases_added)
    if phrase_counts:
        repeated = sum(1 for n in phrase_counts.values() if n > 1)
        score += min(5.0, repeated / 3 * 5)

    return round_half_up(score)


class ProfileEvolutionService:
    """Evolution score with a 5 minute cache."""

    def __init__(
        self,
        writer: UserRecordWriter,
        edit_store: EditMetadataService,
        cache: StyleCache,
    ):
        self.writer = writer
        self.edit_store = edit_store
        self.cache = cache

    async def calculate_evolution_score(self, user_id: str) -> int:
        cached = await self.cache.get_evolution_score(user_id)
        if cached is not None:
            return cached

        user = await self.writer.load(user_id)
        profile = user.style_profile if user is not None else None
        if profile is None:
            return 0

        score = 0.0
        if profile.sample_posts:
            score += 20
        score += min(profile.learning_iterations / 10, 1) * 40
        score += profile_completeness(profile)

        recent = await self.edit_store.get_recent_edits(user_id, limit=CONSISTENCY_WINDOW)
        metadata = [c.edit_metadata for c in recent]
        score += edit_consistency([m for m in metadata if m is not None])

        final = max(0, min(100, round_half_up(score)))
        await self.cache.set_evolution_score(user_id, final)

        logger.debug("Calculated evolution score", user_id=user_id, score=final)
        return final
