"""
Style Delta Extractor.

Computes a StyleDelta between an AI-generated text and the user's edited
version. Most signals are local heuristics; only the tone shift is
classified by Gemini.
"""

import re
from typing import Any, Optional

import pydantic
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from styleforge.core.config import Settings
from styleforge.core.exceptions import (
    ExtractionFailedError,
    TransientExternalError,
    ValidationError,
)
from styleforge.core.llm_clients import BaseLLMClient, LLMMessage
from styleforge.schemas.style import (
    NO_TONE_CHANGE,
    TONE_SHIFT_LABELS,
    DeltaMetrics,
    EmojiChanges,
    StructureChanges,
    StyleDelta,
    VocabularyChanges,
    WordSubstitution,
    dedupe,
)

logger = structlog.get_logger(__name__)

EMOJI_PATTERN = re.compile(
    "[\U0001F600-\U0001F64F]|[\U0001F300-\U0001F5FF]|[\U0001F680-\U0001F6FF]"
    "|[\U0001F1E0-\U0001F1FF]|[\u2600-\u26FF]|[\u2700-\u27BF]"
    "|[\U0001F900-\U0001F9FF]|[\U0001FA70-\U0001FAFF]"
)
SENTENCE_SPLIT = re.compile(r"[.!?]+")
PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
BULLET_PATTERNS = (
    re.compile(r"^\s*[-*•]\s+", re.MULTILINE),
    re.compile(r"^\s*\d+\.\s+", re.MULTILINE),
    re.compile(r"^\s*[a-z]\.\s+", re.MULTILINE),
)

MAX_WORD_SUBSTITUTIONS = 5
MAX_PHRASE_CHANGES = 10
MIN_PHRASE_CHARS = 10
COMPLEXITY_THRESHOLD = 0.5

TONE_SHIFT_SYSTEM_PROMPT = """You are an expert at analyzing tone shifts in text edits. Compare the original and edited versions and classify the tone shift.

Classify the tone shift in ONE of these categories:
- "more casual" - the edited version is more informal, conversational
- "more professional" - the edited version is more formal, business-like
- "more enthusiastic" - the edited version shows more excitement, energy
- "more subdued" - the edited version is calmer, less emotional
- "more direct" - the edited version is more straightforward, less verbose
- "more indirect" - the edited version is more nuanced, diplomatic
- "more humorous" - the edited version adds humor or wit
- "more serious" - the edited version removes humor, becomes more earnest
- "no change" - no significant tone shift detected

Respond with ONLY the category name, nothing else."""


# ============================================================================
# Text heuristics
# ============================================================================

def avg_sentence_length(text: str) -> float:
    """Average words per sentence, splitting on . ! ?"""
    sentences = [s.strip() for s in SENTENCE_SPLIT.split(text or "") if s.strip()]
    if not sentences:
        return 0.0
    return sum(len(s.split()) for s in sentences) / len(sentences)


def count_emojis(text: str) -> int:
    return len(EMOJI_PATTERN.findall(text or ""))


def count_paragraphs(text: str) -> int:
    return len([p for p in PARAGRAPH_SPLIT.split(text or "") if p.strip()])


def has_bullet_points(text: str) -> bool:
    return any(pattern.search(text or "") for pattern in BULLET_PATTERNS)


def extract_words(text: str) -> list[str]:
    words = (re.sub(r"[^a-z0-9]", "", w) for w in (text or "").lower().split())
    return [w for w in words if w]


def extract_phrases(text: str) -> list[str]:
    """All 2-5 word sequences of at least 10 characters, shortest first."""
    words = extract_words(text)
    phrases = []
    for length in range(2, 6):
        for i in range(len(words) - length + 1):
            phrase = " ".join(words[i:i + length])
            if len(phrase) >= MIN_PHRASE_CHARS:
                phrases.append(phrase)
    return phrases


def vocabulary_complexity(text: str) -> float:
    """Average word length."""
    words = extract_words(text)
    if not words:
        return 0.0
    return sum(len(w) for w in words) / len(words)


def parse_tone_shift(response: str) -> str:
    """Map a free-text model answer onto one of the fixed tone labels."""
    cleaned = response.strip().lower()
    for label in TONE_SHIFT_LABELS:
        if label in cleaned:
            return label
    return NO_TONE_CHANGE


# ============================================================================
# Extractor
# ============================================================================

class StyleDeltaExtractor:
    """
    Default extractor behind the ``extract_deltas`` boundary.

    Callers should go through ``extract_with_retry`` so that transient
    failures are retried and input errors are not.
    """

    def __init__(self, settings: Settings, llm: Optional[BaseLLMClient] = None):
        self.settings = settings
        self.llm = llm

    async def extract_deltas(self, original: str, edited: str) -> StyleDelta:
        """Extract the style delta between ``original`` and ``edited``."""
        if not original or not original.strip():
            raise ValidationError("Original text is empty")
        if len(edited.strip()) < self.settings.edited_text_min_chars:
            raise ValidationError(
                f"Edited text must be at least {self.settings.edited_text_min_chars} characters"
            )

        phrases_added, phrases_removed = self._phrase_changes(original, edited)
        tone_shift = await self.classify_tone_shift(original, edited)

        return StyleDelta(
            sentence_length_delta=avg_sentence_length(edited) - avg_sentence_length(original),
            emoji_changes=self._emoji_changes(original, edited),
            structure_changes=self._structure_changes(original, edited),
            tone_shift=tone_shift,
            vocabulary_changes=self._vocabulary_changes(original, edited),
            phrases_added=phrases_added,
            phrases_removed=phrases_removed,
        )

    async def extract_with_retry(self, original: str, edited: str) -> StyleDelta:
        """
        Extract with bounded exponential backoff.

        Transient failures are retried (1s, 2s, 4s between attempts by
        default). ValidationError is raised immediately. When every attempt
        fails, ExtractionFailedError wraps the last underlying error.
        """
        max_attempts = self.settings.extractor_max_attempts
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(
                    multiplier=self.settings.extractor_backoff_base_seconds,
                    max=self.settings.extractor_backoff_max_seconds,
                ),
                retry=retry_if_exception_type((TransientExternalError, ConnectionError, TimeoutError)),
                before_sleep=_log_retry,
            ):
                with attempt:
                    result = await self.extract_deltas(original, edited)
                    return self._validate_result(result)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(
                "Style delta extraction failed",
                attempts=max_attempts,
                error=str(last_error),
            )
            raise ExtractionFailedError(max_attempts, last_error) from last_error

    def calculate_metrics(self, delta: StyleDelta) -> DeltaMetrics:
        """Count total and significant changes in a delta, by category."""
        total = 0
        significant = 0
        categories: list[str] = []

        if abs(delta.sentence_length_delta) > 2:
            total += 1
            significant += 1
            categories.append("sentence_length")

        if delta.emoji_changes.net_change != 0:
            total += 1
            if abs(delta.emoji_changes.net_change) >= 2:
                significant += 1
            categories.append("emoji")

        structure = delta.structure_changes
        if structure.paragraphs_added > 0 or structure.paragraphs_removed > 0:
            total += 1
            if structure.paragraphs_added > 1 or structure.paragraphs_removed > 1:
                significant += 1
            categories.append("structure")

        if structure.bullets_added:
            total += 1
            significant += 1
            categories.append("bullets")

        substitutions = delta.vocabulary_changes.words_substituted
        if substitutions:
            total += 1
            if len(substitutions) >= 3:
                significant += 1
            categories.append("vocabulary")

        if delta.phrases_added or delta.phrases_removed:
            total += 1
            if len(delta.phrases_added) >= 2 or len(delta.phrases_removed) >= 2:
                significant += 1
            categories.append("phrases")

        if delta.has_tone_shift:
            total += 1
            significant += 1
            categories.append("tone")

        return DeltaMetrics(
            total_changes=total,
            significant_changes=significant,
            change_categories=categories,
        )

    async def classify_tone_shift(self, original: str, edited: str) -> str:
        """Ask Gemini for the tone label; transient failures propagate."""
        if self.llm is None:
            return NO_TONE_CHANGE

        max_chars = self.settings.llm_tone_input_max_chars
        response = await self.llm.generate(
            messages=[
                LLMMessage(role="system", content=TONE_SHIFT_SYSTEM_PROMPT),
                LLMMessage(
                    role="user",
                    content=(
                        f"ORIGINAL TEXT:\n{original[:max_chars]}\n\n"
                        f"EDITED TEXT:\n{edited[:max_chars]}"
                    ),
                ),
            ],
            temperature=0.0,
            max_tokens=16,
        )
        return parse_tone_shift(response.content)

    # ------------------------------------------------------------------
    # Signal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _emoji_changes(original: str, edited: str) -> EmojiChanges:
        diff = count_emojis(edited) - count_emojis(original)
        return EmojiChanges.from_counts(added=max(diff, 0), removed=max(-diff, 0))

    @staticmethod
    def _structure_changes(original: str, edited: str) -> StructureChanges:
        paragraph_diff = count_paragraphs(edited) - count_paragraphs(original)
        had_bullets = has_bullet_points(original)
        has_bullets = has_bullet_points(edited)

        formatting = []
        if has_bullets and not had_bullets:
            formatting.append("bullets_added")
        if had_bullets and not has_bullets:
            formatting.append("bullets_removed")

        return StructureChanges(
            paragraphs_added=max(paragraph_diff, 0),
            paragraphs_removed=max(-paragraph_diff, 0),
            bullets_added=has_bullets and not had_bullets,
            formatting_changes=formatting,
        )

    @staticmethod
    def _vocabulary_changes(original: str, edited: str) -> VocabularyChanges:
        original_words = extract_words(original)
        edited_words = extract_words(edited)
        original_set = set(original_words)
        edited_set = set(edited_words)

        removed = [w for w in original_words if w not in edited_set]
        added = [w for w in edited_words if w not in original_set]
        substitutions = [
            WordSubstitution(from_=old, to=new)
            for old, new in list(zip(removed, added))[:MAX_WORD_SUBSTITUTIONS]
        ]

        original_complexity = vocabulary_complexity(original)
        edited_complexity = vocabulary_complexity(edited)
        shift = 0
        if edited_complexity > original_complexity + COMPLEXITY_THRESHOLD:
            shift = 1
        elif edited_complexity < original_complexity - COMPLEXITY_THRESHOLD:
            shift = -1

        return VocabularyChanges(words_substituted=substitutions, complexity_shift=shift)

    @staticmethod
    def _phrase_changes(original: str, edited: str) -> tuple[list[str], list[str]]:
        original_phrases = extract_phrases(original)
        edited_phrases = extract_phrases(edited)
        original_set = set(original_phrases)
        edited_set = set(edited_phrases)

        added = dedupe([p for p in edited_phrases if p not in original_set])
        removed = dedupe([p for p in original_phrases if p not in edited_set])
        return added[:MAX_PHRASE_CHANGES], removed[:MAX_PHRASE_CHANGES]

    @staticmethod
    def _validate_result(result: Any) -> StyleDelta:
        if isinstance(result, StyleDelta):
            return result
        try:
            return StyleDelta.model_validate(result)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Malformed style delta: {e}") from e


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying style delta extraction",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )
