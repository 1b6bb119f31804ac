"""
Pydantic value types for style learning.

StyleDelta is the atomic unit of observed change between a generated text and
the user's edit. EditMetadata wraps a delta with the texts it was computed
from. StyleProfile is the live voice descriptor; ProfileVersion is an
immutable snapshot of one.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

NO_TONE_CHANGE = "no change"

TONE_SHIFT_LABELS = (
    "more casual",
    "more professional",
    "more enthusiastic",
    "more subdued",
    "more direct",
    "more indirect",
    "more humorous",
    "more serious",
    NO_TONE_CHANGE,
)

MAX_PROFILE_PHRASES = 20
MAX_SAMPLE_POSTS = 10


def dedupe(items: list[str]) -> list[str]:
    """Drop repeats, keeping the first occurrence order."""
    return list(dict.fromkeys(items))


class StyleModel(BaseModel):
    """Base model; persisted with ``to_document()``."""

    model_config = ConfigDict(populate_by_name=True)

    def to_document(self, **kwargs: Any) -> dict:
        """Dump to a JSON-safe dict for a JSON column."""
        return self.model_dump(mode="json", by_alias=True, **kwargs)


# ============================================================================
# Enums
# ============================================================================

class VoiceType(str, Enum):
    """Core voice characteristic of a profile."""
    EDUCATIONAL = "educational"
    STORYTELLING = "storytelling"
    OPINIONATED = "opinionated"
    ANALYTICAL = "analytical"
    CASUAL = "casual"
    PROFESSIONAL = "professional"


class VocabularyLevel(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    ADVANCED = "advanced"


class ProfileSource(str, Enum):
    """How the live profile was last produced."""
    MANUAL = "manual"
    FILE = "file"
    FEEDBACK = "feedback"
    ARCHETYPE = "archetype"


class VersionSource(str, Enum):
    """Provenance tag of a profile version snapshot."""
    MANUAL = "manual"
    FEEDBACK = "feedback"
    ARCHETYPE = "archetype"
    ROLLBACK = "rollback"


# ============================================================================
# Style delta
# ============================================================================

class EmojiChanges(StyleModel):
    added: int = Field(0, ge=0)
    removed: int = Field(0, ge=0)
    net_change: int = 0

    @model_validator(mode="after")
    def check_net_change(self) -> "EmojiChanges":
        if self.net_change != self.added - self.removed:
            raise ValueError(
                f"net_change {self.net_change} must equal added - removed "
                f"({self.added} - {self.removed})"
            )
        return self

    @classmethod
    def from_counts(cls, added: int, removed: int) -> "EmojiChanges":
        return cls(added=added, removed=removed, net_change=added - removed)


class StructureChanges(StyleModel):
    paragraphs_added: int = Field(0, ge=0)
    paragraphs_removed: int = Field(0, ge=0)
    bullets_added: bool = False
    formatting_changes: list[str] = Field(default_factory=list)


class WordSubstitution(StyleModel):
    from_: str = Field(..., alias="from")
    to: str


class VocabularyChanges(StyleModel):
    words_substituted: list[WordSubstitution] = Field(default_factory=list)
    complexity_shift: int = Field(0, ge=-1, le=1)


class StyleDelta(StyleModel):
    """Structured diff between an AI-generated text and its human-edited version."""

    sentence_length_delta: float = 0.0
    emoji_changes: EmojiChanges = Field(default_factory=EmojiChanges)
    structure_changes: StructureChanges = Field(default_factory=StructureChanges)
    tone_shift: str = NO_TONE_CHANGE
    vocabulary_changes: VocabularyChanges = Field(default_factory=VocabularyChanges)
    phrases_added: list[str] = Field(default_factory=list)
    phrases_removed: list[str] = Field(default_factory=list)

    @field_validator("phrases_added", "phrases_removed")
    @classmethod
    def unique_phrases(cls, value: list[str]) -> list[str]:
        return dedupe(value)

    @property
    def has_tone_shift(self) -> bool:
        return bool(self.tone_shift) and self.tone_shift != NO_TONE_CHANGE

    def as_delta(self) -> "StyleDelta":
        """Strip any subclass bookkeeping and return a plain delta copy."""
        return StyleDelta.model_validate(
            self.model_dump(include=set(StyleDelta.model_fields))
        )


class EditMetadata(StyleDelta):
    """
    A StyleDelta plus the texts it was computed from.

    Attached 1:1 to a Content record. ``learning_processed`` starts False and
    only flips through an explicit mark-as-processed call.
    """

    original_text: str
    edited_text: str
    original_length: int = Field(..., ge=0)
    edited_length: int = Field(..., ge=0)
    edit_timestamp: datetime
    learning_processed: bool = False

    @model_validator(mode="after")
    def check_lengths(self) -> "EditMetadata":
        if self.original_length != len(self.original_text):
            raise ValueError("original_length must equal len(original_text)")
        if self.edited_length != len(self.edited_text):
            raise ValueError("edited_length must equal len(edited_text)")
        return self

    @classmethod
    def from_delta(
        cls,
        delta: StyleDelta,
        original_text: str,
        edited_text: str,
        edit_timestamp: Optional[datetime] = None,
    ) -> "EditMetadata":
        return cls(
            **delta.model_dump(include=set(StyleDelta.model_fields)),
            original_text=original_text,
            edited_text=edited_text,
            original_length=len(original_text),
            edited_length=len(edited_text),
            edit_timestamp=edit_timestamp or datetime.utcnow(),
            learning_processed=False,
        )


class DeltaMetrics(StyleModel):
    total_changes: int = 0
    significant_changes: int = 0
    change_categories: list[str] = Field(default_factory=list)


class TweetPart(StyleModel):
    """One positioned part of thread content."""
    position: int
    text: str


# ============================================================================
# Style profile
# ============================================================================

class ToneMetrics(StyleModel):
    """Tone on a 1-10 scale per axis; all five axes are always populated."""

    formality: int = Field(..., ge=1, le=10)
    enthusiasm: int = Field(..., ge=1, le=10)
    directness: int = Field(..., ge=1, le=10)
    humor: int = Field(..., ge=1, le=10)
    emotionality: int = Field(..., ge=1, le=10)


class WritingTraits(StyleModel):
    avg_sentence_length: float = Field(15.0, ge=0)
    uses_questions_often: bool = False
    uses_emojis: bool = False
    emoji_frequency: int = Field(0, ge=0, le=5)
    uses_bullet_points: bool = False
    uses_short_paragraphs: bool = True
    uses_hooks: bool = False


class StructurePreferences(StyleModel):
    intro_style: Literal["hook", "story", "problem", "statement"] = "hook"
    body_style: Literal["steps", "narrative", "analysis", "bullets"] = "narrative"
    ending_style: Literal["cta", "reflection", "summary", "question"] = "reflection"


class StyleProfile(StyleModel):
    """Synthesized description of a user's writing voice."""

    voice_type: VoiceType
    tone: ToneMetrics
    writing_traits: WritingTraits = Field(default_factory=WritingTraits)
    structure_preferences: StructurePreferences = Field(default_factory=StructurePreferences)
    vocabulary_level: VocabularyLevel = VocabularyLevel.MEDIUM
    common_phrases: list[str] = Field(default_factory=list)
    banned_phrases: list[str] = Field(default_factory=list)
    sample_posts: list[str] = Field(default_factory=list)
    learning_iterations: int = Field(0, ge=0)
    last_updated: datetime = Field(default_factory=datetime.utcnow)
    profile_source: ProfileSource
    archetype_base: Optional[str] = None

    @field_validator("common_phrases", "banned_phrases")
    @classmethod
    def bound_phrases(cls, value: list[str]) -> list[str]:
        # Newest phrases are appended last; keep those
        return dedupe(value)[-MAX_PROFILE_PHRASES:]

    @field_validator("sample_posts")
    @classmethod
    def bound_samples(cls, value: list[str]) -> list[str]:
        return value[-MAX_SAMPLE_POSTS:]

    def clone(self) -> "StyleProfile":
        """Owned structural copy; datetimes stay datetimes."""
        return self.model_copy(deep=True)


class ProfileVersion(StyleModel):
    """Immutable timestamped snapshot of a StyleProfile."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    profile: StyleProfile
    timestamp: datetime
    source: VersionSource
    learning_iterations: int = Field(..., ge=0)

    @classmethod
    def capture(cls, profile: StyleProfile, source: VersionSource) -> "ProfileVersion":
        return cls(
            profile=profile.clone(),
            timestamp=datetime.utcnow(),
            source=VersionSource(source),
            learning_iterations=profile.learning_iterations,
        )


# ============================================================================
# Manual overrides (protected from feedback learning)
# ============================================================================

class ToneOverride(StyleModel):
    kind: Literal["tone"] = "tone"
    formality: Optional[int] = Field(None, ge=1, le=10)
    enthusiasm: Optional[int] = Field(None, ge=1, le=10)
    directness: Optional[int] = Field(None, ge=1, le=10)
    humor: Optional[int] = Field(None, ge=1, le=10)
    emotionality: Optional[int] = Field(None, ge=1, le=10)


class WritingTraitsOverride(StyleModel):
    kind: Literal["writing_traits"] = "writing_traits"
    avg_sentence_length: Optional[float] = Field(None, ge=0)
    uses_questions_often: Optional[bool] = None
    uses_emojis: Optional[bool] = None
    emoji_frequency: Optional[int] = Field(None, ge=0, le=5)
    uses_bullet_points: Optional[bool] = None
    uses_short_paragraphs: Optional[bool] = None
    uses_hooks: Optional[bool] = None


class StructureOverride(StyleModel):
    kind: Literal["structure"] = "structure"
    intro_style: Optional[Literal["hook", "story", "problem", "statement"]] = None
    body_style: Optional[Literal["steps", "narrative", "analysis", "bullets"]] = None
    ending_style: Optional[Literal["cta", "reflection", "summary", "question"]] = None


ManualOverride = Annotated[
    Union[ToneOverride, WritingTraitsOverride, StructureOverride],
    Field(discriminator="kind"),
]

_OVERRIDE_TARGETS = {
    "tone": "tone",
    "writing_traits": "writing_traits",
    "structure": "structure_preferences",
}


class ManualOverrides(StyleModel):
    """User-pinned profile values that feedback learning must not touch."""

    overrides: list[ManualOverride] = Field(default_factory=list)

    def _fields_for(self, kind: str) -> dict[str, Any]:
        pinned: dict[str, Any] = {}
        for override in self.overrides:
            if override.kind == kind:
                pinned.update(override.model_dump(exclude={"kind"}, exclude_none=True))
        return pinned

    def protects(self, kind: str, field: Optional[str] = None) -> bool:
        """True if ``field`` (or any field when None) of ``kind`` is pinned."""
        pinned = self._fields_for(kind)
        if field is None:
            return bool(pinned)
        return field in pinned

    def apply_to(self, profile: StyleProfile) -> StyleProfile:
        """Return a copy of ``profile`` with pinned values written in."""
        data = profile.model_dump()
        for kind, target in _OVERRIDE_TARGETS.items():
            data[target].update(self._fields_for(kind))
        return StyleProfile.model_validate(data)


# ============================================================================
# Aggregation results
# ============================================================================

class ToneShiftCount(StyleModel):
    shift: str
    count: int


class PhraseCount(StyleModel):
    phrase: str
    count: int


class StructureChangeFrequency(StyleModel):
    paragraphs_added: int = 0
    paragraphs_removed: int = 0
    bullets_added: int = 0


class AggregatedEditPatterns(StyleModel):
    total_edits: int = 0
    avg_sentence_length_delta: float = 0.0
    total_emoji_changes: EmojiChanges = Field(default_factory=EmojiChanges)
    common_tone_shifts: list[ToneShiftCount] = Field(default_factory=list)
    common_phrases_added: list[PhraseCount] = Field(default_factory=list)
    common_phrases_removed: list[PhraseCount] = Field(default_factory=list)
    structure_change_frequency: StructureChangeFrequency = Field(
        default_factory=StructureChangeFrequency
    )


class LearningJobMetadata(StyleModel):
    is_thread: bool = False
    content_format: Optional[str] = None
    tweet_count: Optional[int] = None
