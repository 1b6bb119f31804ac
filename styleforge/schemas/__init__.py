"""Pydantic value types"""

from styleforge.schemas.style import (
    NO_TONE_CHANGE,
    TONE_SHIFT_LABELS,
    AggregatedEditPatterns,
    DeltaMetrics,
    EditMetadata,
    EmojiChanges,
    LearningJobMetadata,
    ManualOverride,
    ManualOverrides,
    PhraseCount,
    ProfileSource,
    ProfileVersion,
    StructureChangeFrequency,
    StructureChanges,
    StructureOverride,
    StructurePreferences,
    StyleDelta,
    StyleProfile,
    ToneMetrics,
    ToneOverride,
    ToneShiftCount,
    TweetPart,
    VersionSource,
    VocabularyChanges,
    VocabularyLevel,
    VoiceType,
    WordSubstitution,
    WritingTraits,
    WritingTraitsOverride,
)

__all__ = [
    "NO_TONE_CHANGE",
    "TONE_SHIFT_LABELS",
    "AggregatedEditPatterns",
    "DeltaMetrics",
    "EditMetadata",
    "EmojiChanges",
    "LearningJobMetadata",
    "ManualOverride",
    "ManualOverrides",
    "PhraseCount",
    "ProfileSource",
    "ProfileVersion",
    "StructureChangeFrequency",
    "StructureChanges",
    "StructureOverride",
    "StructurePreferences",
    "StyleDelta",
    "StyleProfile",
    "ToneMetrics",
    "ToneOverride",
    "ToneShiftCount",
    "TweetPart",
    "VersionSource",
    "VocabularyChanges",
    "VocabularyLevel",
    "VoiceType",
    "WordSubstitution",
    "WritingTraits",
    "WritingTraitsOverride",
]
