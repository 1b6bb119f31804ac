"""
Services layer for style learning.
Contains the edit metadata store, profile versioning, feedback learning and
evolution scoring.
"""

from styleforge.services.edit_metadata_service import EditMetadataService
from styleforge.services.feedback_learning_engine import FeedbackLearningEngine
from styleforge.services.profile_evolution_service import ProfileEvolutionService
from styleforge.services.profile_versioning_service import ProfileVersioningService
from styleforge.services.style_delta_extractor import StyleDeltaExtractor
from styleforge.services.style_profile_service import ProfileUpdateHandle, StyleProfileService
from styleforge.services.user_writes import UserRecordWriter

__all__ = [
    "EditMetadataService",
    "FeedbackLearningEngine",
    "ProfileEvolutionService",
    "ProfileVersioningService",
    "ProfileUpdateHandle",
    "StyleDeltaExtractor",
    "StyleProfileService",
    "UserRecordWriter",
]
