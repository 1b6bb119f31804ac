"""Core infrastructure modules"""

from styleforge.core.cache import StyleCache
from styleforge.core.config import Settings, get_settings, settings
from styleforge.core.database import Base, create_engine, create_session_factory
from styleforge.core.llm_clients import BaseLLMClient, GeminiClient

__all__ = [
    "settings",
    "Settings",
    "get_settings",
    "Base",
    "create_engine",
    "create_session_factory",
    "StyleCache",
    "BaseLLMClient",
    "GeminiClient",
]
