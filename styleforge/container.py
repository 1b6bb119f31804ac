"""
Service container.

Builds every service once per process with explicit dependencies:

    container = ServiceContainer(settings)
    await container.start()
    ...
    await container.close()
"""

from typing import Optional

import redis.asyncio as redis
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from styleforge.core.cache import StyleCache
from styleforge.core.config import Settings
from styleforge.core.database import close_db, create_engine, create_session_factory, init_db
from styleforge.core.llm_clients import BaseLLMClient, GeminiClient
from styleforge.services.edit_metadata_service import EditMetadataService
from styleforge.services.feedback_learning_engine import FeedbackLearningEngine, JobDispatcher
from styleforge.services.profile_evolution_service import ProfileEvolutionService
from styleforge.services.profile_versioning_service import ProfileVersioningService
from styleforge.services.style_delta_extractor import StyleDeltaExtractor
from styleforge.services.style_profile_service import StyleProfileService
from styleforge.services.user_writes import UserRecordWriter

logger = structlog.get_logger(__name__)


class ServiceContainer:
    """
    Owns the engine, the Redis connection and the services built on them.

    Collaborators can be passed in (tests pass a sqlite engine, a fake Redis
    client and a stub extractor); anything not passed is built from settings.
    """

    def __init__(
        self,
        settings: Settings,
        engine: Optional[AsyncEngine] = None,
        redis_client: Optional[redis.Redis] = None,
        llm: Optional[BaseLLMClient] = None,
        extractor: Optional[StyleDeltaExtractor] = None,
        dispatcher: Optional[JobDispatcher] = None,
        create_tables: bool = False,
    ):
        self.settings = settings
        self.create_tables = create_tables
        self.engine: AsyncEngine = engine or create_engine(settings)
        self.session_factory: async_sessionmaker[AsyncSession] = create_session_factory(self.engine)
        self.cache = StyleCache(settings, client=redis_client)

        if extractor is None:
            if llm is None and settings.google_api_key:
                llm = GeminiClient(settings)
            extractor = StyleDeltaExtractor(settings, llm=llm)
        self.extractor = extractor

        self.writer = UserRecordWriter(settings, self.session_factory)
        self.edit_store = EditMetadataService(settings, self.session_factory, self.extractor)
        self.versioning = ProfileVersioningService(settings, self.writer, self.cache)
        self.profiles = StyleProfileService(settings, self.writer, self.versioning, self.cache)
        self.evolution = ProfileEvolutionService(self.writer, self.edit_store, self.cache)
        self.learning = FeedbackLearningEngine(
            settings,
            self.session_factory,
            self.extractor,
            self.edit_store,
            self.profiles,
            self.cache,
            dispatcher=dispatcher,
        )
        self._started = False

    async def start(self) -> "ServiceContainer":
        if self._started:
            return self
        await self.cache.connect()
        if self.create_tables:
            await init_db(self.engine)
        self._started = True
        logger.info("Service container started", environment=self.settings.environment)
        return self

    async def close(self) -> None:
        if not self._started:
            return
        await self.cache.disconnect()
        await close_db(self.engine)
        self._started = False
        logger.info("Service container closed")

    async def __aenter__(self) -> "ServiceContainer":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
