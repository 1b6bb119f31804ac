"""
Pytest configuration and fixtures.
"""

import fnmatch
import uuid
from datetime import datetime, timedelta
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from styleforge.container import ServiceContainer
from styleforge.core.config import Settings
from styleforge.core.database import session_scope
from styleforge.core.llm_clients import BaseLLMClient, LLMMessage, LLMResponse
from styleforge.models import Content, ContentFormat, Platform, User
from styleforge.schemas.style import (
    EditMetadata,
    ProfileSource,
    StyleDelta,
    StyleProfile,
    ToneMetrics,
    VoiceType,
)


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` with TTL tracking."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: str) -> None:
        self._check()
        self.store[key] = value
        self.ttls.pop(key, None)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl

    async def delete(self, *keys: str) -> int:
        self._check()
        deleted = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                deleted += 1
            self.ttls.pop(key, None)
        return deleted

    async def scan_iter(self, match: str = "*"):
        self._check()
        for key in list(self.store):
            if fnmatch.fnmatch(key, match):
                yield key

    async def flushdb(self) -> None:
        self.store.clear()
        self.ttls.clear()

    async def aclose(self) -> None:
        pass


class FakeLLM(BaseLLMClient):
    """Returns queued answers in order; exceptions in the queue are raised."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls: list[list[LLMMessage]] = []

    async def generate(self, messages, model=None, temperature=None, max_tokens=None) -> LLMResponse:
        self.calls.append(messages)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, BaseException):
            raise answer
        return LLMResponse(
            content=answer,
            model="fake",
            tokens_used=0,
            prompt_tokens=0,
            completion_tokens=0,
        )


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Test settings on a throwaway sqlite file with no backoff sleeps."""
    return Settings(
        environment="test",
        database_url_override=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        google_api_key="",
        extractor_backoff_base_seconds=0,
        profile_update_backoff_seconds=0,
        learning_rate_limit_seconds=300,
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def container(settings: Settings, fake_redis: FakeRedis) -> AsyncGenerator[ServiceContainer, None]:
    """Started container with tables created."""
    async with ServiceContainer(settings, redis_client=fake_redis, create_tables=True) as c:
        yield c


def make_profile(**overrides) -> StyleProfile:
    data = {
        "voice_type": VoiceType.PROFESSIONAL,
        "tone": ToneMetrics(formality=5, enthusiasm=5, directness=5, humor=5, emotionality=5),
        "profile_source": ProfileSource.MANUAL,
    }
    data.update(overrides)
    return StyleProfile(**data)


def make_delta(**overrides) -> StyleDelta:
    return StyleDelta(**overrides)


async def create_user(
    container: ServiceContainer,
    profile: Optional[StyleProfile] = None,
) -> User:
    user_id = str(uuid.uuid4())
    async with session_scope(container.session_factory) as session:
        user = User(id=user_id, github_id=user_id[:12], username=f"user-{user_id[:6]}")
        user.style_profile = profile
        user.profile_versions = []
        session.add(user)
        await session.commit()
    return user


async def create_content(
    container: ServiceContainer,
    user_id: str,
    generated_text: str = "We are excited to announce our new product launch today.",
    tweets: Optional[list[dict]] = None,
) -> Content:
    async with session_scope(container.session_factory) as session:
        content = Content(
            id=str(uuid.uuid4()),
            user_id=user_id,
            platform=Platform.X.value if tweets else Platform.LINKEDIN.value,
            content_format=ContentFormat.THREAD.value if tweets else ContentFormat.SINGLE.value,
            generated_text=generated_text,
            tweets=tweets,
        )
        session.add(content)
        await session.commit()
    return content


async def create_edited_content(
    container: ServiceContainer,
    user_id: str,
    delta: Optional[StyleDelta] = None,
    edit_timestamp: Optional[datetime] = None,
    learning_processed: bool = False,
) -> Content:
    """Content carrying edit metadata, bypassing extraction."""
    content = await create_content(container, user_id)
    metadata = EditMetadata.from_delta(
        delta or StyleDelta(),
        content.generated_text,
        "We are thrilled to share our launch with you all!",
        edit_timestamp,
    )
    metadata.learning_processed = learning_processed
    return await container.edit_store.store_edit_metadata(content.id, metadata)


def minutes_ago(minutes: int) -> datetime:
    return datetime.utcnow() - timedelta(minutes=minutes)


async def clear_rate_limit(container: ServiceContainer, user_id: str) -> None:
    await container.cache.clear_last_learning_update(user_id)
