"""
Redis cache for style profiles, evolution scores, archetype lists and
snapshot analysis results. Also holds the per-user learning rate-limit
marker, which every worker process shares.
"""

import json
from datetime import datetime
from typing import Any, Optional

import redis.asyncio as redis
import structlog
from pydantic import BaseModel
from redis.exceptions import RedisError

from styleforge.core.config import Settings
from styleforge.core.exceptions import CacheError
from styleforge.schemas.style import StyleProfile

logger = structlog.get_logger(__name__)


class CacheMetrics(BaseModel):
    """Hit/miss counters since the last reset."""
    hits: int
    misses: int
    hit_rate: float


class StyleCache:
    """
    Redis cache manager with typed key patterns.

    Key Patterns:
    - profile:{user_id} - Live style profile (TTL: 1 hour)
    - evolution:{user_id} - Profile evolution score (TTL: 5 minutes)
    - archetypes:list - Voice archetype list (TTL: 24 hours)
    - snapshot_analysis:{snapshot_id} - Snapshot analysis result (TTL: 24 hours, per-call override)
    - learning_rate_limit:{user_id} - Time of the last feedback update (TTL: rate limit window)

    Reads and writes degrade to a miss / no-op when Redis is unavailable.
    Invalidation does not: a failed delete raises CacheError, since a stale
    entry would otherwise outlive the write it belongs to.
    """

    PROFILE_PREFIX = "profile:"
    EVOLUTION_SCORE_PREFIX = "evolution:"
    ARCHETYPE_LIST_KEY = "archetypes:list"
    SNAPSHOT_ANALYSIS_PREFIX = "snapshot_analysis:"
    LEARNING_RATE_LIMIT_PREFIX = "learning_rate_limit:"

    def __init__(self, settings: Settings, client: Optional[redis.Redis] = None):
        self.settings = settings
        self._client: Optional[redis.Redis] = client
        self._hits = 0
        self._misses = 0

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self._client is None:
            self._client = redis.from_url(
                str(self.settings.redis_url),
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis cache connected")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Redis cache disconnected")

    @property
    def client(self) -> redis.Redis:
        """Get Redis client, raising if not connected."""
        if self._client is None:
            raise RuntimeError("Redis not connected. Call connect() first.")
        return self._client

    # Generic Cache Operations
    async def get(self, key: str) -> Optional[Any]:
        """Get a cached value, counting the hit or miss."""
        try:
            data = await self.client.get(key)
        except RedisError as e:
            self._misses += 1
            logger.warning("Cache read failed", key=key, error=str(e))
            return None

        if data is None:
            self._misses += 1
            logger.debug("Cache miss", key=key)
            return None

        self._hits += 1
        logger.debug("Cache hit", key=key)
        return json.loads(data)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set a cached value; ttl in seconds."""
        serialized = json.dumps(value)
        try:
            if ttl:
                await self.client.setex(key, ttl, serialized)
            else:
                await self.client.set(key, serialized)
        except RedisError as e:
            logger.warning("Cache write failed", key=key, error=str(e))

    async def invalidate(self, key: str) -> None:
        """Delete a single key."""
        try:
            await self.client.delete(key)
        except RedisError as e:
            raise CacheError(f"Failed to invalidate {key}: {e}") from e
        logger.debug("Cache invalidated", key=key)

    async def invalidate_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; returns the number deleted."""
        try:
            keys = [key async for key in self.client.scan_iter(match=f"{prefix}*")]
            if keys:
                await self.client.delete(*keys)
        except RedisError as e:
            raise CacheError(f"Failed to invalidate prefix {prefix}: {e}") from e
        logger.debug("Cache prefix invalidated", prefix=prefix, deleted=len(keys))
        return len(keys)

    # Style Profile Cache
    async def get_style_profile(self, user_id: str) -> Optional[StyleProfile]:
        data = await self.get(f"{self.PROFILE_PREFIX}{user_id}")
        return StyleProfile.model_validate(data) if data else None

    async def set_style_profile(self, user_id: str, profile: StyleProfile) -> None:
        """Store style profile with 1 hour TTL."""
        await self.set(
            f"{self.PROFILE_PREFIX}{user_id}",
            profile.to_document(),
            ttl=self.settings.cache_profile_ttl,
        )

    async def invalidate_style_profile(self, user_id: str) -> None:
        await self.invalidate(f"{self.PROFILE_PREFIX}{user_id}")

    # Evolution Score Cache
    async def get_evolution_score(self, user_id: str) -> Optional[int]:
        data = await self.get(f"{self.EVOLUTION_SCORE_PREFIX}{user_id}")
        return int(data) if data is not None else None

    async def set_evolution_score(self, user_id: str, score: int) -> None:
        """Store evolution score with 5 minute TTL."""
        await self.set(
            f"{self.EVOLUTION_SCORE_PREFIX}{user_id}",
            score,
            ttl=self.settings.cache_evolution_score_ttl,
        )

    async def invalidate_evolution_score(self, user_id: str) -> None:
        await self.invalidate(f"{self.EVOLUTION_SCORE_PREFIX}{user_id}")

    async def invalidate_user(self, user_id: str) -> None:
        """Drop everything derived from a user's profile."""
        await self.invalidate_style_profile(user_id)
        await self.invalidate_evolution_score(user_id)

    # Archetype List Cache
    async def get_archetype_list(self) -> Optional[list[dict[str, Any]]]:
        return await self.get(self.ARCHETYPE_LIST_KEY)

    async def set_archetype_list(self, archetypes: list[dict[str, Any]]) -> None:
        """Store archetype list with 24 hour TTL (rarely changes)."""
        await self.set(
            self.ARCHETYPE_LIST_KEY,
            archetypes,
            ttl=self.settings.cache_archetype_list_ttl,
        )

    async def invalidate_archetype_list(self) -> None:
        await self.invalidate(self.ARCHETYPE_LIST_KEY)

    # Snapshot Analysis Cache
    async def get_snapshot_analysis(self, snapshot_id: str) -> Optional[dict[str, Any]]:
        return await self.get(f"{self.SNAPSHOT_ANALYSIS_PREFIX}{snapshot_id}")

    async def set_snapshot_analysis(
        self, snapshot_id: str, analysis: dict[str, Any], ttl: Optional[int] = None
    ) -> None:
        """Store snapshot analysis; TTL defaults to 24 hours."""
        await self.set(
            f"{self.SNAPSHOT_ANALYSIS_PREFIX}{snapshot_id}",
            analysis,
            ttl=ttl or self.settings.cache_snapshot_analysis_ttl,
        )

    async def invalidate_snapshot_analysis(self, snapshot_id: str) -> None:
        await self.invalidate(f"{self.SNAPSHOT_ANALYSIS_PREFIX}{snapshot_id}")

    # Learning Rate Limit
    async def get_last_learning_update(self, user_id: str) -> Optional[str]:
        """ISO time of the user's last feedback update, if inside the window."""
        return await self.get(f"{self.LEARNING_RATE_LIMIT_PREFIX}{user_id}")

    async def set_last_learning_update(self, user_id: str, updated_at: datetime) -> None:
        """Mark a feedback update; the key expires when the window closes."""
        await self.set(
            f"{self.LEARNING_RATE_LIMIT_PREFIX}{user_id}",
            updated_at.isoformat(),
            ttl=self.settings.learning_rate_limit_seconds,
        )

    async def clear_last_learning_update(self, user_id: str) -> None:
        await self.invalidate(f"{self.LEARNING_RATE_LIMIT_PREFIX}{user_id}")

    # Metrics
    def get_metrics(self) -> CacheMetrics:
        total = self._hits + self._misses
        hit_rate = self._hits / total if total else 0.0
        return CacheMetrics(hits=self._hits, misses=self._misses, hit_rate=round(hit_rate, 2))

    def reset_metrics(self) -> None:
        self._hits = 0
        self._misses = 0

    async def clear_all(self) -> None:
        """Flush the cache database (tests and maintenance only)."""
        await self.client.flushdb()
        logger.info("Cache cleared")
