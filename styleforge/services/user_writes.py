"""
Compare-and-swap writes on user records.

Every write to a user's profile or version history goes through
``UserRecordWriter.run``: load the row, apply a mutation, flush. The flush
is guarded by ``users.version_id``; a concurrent writer makes it fail with
StaleDataError, which is retried from a fresh read.
"""

from typing import Awaitable, Callable, Optional, TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from styleforge.core.config import Settings
from styleforge.core.database import session_scope
from styleforge.core.exceptions import ConcurrentUpdateError
from styleforge.models.user import User

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class UserRecordWriter:
    """Runs read-modify-write cycles on one user row with conflict retry."""

    def __init__(self, settings: Settings, session_factory: async_sessionmaker[AsyncSession]):
        self.settings = settings
        self.session_factory = session_factory

    async def load(self, user_id: str) -> Optional[User]:
        async with session_scope(self.session_factory) as session:
            return await session.get(User, user_id)

    async def write_once(
        self,
        user_id: str,
        mutate: Callable[[User], Awaitable[T]],
        missing: Callable[[], T],
        expected_version: Optional[int] = None,
        attempt: int = 1,
    ) -> T:
        """
        One read-modify-write. ``mutate`` returns the call's result.

        Args:
            user_id: User to write
            mutate: Coroutine applied to the loaded user; may raise to abort
            missing: Result factory when the user does not exist
            expected_version: If set, the loaded row must still carry this token
            attempt: Attempt number, reported on conflict

        Raises:
            ConcurrentUpdateError: The row changed since it was read
        """
        async with session_scope(self.session_factory) as session:
            user = await session.get(User, user_id)
            if user is None:
                return missing()

            token = user.version_id
            if expected_version is not None and token != expected_version:
                raise ConcurrentUpdateError(user_id, expected_version, attempt)

            result = await mutate(user)
            try:
                await session.commit()
            except StaleDataError as e:
                await session.rollback()
                raise ConcurrentUpdateError(user_id, token, attempt) from e
            return result

    async def run(
        self,
        user_id: str,
        mutate: Callable[[User], Awaitable[T]],
        missing: Callable[[], T],
    ) -> T:
        """Like ``write_once`` but retries the whole cycle on conflict."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.profile_update_max_retries),
            wait=wait_exponential(multiplier=self.settings.profile_update_backoff_seconds),
            retry=retry_if_exception_type(ConcurrentUpdateError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                if number > 1:
                    logger.warning("Retrying user write after conflict", user_id=user_id, attempt=number)
                return await self.write_once(user_id, mutate, missing, attempt=number)
