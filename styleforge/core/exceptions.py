"""
Error taxonomy for the style learning engine.

Validation and not-found errors are terminal. Transient external errors are
retried by the caller with bounded exponential backoff. Storage errors are not
defined here: SQLAlchemy exceptions propagate unchanged.
"""

from typing import Optional


class StyleForgeError(Exception):
    """Base exception for style learning errors."""
    pass


class ValidationError(StyleForgeError):
    """Raised for invalid input (bad version index, short text, malformed delta)."""
    pass


class NotFoundError(StyleForgeError):
    """Raised when a content, user or job id does not resolve."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class TransientExternalError(StyleForgeError):
    """Raised when an external call (LLM, network) fails in a retryable way."""
    pass


class ExtractionFailedError(TransientExternalError):
    """Raised when style delta extraction keeps failing after all retries."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        message = str(last_error) if last_error else "unknown error"
        super().__init__(
            f"Style delta extraction failed after {attempts} attempts: {message}"
        )


class StorageError(StyleForgeError):
    """Reserved for store failures outside SQLAlchemy; ORM errors propagate as-is."""
    pass


class ConcurrentUpdateError(StyleForgeError):
    """Raised when a user record changed between read and compare-and-swap write.

    Another writer updated the profile or its version history after we read it.
    """

    def __init__(self, user_id: str, expected_version: int, attempts: int = 1):
        self.user_id = user_id
        self.expected_version = expected_version
        self.attempts = attempts
        super().__init__(
            f"Concurrent update on user {user_id}: "
            f"expected version {expected_version} (after {attempts} attempts)"
        )


class CacheError(StyleForgeError):
    """Raised when a mandatory cache invalidation fails."""
    pass
