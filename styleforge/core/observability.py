"""
Sentry error tracking for the worker.
Initialisation is skipped when no DSN is configured.
"""

from typing import Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from styleforge.core.config import Settings

logger = structlog.get_logger(__name__)

_sentry_initialized = False


def init_sentry(settings: Settings) -> bool:
    """Initialize Sentry error tracking. Returns True when Sentry is active."""
    global _sentry_initialized

    if _sentry_initialized:
        return True
    if not settings.sentry_dsn:
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        integrations=[
            CeleryIntegration(),
            SqlalchemyIntegration(),
            RedisIntegration(),
        ],
        # Don't send PII
        send_default_pii=False,
    )

    _sentry_initialized = True
    logger.info(
        "Sentry initialized",
        environment=settings.sentry_environment,
        sample_rate=settings.sentry_traces_sample_rate,
    )
    return True


def capture_exception(error: Exception, context: Optional[dict] = None) -> None:
    """
    Capture an exception to Sentry with additional context.

    Args:
        error: The exception to capture
        context: Additional context to attach (job id, user id)
    """
    if not _sentry_initialized:
        return

    try:
        with sentry_sdk.new_scope() as scope:
            if context:
                scope.set_context("learning", context)
            sentry_sdk.capture_exception(error)
    except Exception as e:
        logger.error("Failed to capture exception to Sentry", error=str(e))
