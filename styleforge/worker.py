"""
Celery worker configuration for feedback learning tasks.

Each task builds its own ServiceContainer, runs one coroutine with
``asyncio.run`` and closes the container again. State shared between
tasks, such as the learning rate limit, lives in Redis or the database.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog
from celery import Celery

from styleforge.container import ServiceContainer
from styleforge.core.config import get_settings
from styleforge.core.exceptions import NotFoundError, ValidationError
from styleforge.core.logging import configure_logging
from styleforge.core.observability import capture_exception, init_sentry

logger = structlog.get_logger(__name__)

T = TypeVar("T")

settings = get_settings()

TASK_TIME_LIMIT_SECONDS = 300
PENDING_JOB_GRACE_SECONDS = 300

# Create Celery app
celery_app = Celery(
    "styleforge_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=TASK_TIME_LIMIT_SECONDS,  # 5 minutes max per task
    task_soft_time_limit=240,  # Soft limit for graceful shutdown
    task_acks_late=True,  # Redeliver jobs whose worker died mid-task
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)

# Task routing
celery_app.conf.task_routes = {
    "styleforge.tasks.process_learning_job": {"queue": "learning"},
    "styleforge.tasks.prune_edit_metadata": {"queue": "maintenance"},
    "styleforge.tasks.prune_all_edit_metadata": {"queue": "maintenance"},
    "styleforge.tasks.requeue_pending_jobs": {"queue": "maintenance"},
}

# Scheduled tasks (Celery Beat)
celery_app.conf.beat_schedule = {
    "prune-edit-metadata": {
        "task": "styleforge.tasks.prune_all_edit_metadata",
        "schedule": settings.prune_schedule_seconds,
    },
    "requeue-pending-learning-jobs": {
        "task": "styleforge.tasks.requeue_pending_jobs",
        "schedule": 600.0,  # Every 10 minutes
    },
}


def dispatch_learning_job(job_id: str, priority: int = 0) -> None:
    """Send a learning job id to the queue."""
    process_learning_job.apply_async(args=[job_id], priority=priority)


def run_with_container(work: Callable[[ServiceContainer], Awaitable[T]]) -> T:
    """Run ``work`` against a freshly started container."""

    async def _run() -> T:
        container = ServiceContainer(get_settings(), dispatcher=dispatch_learning_job)
        await container.start()
        try:
            return await work(container)
        finally:
            await container.close()

    return asyncio.run(_run())


@celery_app.on_after_configure.connect
def _setup(sender, **kwargs) -> None:
    configure_logging(settings)
    init_sentry(settings)


@celery_app.task(
    name="styleforge.tasks.process_learning_job",
    bind=True,
    max_retries=settings.learning_queue_max_attempts - 1,
)
def process_learning_job(self, job_id: str) -> dict:
    """Process one learning job, retrying with 1s/2s/4s backoff."""

    async def _work(container: ServiceContainer) -> dict:
        job = await container.learning.process_learning_job(job_id)
        return job.to_dict()

    try:
        return run_with_container(_work)
    except (NotFoundError, ValidationError) as e:
        # Retrying will not help
        logger.error("Learning job rejected", job_id=job_id, error=str(e))
        capture_exception(e, {"job_id": job_id})
        raise
    except Exception as e:
        capture_exception(e, {"job_id": job_id, "attempt": self.request.retries + 1})
        raise self.retry(exc=e, countdown=2 ** self.request.retries)


@celery_app.task(name="styleforge.tasks.prune_edit_metadata")
def prune_edit_metadata(user_id: str) -> int:
    """Prune one user's edit metadata down to the cap."""
    return run_with_container(lambda c: c.edit_store.prune_old_edit_metadata(user_id))


@celery_app.task(name="styleforge.tasks.prune_all_edit_metadata")
def prune_all_edit_metadata() -> int:
    """Prune every user that is over the edit metadata cap."""

    async def _work(container: ServiceContainer) -> int:
        pruned = 0
        for user_id in await container.edit_store.find_users_over_cap():
            pruned += await container.edit_store.prune_old_edit_metadata(user_id)
        logger.info("Periodic edit metadata prune finished", pruned=pruned)
        return pruned

    return run_with_container(_work)


@celery_app.task(name="styleforge.tasks.requeue_pending_jobs")
def requeue_pending_jobs() -> int:
    """Re-dispatch learning jobs still pending, or stuck in processing past the hard time limit."""
    return run_with_container(
        lambda c: c.learning.requeue_pending_jobs(
            PENDING_JOB_GRACE_SECONDS, stuck_after_seconds=TASK_TIME_LIMIT_SECONDS
        )
    )
