"""
Celery worker configuration tests.
"""

from styleforge import worker
from styleforge.container import ServiceContainer
from styleforge.worker import celery_app, dispatch_learning_job, process_learning_job
from tests.conftest import create_content, create_user, make_profile

EDITED = "We are thrilled to share our launch with you all. Check out the demo!"


def test_task_routes():
    routes = celery_app.conf.task_routes

    assert routes["styleforge.tasks.process_learning_job"] == {"queue": "learning"}
    assert routes["styleforge.tasks.prune_all_edit_metadata"] == {"queue": "maintenance"}


def test_beat_schedule():
    schedule = celery_app.conf.beat_schedule

    assert schedule["prune-edit-metadata"]["task"] == "styleforge.tasks.prune_all_edit_metadata"
    assert "requeue-pending-learning-jobs" in schedule


def test_learning_task_retry_budget():
    assert process_learning_job.max_retries == 2


def test_jobs_redelivered_when_worker_dies():
    """Test tasks are acknowledged only after they finish."""
    assert celery_app.conf.task_acks_late is True
    assert celery_app.conf.task_reject_on_worker_lost is True
    assert celery_app.conf.task_time_limit == worker.TASK_TIME_LIMIT_SECONDS


def test_dispatch_sends_job_id(monkeypatch):
    sent = []
    monkeypatch.setattr(
        process_learning_job, "apply_async", lambda args, priority: sent.append((args, priority))
    )

    dispatch_learning_job("job-1", priority=2)

    assert sent == [(["job-1"], 2)]


def test_rate_limit_holds_across_worker_tasks(monkeypatch, settings, fake_redis):
    """Test two jobs for one user in separate tasks apply a single update."""

    def build(_settings, dispatcher=None):
        return ServiceContainer(settings, redis_client=fake_redis, create_tables=True)

    monkeypatch.setattr(worker, "ServiceContainer", build)

    async def seed(container):
        user = await create_user(container, make_profile())
        jobs = []
        for _ in range(2):
            content = await create_content(container, user.id)
            jobs.append((await container.learning.record_edit(content.id, EDITED)).id)
        return user.id, jobs

    user_id, job_ids = worker.run_with_container(seed)
    for job_id in job_ids:
        worker.run_with_container(lambda c, j=job_id: c.learning.process_learning_job(j))

    profile = worker.run_with_container(lambda c: c.profiles.get_style_profile(user_id))
    assert profile.learning_iterations == 1
