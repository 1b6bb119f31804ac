"""
Feedback learning engine tests.
"""

from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy import update

from styleforge.container import ServiceContainer
from styleforge.core.database import session_scope
from styleforge.core.exceptions import ValidationError
from styleforge.models import LearningJob, LearningJobStatus
from styleforge.schemas.style import (
    EditMetadata,
    EmojiChanges,
    ManualOverrides,
    StyleDelta,
    ToneOverride,
    TweetPart,
    WritingTraitsOverride,
)
from styleforge.services.feedback_learning_engine import (
    DetectedPatterns,
    EmojiPattern,
    adjust_tone,
    recency_weights,
    weighted_average,
)
from tests.conftest import (
    clear_rate_limit,
    create_content,
    create_edited_content,
    create_user,
    make_profile,
)

EDITED = "We are thrilled to share our launch with you all. Check out the demo!"


def metadata(**delta) -> EditMetadata:
    return EditMetadata.from_delta(StyleDelta(**delta), "original text", "edited text")


@pytest_asyncio.fixture
async def dispatched(container) -> list:
    calls = []
    container.learning.dispatcher = lambda job_id, priority: calls.append((job_id, priority))
    return calls


@pytest.mark.asyncio
async def test_record_edit_queues_job(container, dispatched):
    """Test an edit stores metadata and queues a pending job."""
    user = await create_user(container, make_profile())
    content = await create_content(container, user.id)

    job = await container.learning.record_edit(content.id, EDITED)

    assert job.status == LearningJobStatus.PENDING.value
    assert job.attempts == 0
    assert job.extra_metadata == {"is_thread": False, "content_format": "single"}
    assert dispatched == [(job.id, 0)]

    edits = await container.edit_store.get_recent_edits(user.id)
    assert [c.id for c in edits] == [content.id]
    assert edits[0].edited_text == EDITED
    assert edits[0].edit_metadata.learning_processed is False


@pytest.mark.asyncio
async def test_record_edit_rejects_threads(container):
    user = await create_user(container)
    content = await create_content(
        container, user.id, tweets=[{"position": 1, "text": "A thread part that is long enough."}]
    )

    with pytest.raises(ValidationError):
        await container.learning.record_edit(content.id, EDITED)


@pytest.mark.asyncio
async def test_record_thread_edit(container, dispatched):
    """Test a thread edit records thread details on the job."""
    user = await create_user(container)
    tweets = [
        {"position": 1, "text": "We shipped a new release today with many improvements."},
        {"position": 2, "text": "Thanks to everyone who sent feedback on the beta."},
    ]
    content = await create_content(container, user.id, tweets=tweets)

    job = await container.learning.record_thread_edit(
        content.id, [TweetPart(position=2, text="Huge thanks to all of you who tried the beta!")]
    )

    assert job.extra_metadata == {"is_thread": True, "content_format": "thread", "tweet_count": 2}
    assert len(dispatched) == 1


@pytest.mark.asyncio
async def test_dispatch_failure_keeps_job(container):
    """Test a failing dispatcher leaves the job pending."""
    user = await create_user(container)
    content = await create_content(container, user.id)

    def broken(job_id, priority):
        raise ConnectionError("broker down")

    container.learning.dispatcher = broken

    job = await container.learning.record_edit(content.id, EDITED)

    assert job.status == LearningJobStatus.PENDING.value


@pytest.mark.asyncio
async def test_process_learning_job(container):
    """Test a job runs the feedback update and completes."""
    user = await create_user(container, make_profile())
    for i in range(2):
        await create_edited_content(
            container, user.id, delta=StyleDelta(sentence_length_delta=-6), edit_timestamp=datetime(2026, 1, 1, 0, i)
        )
    content = await create_content(container, user.id)
    job = await container.learning.record_edit(content.id, EDITED)

    done = await container.learning.process_learning_job(job.id)

    assert done.status == LearningJobStatus.COMPLETED.value
    assert done.attempts == 1
    assert done.error is None
    assert done.style_delta is not None
    assert "original_text" not in done.style_delta

    profile = await container.profiles.get_style_profile(user.id)
    assert profile.learning_iterations == 1
    assert await container.edit_store.get_unprocessed_edits(user.id) == []

    history = await container.versioning.get_version_history(user.id)
    assert history[-1].source.value == "feedback"


@pytest.mark.asyncio
async def test_completed_job_is_not_reprocessed(container):
    """Test a redelivered completed job is a no-op."""
    user = await create_user(container, make_profile())
    content = await create_content(container, user.id)
    job = await container.learning.record_edit(content.id, EDITED)
    await container.learning.process_learning_job(job.id)

    again = await container.learning.process_learning_job(job.id)

    assert again.status == LearningJobStatus.COMPLETED.value
    assert again.attempts == 1


@pytest.mark.asyncio
async def test_failed_job_records_error(container):
    """Test a job for content without edit metadata fails and keeps the error."""
    user = await create_user(container, make_profile())
    content = await create_content(container, user.id)
    job = await container.learning.queue_learning_job(content.id, user.id)

    with pytest.raises(ValidationError):
        await container.learning.process_learning_job(job.id)

    async with session_scope(container.session_factory) as session:
        failed = await session.get(LearningJob, job.id)
    assert failed.status == LearningJobStatus.FAILED.value
    assert "no edit metadata" in failed.error
    assert failed.processing_completed is not None


@pytest.mark.asyncio
async def test_update_rate_limited(container):
    """Test a second update inside the rate-limit window is skipped."""
    user = await create_user(container, make_profile())
    await create_edited_content(container, user.id)

    first = await container.learning.update_profile_from_deltas(user.id)
    late = await create_edited_content(container, user.id)
    second = await container.learning.update_profile_from_deltas(user.id)

    assert first.learning_iterations == 1
    assert second is None
    unprocessed = await container.edit_store.get_unprocessed_edits(user.id)
    assert [c.id for c in unprocessed] == [late.id]

    await clear_rate_limit(container, user.id)
    third = await container.learning.update_profile_from_deltas(user.id)
    assert third.learning_iterations == 2


@pytest.mark.asyncio
async def test_update_without_profile(container):
    """Test learning is skipped for users without a profile."""
    user = await create_user(container)
    await create_edited_content(container, user.id)

    assert await container.learning.update_profile_from_deltas(user.id) is None


@pytest.mark.asyncio
async def test_requeue_pending_jobs(container, dispatched):
    """Test stale pending jobs are dispatched again."""
    user = await create_user(container)
    content = await create_content(container, user.id)
    job = await container.learning.queue_learning_job(content.id, user.id, priority=3)
    dispatched.clear()

    async with session_scope(container.session_factory) as session:
        await session.execute(
            update(LearningJob).where(LearningJob.id == job.id).values(created_at=datetime(2000, 1, 1))
        )
        await session.commit()

    assert await container.learning.requeue_pending_jobs(300) == 1
    assert dispatched == [(job.id, 3)]


@pytest.mark.asyncio
async def test_lazy_prune_cadence(container, settings, monkeypatch):
    """Test pruning runs once per configured number of edits."""
    calls = []

    async def fake_prune(user_id):
        calls.append(user_id)
        return 0

    monkeypatch.setattr(container.edit_store, "prune_old_edit_metadata", fake_prune)

    for _ in range(settings.prune_every_n_edits * 2 + 1):
        await container.learning._maybe_prune("u1")

    assert calls == ["u1", "u1"]


@pytest.mark.asyncio
async def test_detect_patterns(container):
    """Test patterns need enough supporting edits."""
    edits = [
        metadata(
            sentence_length_delta=-6,
            emoji_changes=EmojiChanges.from_counts(2, 0),
            tone_shift="more casual",
            phrases_added=["check out the demo"],
            phrases_removed=["we are pleased to"],
        ),
        metadata(
            sentence_length_delta=-4,
            emoji_changes=EmojiChanges.from_counts(1, 0),
            tone_shift="more casual",
            phrases_added=["check out the demo"],
            phrases_removed=["we are pleased to"],
        ),
        metadata(
            sentence_length_delta=-5,
            emoji_changes=EmojiChanges.from_counts(1, 0),
            tone_shift="more casual",
            phrases_added=["check out the demo"],
        ),
    ]

    patterns = container.learning.detect_patterns(edits)

    assert patterns.sentence_length_pattern < -2
    assert patterns.emoji_pattern == EmojiPattern(should_use=True, frequency=2)
    assert patterns.cta_pattern is True
    assert patterns.banned_phrases == ["we are pleased to"]
    assert patterns.common_phrases == ["check out the demo"]
    assert patterns.tone_pattern == "more casual"


@pytest.mark.asyncio
async def test_detect_patterns_too_few_edits(container):
    edits = [metadata(sentence_length_delta=-10, tone_shift="more casual")] * 2

    patterns = container.learning.detect_patterns(edits)

    assert patterns.sentence_length_pattern is None
    assert patterns.tone_pattern is None
    assert container.learning.detect_patterns([]) == DetectedPatterns()


@pytest.mark.asyncio
async def test_apply_weighted_updates(container):
    """Test updates move the profile towards the detected patterns."""
    profile = make_profile()
    patterns = DetectedPatterns(
        sentence_length_pattern=-6,
        emoji_pattern=EmojiPattern(frequency=3),
        cta_pattern=True,
        banned_phrases=["we are pleased to"],
        tone_pattern="more casual",
    )

    minor = container.learning.apply_weighted_updates(profile, patterns, ManualOverrides(), allow_major=False)
    major = container.learning.apply_weighted_updates(profile, patterns, ManualOverrides(), allow_major=True)

    assert minor.writing_traits.avg_sentence_length == pytest.approx(14.1)
    assert minor.writing_traits.uses_emojis is True
    assert minor.writing_traits.emoji_frequency == 3
    assert minor.structure_preferences.ending_style == "cta"
    assert minor.banned_phrases == ["we are pleased to"]
    assert minor.tone.formality == 5
    assert major.tone.formality == 4
    assert profile.writing_traits.avg_sentence_length == 15


@pytest.mark.asyncio
async def test_apply_weighted_updates_respects_overrides(container):
    profile = make_profile()
    patterns = DetectedPatterns(sentence_length_pattern=-6, emoji_pattern=EmojiPattern(frequency=3), tone_pattern="more casual")
    overrides = ManualOverrides(overrides=[
        ToneOverride(formality=5),
        WritingTraitsOverride(avg_sentence_length=15, uses_emojis=False),
    ])

    updated = container.learning.apply_weighted_updates(profile, patterns, overrides, allow_major=True)

    assert updated.writing_traits.avg_sentence_length == 15
    assert updated.writing_traits.uses_emojis is False
    assert updated.tone.formality == 5


def test_adjust_tone_bounds():
    profile = make_profile()
    low = profile.tone.model_copy(update={"formality": 1})

    assert adjust_tone(low, "more casual", ManualOverrides()).formality == 1
    assert adjust_tone(low, "more professional", ManualOverrides()).formality == 2
    assert adjust_tone(low, "no change", ManualOverrides()) == low


def test_recency_weights():
    assert recency_weights(0) == []
    assert recency_weights(1) == [1.0]
    assert recency_weights(3) == [1.0, 0.75, 0.5]
    assert weighted_average([2, 4], [1, 1]) == 3


@pytest.mark.asyncio
async def test_requeue_stuck_processing_jobs(container, dispatched):
    """Test processing jobs older than the hard time limit are dispatched again."""
    user = await create_user(container)
    stuck = await container.learning.queue_learning_job(
        (await create_content(container, user.id)).id, user.id, priority=1
    )
    running = await container.learning.queue_learning_job(
        (await create_content(container, user.id)).id, user.id
    )
    dispatched.clear()

    async with session_scope(container.session_factory) as session:
        await session.execute(
            update(LearningJob)
            .where(LearningJob.id == stuck.id)
            .values(status=LearningJobStatus.PROCESSING.value, processing_started=datetime(2000, 1, 1))
        )
        await session.execute(
            update(LearningJob)
            .where(LearningJob.id == running.id)
            .values(status=LearningJobStatus.PROCESSING.value, processing_started=datetime.utcnow())
        )
        await session.commit()

    assert await container.learning.requeue_pending_jobs(300) == 0
    assert await container.learning.requeue_pending_jobs(300, stuck_after_seconds=300) == 1
    assert dispatched == [(stuck.id, 1)]


@pytest.mark.asyncio
async def test_rate_limit_shared_between_engines(container, settings, fake_redis):
    """Test an update made through one container rate-limits another."""
    user = await create_user(container, make_profile())
    await create_edited_content(container, user.id)

    assert await container.learning.update_profile_from_deltas(user.id) is not None

    async with ServiceContainer(settings, redis_client=fake_redis) as other:
        assert await other.learning.can_update_profile(user.id) is False
        assert await other.learning.update_profile_from_deltas(user.id) is None

    key = f"{container.cache.LEARNING_RATE_LIMIT_PREFIX}{user.id}"
    assert fake_redis.ttls[key] == settings.learning_rate_limit_seconds
