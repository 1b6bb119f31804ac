"""
Profile versioning tests.
"""

import pytest

from styleforge.core.exceptions import ValidationError
from styleforge.schemas.style import ProfileVersion, ToneMetrics, VersionSource
from styleforge.services.profile_versioning_service import append_version, resolve_version_index
from tests.conftest import create_user, make_profile


def tone(formality: int) -> ToneMetrics:
    return ToneMetrics(formality=formality, enthusiasm=5, directness=5, humor=5, emotionality=5)


@pytest.mark.asyncio
async def test_snapshot_without_profile_is_noop(container):
    """Test snapshotting a user with no profile creates nothing."""
    user = await create_user(container)

    assert await container.versioning.create_version_snapshot(user.id, VersionSource.MANUAL) is None
    assert await container.versioning.get_version_history(user.id) == []


@pytest.mark.asyncio
async def test_prune_versions_rejects_negative_cap(container):
    """Test a negative cap is rejected and the history is left intact."""
    user = await create_user(container, make_profile(tone=tone(1)))
    await container.profiles.set_profile(user.id, make_profile(tone=tone(2)))

    with pytest.raises(ValidationError):
        await container.versioning.prune_versions(user.id, max_versions=-1)

    assert len(await container.versioning.get_version_history(user.id)) == 1


@pytest.mark.asyncio
async def test_snapshot_captures_profile(container):
    """Test a snapshot copies the live profile and its iteration count."""
    user = await create_user(container, make_profile(learning_iterations=3))

    version = await container.versioning.create_version_snapshot(user.id, VersionSource.FEEDBACK)

    assert version.source == VersionSource.FEEDBACK
    assert version.learning_iterations == 3
    history = await container.versioning.get_version_history(user.id)
    assert len(history) == 1
    assert history[0].profile.tone.formality == 5


@pytest.mark.asyncio
async def test_history_capped_at_max_versions(container, settings):
    """Test the oldest versions are evicted past the cap."""
    user = await create_user(container, make_profile(tone=tone(1)))
    for formality in range(2, 10):
        await container.profiles.set_profile(user.id, make_profile(tone=tone(formality)))
    for _ in range(4):
        await container.profiles.set_profile(user.id, make_profile(tone=tone(10)))

    history = await container.versioning.get_version_history(user.id)

    assert len(history) == settings.max_profile_versions
    # Snapshots of formality 1 and 2 were evicted
    assert history[0].profile.tone.formality == 3
    timestamps = [v.timestamp for v in history]
    assert timestamps == sorted(timestamps)


@pytest.mark.asyncio
async def test_rollback_restores_version(container):
    """Test rolling back restores the snapshot and records the rollback."""
    user = await create_user(container, make_profile(tone=tone(5)))
    await container.profiles.set_profile(user.id, make_profile(tone=tone(8)))

    restored = await container.versioning.rollback_to_version(user.id, 0)

    assert restored.tone.formality == 5
    live = await container.profiles.get_style_profile(user.id)
    assert live.tone.formality == 5

    history = await container.versioning.get_version_history(user.id)
    assert [v.source for v in history] == [VersionSource.MANUAL, VersionSource.ROLLBACK]
    assert history[1].profile.tone.formality == 8


@pytest.mark.asyncio
async def test_rollback_is_reversible(container):
    """Test a rollback can itself be undone from the rollback snapshot."""
    user = await create_user(container, make_profile(tone=tone(5)))
    await container.profiles.set_profile(user.id, make_profile(tone=tone(8)))
    await container.versioning.rollback_to_version(user.id, 0)

    restored = await container.versioning.rollback_to_version(user.id, -1)

    assert restored.tone.formality == 8


@pytest.mark.asyncio
async def test_rollback_without_versions(container):
    """Test rollback returns None when there is no history."""
    user = await create_user(container, make_profile())

    assert await container.versioning.rollback_to_version(user.id, 0) is None


@pytest.mark.asyncio
async def test_rollback_invalid_index(container):
    """Test an out-of-range index is rejected without writing."""
    user = await create_user(container, make_profile(tone=tone(5)))
    await container.profiles.set_profile(user.id, make_profile(tone=tone(8)))

    with pytest.raises(ValidationError, match="Invalid version index"):
        await container.versioning.rollback_to_version(user.id, 5)

    assert len(await container.versioning.get_version_history(user.id)) == 1
    live = await container.profiles.get_style_profile(user.id)
    assert live.tone.formality == 8


@pytest.mark.asyncio
async def test_get_version(container):
    """Test single version lookup, including out-of-range."""
    user = await create_user(container, make_profile(tone=tone(5)))
    await container.profiles.set_profile(user.id, make_profile(tone=tone(8)))

    assert (await container.versioning.get_version(user.id, 0)).profile.tone.formality == 5
    assert (await container.versioning.get_version(user.id, -1)).profile.tone.formality == 5
    assert await container.versioning.get_version(user.id, 3) is None


@pytest.mark.asyncio
async def test_prune_and_clear_versions(container):
    """Test pruning keeps the newest versions and clearing drops all."""
    user = await create_user(container, make_profile(tone=tone(1)))
    for formality in range(2, 6):
        await container.profiles.set_profile(user.id, make_profile(tone=tone(formality)))

    assert await container.versioning.prune_versions(user.id, max_versions=2) == 2
    history = await container.versioning.get_version_history(user.id)
    assert [v.profile.tone.formality for v in history] == [3, 4]

    assert await container.versioning.clear_version_history(user.id) == 2
    assert await container.versioning.get_version_history(user.id) == []


def test_resolve_version_index():
    assert resolve_version_index(0, 3) == 0
    assert resolve_version_index(-1, 3) == 2
    assert resolve_version_index(-3, 3) == 0
    assert resolve_version_index(3, 3) is None
    assert resolve_version_index(-4, 3) is None
    assert resolve_version_index(0, 0) is None


def test_append_version_drops_oldest():
    versions = [
        ProfileVersion.capture(make_profile(tone=tone(f)), VersionSource.MANUAL)
        for f in range(1, 4)
    ]

    trimmed = append_version(versions[:2], versions[2], max_versions=2)

    assert [v.profile.tone.formality for v in trimmed] == [2, 3]


@pytest.mark.asyncio
async def test_rollback_to_oldest_and_newest(container):
    """Test rolling back to the first and then the last version."""
    user = await create_user(container, make_profile(tone=tone(5)))
    await container.versioning.create_version_snapshot(user.id, VersionSource.MANUAL)

    def formal(profile):
        profile.tone.formality = 8
        return profile

    await container.profiles.update_profile(user.id, formal, VersionSource.FEEDBACK)
    await container.versioning.create_version_snapshot(user.id, VersionSource.FEEDBACK)

    assert (await container.versioning.rollback_to_version(user.id, 0)).tone.formality == 5
    assert (await container.versioning.rollback_to_version(user.id, -1)).tone.formality == 8
