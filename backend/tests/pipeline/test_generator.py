"""
Unit tests for SingleUnitGenerator

Providers and media persistence are faked; the ledger and artifact store run
against in-memory SQLite.
"""

import pytest

from models import Image, MediaStatus, Scene, Track, Video
from pipeline.error_handler import (
    AIGenerationError,
    GenerationInProgressError,
    NoUpstreamArtifactError,
    PreconditionError,
)
from pipeline.ledger import StatusLedger


@pytest.fixture
def confirmed_scene(make_project, make_scenes):
    project = make_project()
    return make_scenes(project, 1, description_confirmed=True)[0]


def _snapshot(db, principal, scene_id):
    return StatusLedger(db).read(principal, scene_id)


class TestImageGeneration:

    @pytest.mark.asyncio
    async def test_success_creates_version_one(self, generator, db, principal, confirmed_scene, image_provider):
        result = await generator.generate(principal, confirmed_scene.id, Track.IMAGE)

        assert result.status == MediaStatus.COMPLETED
        assert result.artifact["version"] == 1
        assert result.artifact["width"] == 1280
        assert _snapshot(db, principal, confirmed_scene.id).image.status == MediaStatus.COMPLETED
        assert image_provider.requests[0].prompt == "visual 1"
        assert image_provider.requests[0].style == "watercolor"

    @pytest.mark.asyncio
    async def test_regenerate_increments_version_and_clears_confirmation(
        self, generator, db, principal, confirmed_scene
    ):
        await generator.generate(principal, confirmed_scene.id, Track.IMAGE)
        StatusLedger(db).set_confirmed(principal, confirmed_scene.id, Track.IMAGE)

        result = await generator.generate(principal, confirmed_scene.id, Track.IMAGE)

        snapshot = _snapshot(db, principal, confirmed_scene.id)
        assert result.artifact["version"] == 2
        assert snapshot.image.confirmed is False
        assert db.query(Image).count() == 2

    @pytest.mark.asyncio
    async def test_unconfirmed_description_rejected_without_writes(
        self, generator, db, principal, make_project, make_scenes, image_provider
    ):
        scene = make_scenes(make_project(), 1)[0]

        with pytest.raises(PreconditionError):
            await generator.generate(principal, scene.id, Track.IMAGE)

        snapshot = _snapshot(db, principal, scene.id)
        assert snapshot.image.status == MediaStatus.PENDING
        assert snapshot.image.lease == 0
        assert image_provider.requests == []

    @pytest.mark.asyncio
    async def test_provider_failure_marks_failed_and_raises(self, generator, db, principal, confirmed_scene, image_provider):
        image_provider.fail_prompts.add("visual 1")

        with pytest.raises(AIGenerationError):
            await generator.generate(principal, confirmed_scene.id, Track.IMAGE)

        snapshot = _snapshot(db, principal, confirmed_scene.id)
        assert snapshot.image.status == MediaStatus.FAILED
        assert "vendor unavailable" in snapshot.image.error
        assert db.query(Image).count() == 0

    @pytest.mark.asyncio
    async def test_failed_track_can_be_retried(self, generator, db, principal, confirmed_scene, image_provider):
        image_provider.fail_prompts.add("visual 1")
        with pytest.raises(AIGenerationError):
            await generator.generate(principal, confirmed_scene.id, Track.IMAGE)

        image_provider.fail_prompts.clear()
        result = await generator.generate(principal, confirmed_scene.id, Track.IMAGE)

        assert result.status == MediaStatus.COMPLETED
        assert _snapshot(db, principal, confirmed_scene.id).image.error is None

    @pytest.mark.asyncio
    async def test_processing_track_rejected(self, generator, db, principal, confirmed_scene):
        StatusLedger(db).begin_generation(principal, confirmed_scene.id, Track.IMAGE)

        with pytest.raises(GenerationInProgressError):
            await generator.generate(principal, confirmed_scene.id, Track.IMAGE)

    @pytest.mark.asyncio
    async def test_persist_failure_marks_failed(self, generator, db, principal, confirmed_scene, media):
        media.persist.side_effect = AIGenerationError("download", "download failed")

        with pytest.raises(AIGenerationError):
            await generator.generate(principal, confirmed_scene.id, Track.IMAGE)

        assert _snapshot(db, principal, confirmed_scene.id).image.status == MediaStatus.FAILED

    @pytest.mark.asyncio
    async def test_result_of_superseded_attempt_is_dropped(self, generator, db, principal, confirmed_scene, media):
        persist = media.persist.side_effect

        async def persist_while_lease_moves(url, project_id, scene_id, track, version):
            db.query(Scene).filter(Scene.id == scene_id).update(
                {Scene.image_lease: Scene.image_lease + 1}, synchronize_session=False
            )
            db.commit()
            return await persist(url, project_id, scene_id, track, version)

        media.persist.side_effect = persist_while_lease_moves

        with pytest.raises(GenerationInProgressError):
            await generator.generate(principal, confirmed_scene.id, Track.IMAGE)

        assert db.query(Image).count() == 0
        media.discard.assert_awaited_once_with(
            f"{confirmed_scene.project_id}/{confirmed_scene.id}/images/v1.png"
        )
        assert _snapshot(db, principal, confirmed_scene.id).image.status == MediaStatus.PROCESSING


class TestVideoGeneration:

    @pytest.mark.asyncio
    async def test_unconfirmed_image_rejected_without_writes(self, generator, db, principal, confirmed_scene):
        confirmed_scene.image_status = MediaStatus.COMPLETED
        db.commit()

        with pytest.raises(PreconditionError):
            await generator.generate(principal, confirmed_scene.id, Track.VIDEO)

        snapshot = _snapshot(db, principal, confirmed_scene.id)
        assert snapshot.video.status == MediaStatus.PENDING
        assert snapshot.video.lease == 0
        assert snapshot.video.confirmed is False

    @pytest.mark.asyncio
    async def test_confirmed_flag_without_image_artifact(self, generator, db, principal, confirmed_scene):
        confirmed_scene.image_status = MediaStatus.COMPLETED
        confirmed_scene.image_confirmed = True
        db.commit()

        with pytest.raises(NoUpstreamArtifactError):
            await generator.generate(principal, confirmed_scene.id, Track.VIDEO)

        assert _snapshot(db, principal, confirmed_scene.id).video.status == MediaStatus.PENDING

    @pytest.mark.asyncio
    async def test_async_submit_leaves_processing_with_placeholder(
        self, generator, db, principal, ready_for_video, video_provider, enqueue
    ):
        _, scenes = ready_for_video(1)
        scene = scenes[0]

        result = await generator.generate(principal, scene.id, Track.VIDEO)

        assert result.status == MediaStatus.PROCESSING
        assert result.task_id == "task-1"
        video = db.query(Video).filter(Video.task_id == "task-1").one()
        assert video.is_placeholder
        assert video.provider == "fake-video"
        assert _snapshot(db, principal, scene.id).video.status == MediaStatus.PROCESSING
        assert video_provider.requests[0].image_url == f"http://testserver/media/{scene.id}.png"
        enqueue.assert_called_once_with("task-1", principal)

    @pytest.mark.asyncio
    async def test_enqueue_failure_does_not_fail_generation(
        self, generator, db, principal, ready_for_video, enqueue
    ):
        _, scenes = ready_for_video(1)
        enqueue.side_effect = ConnectionError("redis down")

        result = await generator.generate(principal, scenes[0].id, Track.VIDEO)

        assert result.status == MediaStatus.PROCESSING
        assert _snapshot(db, principal, scenes[0].id).video.status == MediaStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_double_trigger_submits_once(self, generator, db, principal, ready_for_video, video_provider):
        _, scenes = ready_for_video(1)
        await generator.generate(principal, scenes[0].id, Track.VIDEO)

        with pytest.raises(GenerationInProgressError):
            await generator.generate(principal, scenes[0].id, Track.VIDEO)

        assert len(video_provider.requests) == 1
        assert db.query(Video).count() == 1

    @pytest.mark.asyncio
    async def test_other_principal_cannot_generate(self, generator, db, other_principal, ready_for_video):
        from pipeline.error_handler import OwnershipError
        _, scenes = ready_for_video(1)

        with pytest.raises(OwnershipError):
            await generator.generate(other_principal, scenes[0].id, Track.VIDEO)

        assert db.query(Scene).filter(Scene.video_status == MediaStatus.PROCESSING).count() == 0
