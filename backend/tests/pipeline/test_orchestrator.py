"""
Unit tests for BatchOrchestrator
"""

import pytest

from models import MediaStatus, ProjectStage, Scene, Track
from pipeline.error_handler import PreconditionError
from pipeline.orchestrator import BatchOrchestrator


@pytest.fixture
def orchestrator(db, generator):
    return BatchOrchestrator(db, generator=generator)


class TestRunBatch:

    @pytest.mark.asyncio
    async def test_no_eligible_scenes(self, orchestrator, principal, make_project, make_scenes):
        project = make_project(stage=ProjectStage.SCENES)
        make_scenes(project, 2)

        batch = await orchestrator.run_batch(principal, project.id, Track.IMAGE)

        assert batch.results == []
        assert (batch.success_count, batch.failed_count) == (0, 0)
        assert batch.stage == ProjectStage.SCENES
        assert batch.stage_advanced is False

    @pytest.mark.asyncio
    async def test_project_without_scenes(self, orchestrator, principal, make_project):
        project = make_project(stage=ProjectStage.SCENES)

        batch = await orchestrator.run_batch(principal, project.id, Track.IMAGE)

        assert batch.results == []
        assert (batch.success_count, batch.failed_count) == (0, 0)
        assert batch.stage == ProjectStage.SCENES
        assert batch.stage_advanced is False

    @pytest.mark.asyncio
    async def test_partial_failure_still_advances(
        self, orchestrator, db, principal, make_project, make_scenes, image_provider
    ):
        project = make_project(stage=ProjectStage.SCENES)
        make_scenes(project, 5, description_confirmed=True)
        image_provider.fail_prompts.add("visual 3")

        batch = await orchestrator.run_batch(principal, project.id, Track.IMAGE)

        assert batch.success_count == 4
        assert batch.failed_count == 1
        assert batch.stage == ProjectStage.IMAGES
        assert batch.stage_advanced is True
        assert [r.order_index for r in batch.results] == [1, 2, 3, 4, 5]
        failed = batch.results[2]
        assert failed.success is False
        assert failed.error_code == "AI_GENERATION_FAILED"

        statuses = [s.image_status for s in db.query(Scene).order_by(Scene.order_index)]
        assert statuses == [
            MediaStatus.COMPLETED,
            MediaStatus.COMPLETED,
            MediaStatus.FAILED,
            MediaStatus.COMPLETED,
            MediaStatus.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_scenes_processed_in_order(self, orchestrator, principal, make_project, make_scenes, image_provider):
        project = make_project(stage=ProjectStage.SCENES)
        make_scenes(project, 3, description_confirmed=True)

        await orchestrator.run_batch(principal, project.id, Track.IMAGE)

        assert [r.prompt for r in image_provider.requests] == ["visual 1", "visual 2", "visual 3"]

    @pytest.mark.asyncio
    async def test_all_failures_leave_stage(self, orchestrator, principal, make_project, make_scenes, image_provider):
        project = make_project(stage=ProjectStage.SCENES)
        make_scenes(project, 2, description_confirmed=True)
        image_provider.fail_prompts.update({"visual 1", "visual 2"})

        batch = await orchestrator.run_batch(principal, project.id, Track.IMAGE)

        assert batch.failed_count == 2
        assert batch.stage == ProjectStage.SCENES

    @pytest.mark.asyncio
    async def test_completed_scenes_are_skipped(self, orchestrator, db, principal, make_project, make_scenes, image_provider):
        project = make_project(stage=ProjectStage.SCENES)
        scenes = make_scenes(project, 2, description_confirmed=True)
        scenes[0].image_status = MediaStatus.COMPLETED
        db.commit()

        batch = await orchestrator.run_batch(principal, project.id, Track.IMAGE)

        assert [r.scene_id for r in batch.results] == [scenes[1].id]
        assert len(image_provider.requests) == 1

    @pytest.mark.asyncio
    async def test_video_batch_counts_submissions(self, orchestrator, principal, ready_for_video, enqueue):
        project, scenes = ready_for_video(3)

        batch = await orchestrator.run_batch(principal, project.id, Track.VIDEO)

        assert batch.success_count == 3
        assert all(r.result.status == MediaStatus.PROCESSING for r in batch.results)
        assert batch.stage == ProjectStage.VIDEOS
        assert enqueue.call_count == 3

    @pytest.mark.asyncio
    async def test_unknown_track(self, orchestrator, principal, make_project):
        project = make_project()
        with pytest.raises(ValueError):
            await orchestrator.run_batch(principal, project.id, "audio")


class TestConfirmAll:

    def test_confirm_all_descriptions(self, orchestrator, principal, make_project, make_scenes, db):
        project = make_project(stage=ProjectStage.SCENES)
        scenes = make_scenes(project, 3)
        scenes[0].description_confirmed = True
        db.commit()

        assert orchestrator.confirm_all_descriptions(principal, project.id) == 2
        assert all(s.description_confirmed for s in db.query(Scene))

    def test_confirm_all_images_skips_unfinished(self, orchestrator, principal, make_project, make_scenes, db):
        project = make_project(stage=ProjectStage.IMAGES)
        scenes = make_scenes(project, 3, description_confirmed=True)
        scenes[0].image_status = MediaStatus.COMPLETED
        scenes[1].image_status = MediaStatus.FAILED
        db.commit()

        assert orchestrator.confirm_all(principal, project.id, Track.IMAGE) == 1

        db.refresh(scenes[0])
        db.refresh(scenes[1])
        assert scenes[0].image_confirmed is True
        assert scenes[1].image_confirmed is False

    def test_confirm_all_videos_requires_every_scene(self, orchestrator, principal, make_project, make_scenes, db):
        project = make_project(stage=ProjectStage.VIDEOS)
        scenes = make_scenes(project, 2)
        scenes[0].video_status = MediaStatus.COMPLETED
        db.commit()

        with pytest.raises(PreconditionError) as exc_info:
            orchestrator.confirm_all_videos(principal, project.id)

        assert exc_info.value.details["unfinished_scene_ids"] == [scenes[1].id]
        db.refresh(scenes[0])
        assert scenes[0].video_confirmed is False

    def test_confirm_all_videos_completes_project(self, orchestrator, principal, make_project, make_scenes, db):
        project = make_project(stage=ProjectStage.VIDEOS)
        make_scenes(project, 2, video_status=MediaStatus.COMPLETED)

        assert orchestrator.confirm_all_videos(principal, project.id) == 2

        db.refresh(project)
        assert project.stage == ProjectStage.COMPLETED

    def test_confirm_all_videos_empty_project(self, orchestrator, principal, make_project):
        project = make_project(stage=ProjectStage.VIDEOS)
        with pytest.raises(PreconditionError):
            orchestrator.confirm_all_videos(principal, project.id)
