"""
Batch Orchestrator

Coordinates generation across every eligible scene of a project for one
track:
1. Select scenes whose track is pending or failed and whose upstream step
   is confirmed
2. Run the single-scene generator over them one at a time, in order
3. Aggregate per-scene outcomes without aborting on individual failures
4. Advance the project stage when at least one scene succeeded

Scenes are processed sequentially, never concurrently, so a batch never
exceeds one in-flight vendor call per project.
"""

from typing import List, Optional

import structlog
from pydantic import BaseModel
from sqlalchemy.orm import Session

from models import MediaStatus, ProjectStage, Track
from pipeline.error_handler import PipelineError, PreconditionError
from pipeline.generator import BATCH_ALLOWED_FROM, SingleUnitGenerator, UnitResult
from pipeline.ledger import StatusLedger

logger = structlog.get_logger(__name__)


class BatchItemResult(BaseModel):
    scene_id: str
    order_index: int
    success: bool
    result: Optional[UnitResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class BatchResult(BaseModel):
    """Per-scene outcomes plus aggregate counts"""
    project_id: str
    track: str
    results: List[BatchItemResult] = []
    success_count: int = 0
    failed_count: int = 0
    stage: str
    stage_advanced: bool = False


class BatchOrchestrator:
    """
    Example:
        >>> orchestrator = BatchOrchestrator(db)
        >>> batch = await orchestrator.run_batch("user-1", project_id, Track.IMAGE)
        >>> batch.success_count, batch.failed_count
        (4, 1)
    """

    def __init__(self, db: Session, generator: Optional[SingleUnitGenerator] = None):
        self.db = db
        self.generator = generator or SingleUnitGenerator(db)
        self.projects = self.generator.projects
        self.ledger = StatusLedger(db, self.projects)

    async def run_batch(self, principal: str, project_id: str, track: str) -> BatchResult:
        """
        Generate `track` for every eligible scene of a project.

        Failures are collected, never raised; only ownership and unknown
        track errors escape.
        """
        Track.validate(track)
        project = self.projects.get_owned_project(principal, project_id)
        scenes = self.projects.get_units_eligible_for(principal, project_id, track)
        log = logger.bind(project_id=project_id, track=track)

        batch = BatchResult(project_id=project_id, track=track, stage=project.stage)
        if not scenes:
            log.info("batch_generation_skipped", reason="no_eligible_scenes")
            return batch

        log.info("batch_generation_started", scene_count=len(scenes))

        for scene in scenes:
            item = BatchItemResult(scene_id=scene.id, order_index=scene.order_index, success=False)
            try:
                item.result = await self.generator.generate(
                    principal, scene.id, track, allowed_from=BATCH_ALLOWED_FROM
                )
                item.success = True
                batch.success_count += 1
            except PipelineError as e:
                item.error = e.message
                item.error_code = e.code.value
                batch.failed_count += 1
            except Exception as e:
                log.exception("batch_item_unexpected_error", scene_id=scene.id)
                item.error = str(e)
                batch.failed_count += 1
            batch.results.append(item)

        if batch.success_count > 0:
            batch.stage_advanced = self.projects.advance_stage(
                principal, project_id, Track.STAGE_FOR_TRACK[track]
            )

        batch.stage = self.projects.get_owned_project(principal, project_id).stage
        log.info(
            "batch_generation_finished",
            success_count=batch.success_count,
            failed_count=batch.failed_count,
            stage=batch.stage,
        )
        return batch

    def confirm_all(self, principal: str, project_id: str, track: str) -> int:
        """
        Confirm every completed, unconfirmed track in a project.

        Returns:
            Number of scenes newly confirmed
        """
        confirmed = 0
        for scene in self.projects.list_scenes(principal, project_id):
            if scene.track_status(track) == MediaStatus.COMPLETED and not scene.track_confirmed(track):
                self.ledger.set_confirmed(principal, scene.id, track)
                confirmed += 1
        logger.info("track_confirmed_all", project_id=project_id, track=track, count=confirmed)
        return confirmed

    def confirm_all_descriptions(self, principal: str, project_id: str) -> int:
        confirmed = 0
        for scene in self.projects.list_scenes(principal, project_id):
            if not scene.description_confirmed:
                self.ledger.confirm_description(principal, scene.id)
                confirmed += 1
        logger.info("descriptions_confirmed_all", project_id=project_id, count=confirmed)
        return confirmed

    def confirm_all_videos(self, principal: str, project_id: str) -> int:
        """
        Confirm every video and complete the project.

        All scenes must have a completed video; otherwise nothing is written.
        """
        scenes = self.projects.list_scenes(principal, project_id)
        if not scenes:
            raise PreconditionError("Project has no scenes", {"project_id": project_id})

        unfinished = [s.id for s in scenes if s.video_status != MediaStatus.COMPLETED]
        if unfinished:
            raise PreconditionError(
                "All scene videos must be completed before confirming",
                {"project_id": project_id, "unfinished_scene_ids": unfinished},
            )

        confirmed = self.confirm_all(principal, project_id, Track.VIDEO)
        self.projects.advance_stage(principal, project_id, ProjectStage.COMPLETED)
        return confirmed
