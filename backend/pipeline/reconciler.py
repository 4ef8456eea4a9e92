"""
Reconciliation of asynchronous video tasks.

Each poll queries the provider that issued a task. A completed task has its
media persisted and its placeholder filled in; a failed task, or one older
than the wall-clock ceiling, marks the scene's video track failed. Anything
else leaves the ledger untouched until the next poll.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional

import structlog
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config import settings
from models import MediaStatus, Track, Video
from pipeline.artifact_store import ArtifactStore
from pipeline.error_handler import ErrorCode, PipelineError, ReconciliationTimeoutError
from pipeline.ledger import StatusLedger
from pipeline.media import MediaPersister
from pipeline.projects import ProjectRepository
from services.providers import JobStatus, MediaProvider, get_video_provider

logger = structlog.get_logger()


class PollResult(BaseModel):
    task_id: str
    scene_id: str
    status: str
    terminal: bool
    artifact: Optional[dict] = None
    error: Optional[str] = None


class ReconcileSummary(BaseModel):
    project_id: str
    results: List[PollResult] = []
    in_flight: int = 0
    errors: List[dict] = []


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class Reconciler:
    """
    Usage:
        reconciler = Reconciler(db)
        result = await reconciler.poll_one("user-1", task_id)
        if not result.terminal:
            ...  # poll again after RECONCILE_INTERVAL
    """

    def __init__(
        self,
        db: Session,
        media: Optional[MediaPersister] = None,
        provider_lookup: Callable[[str], MediaProvider] = get_video_provider,
        ceiling_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.projects = ProjectRepository(db)
        self.ledger = StatusLedger(db, self.projects)
        self.artifacts = ArtifactStore(db, self.projects)
        self.media = media or MediaPersister()
        self.provider_lookup = provider_lookup
        self.ceiling_seconds = ceiling_seconds if ceiling_seconds is not None else settings.RECONCILE_CEILING
        self.clock = clock

    async def poll_one(self, principal: str, task_id: str) -> PollResult:
        """
        Query one task and apply its outcome.

        Raises:
            OwnershipError: Unknown task or not owned by principal
            AIGenerationError: The status query itself failed after retries
                (the ledger is unchanged; the ceiling still applies later)
        """
        video = self.artifacts.get_video_by_task(principal, task_id)
        self.db.refresh(video)
        scene = video.scene
        self.db.refresh(scene)
        log = logger.bind(task_id=task_id, scene_id=scene.id, provider=video.provider)

        if not video.is_placeholder:
            return PollResult(
                task_id=task_id,
                scene_id=scene.id,
                status=MediaStatus.COMPLETED,
                terminal=True,
                artifact=video.to_dict(),
            )

        latest = self.artifacts.get_latest(principal, scene.id, Track.VIDEO)
        if scene.video_status != MediaStatus.PROCESSING or (latest is not None and latest.id != video.id):
            # Superseded by a newer attempt, or already resolved elsewhere
            return PollResult(
                task_id=task_id,
                scene_id=scene.id,
                status=scene.video_status if latest is not None and latest.id == video.id else MediaStatus.FAILED,
                terminal=True,
                error=scene.video_error or "Superseded by a newer video generation",
            )

        elapsed = self._elapsed(video)
        if elapsed > self.ceiling_seconds:
            return self._time_out(video, elapsed, log)

        provider = self.provider_lookup(video.provider or settings.VIDEO_PROVIDER)
        job = await provider.query(task_id)

        if job.status == JobStatus.COMPLETED:
            return await self._complete(principal, video, job, log)

        if job.status == JobStatus.FAILED:
            reason = job.error or "Video generation failed"
            self.ledger.finish_reconciliation(scene.id, Track.VIDEO, MediaStatus.FAILED, reason)
            log.warning("reconcile_failed", reason=reason)
            return PollResult(
                task_id=task_id,
                scene_id=scene.id,
                status=MediaStatus.FAILED,
                terminal=True,
                error=reason,
            )

        log.debug("reconcile_still_running", vendor_status=job.status.value, elapsed=round(elapsed, 1))
        return PollResult(
            task_id=task_id,
            scene_id=scene.id,
            status=MediaStatus.PROCESSING,
            terminal=False,
        )

    def _elapsed(self, video: Video) -> float:
        started = video.submitted_at or video.created_at
        return (self.clock() - _as_utc(started)).total_seconds()

    def _time_out(self, video: Video, elapsed: float, log) -> PollResult:
        error = ReconciliationTimeoutError(video.task_id, elapsed, self.ceiling_seconds)
        self.ledger.finish_reconciliation(video.scene_id, Track.VIDEO, MediaStatus.FAILED, error.message)
        log.warning("reconcile_timed_out", elapsed=round(elapsed, 1), ceiling=self.ceiling_seconds)
        return PollResult(
            task_id=video.task_id,
            scene_id=video.scene_id,
            status=MediaStatus.FAILED,
            terminal=True,
            error=error.message,
        )

    async def _complete(self, principal: str, video: Video, job, log) -> PollResult:
        scene = video.scene
        try:
            if not job.url:
                raise PipelineError(
                    ErrorCode.AI_GENERATION_FAILED,
                    "Video task completed without a result URL",
                    {"task_id": video.task_id},
                )
            stored = await self.media.persist(job.url, scene.project_id, scene.id, Track.VIDEO, video.version)
        except PipelineError as e:
            self.ledger.finish_reconciliation(scene.id, Track.VIDEO, MediaStatus.FAILED, e.message)
            log.error("reconcile_persist_failed", error=e.message)
            return PollResult(
                task_id=video.task_id,
                scene_id=scene.id,
                status=MediaStatus.FAILED,
                terminal=True,
                error=e.message,
            )

        filled = self.artifacts.update_placeholder(
            video.task_id, stored.storage_path, stored.url, duration=job.duration, commit=False
        )
        if filled is None:
            # Another poll filled the placeholder while this one was persisting
            self.db.refresh(video)
            self.db.refresh(scene)
            if stored.storage_path != video.storage_path:
                await self.media.discard(stored.storage_path)
            log.info("reconcile_lost_fill", video_id=video.id, winner_path=video.storage_path)
            return PollResult(
                task_id=video.task_id,
                scene_id=scene.id,
                status=MediaStatus.COMPLETED,
                terminal=True,
                artifact=video.to_dict(),
            )

        if not self.ledger.finish_reconciliation(scene.id, Track.VIDEO, MediaStatus.COMPLETED):
            # Track left processing meanwhile; the fill was rolled back with the status write
            await self.media.discard(stored.storage_path)
            self.db.refresh(scene)
            return PollResult(
                task_id=video.task_id,
                scene_id=scene.id,
                status=MediaStatus.FAILED,
                terminal=True,
                error=scene.video_error or "Superseded by a newer video generation",
            )
        self.db.refresh(video)

        log.info("reconcile_completed", video_id=video.id, version=video.version)
        return PollResult(
            task_id=video.task_id,
            scene_id=scene.id,
            status=MediaStatus.COMPLETED,
            terminal=True,
            artifact=video.to_dict(),
        )

    async def reconcile_project(self, principal: str, project_id: str) -> ReconcileSummary:
        """
        Poll the newest in-flight task of every processing scene once.

        A failing status query is reported per task and does not stop the
        sweep.
        """
        summary = ReconcileSummary(project_id=project_id)
        seen_scenes = set()

        for video in self.artifacts.list_pending_videos(principal, project_id):
            if video.scene_id in seen_scenes:
                continue
            seen_scenes.add(video.scene_id)

            try:
                result = await self.poll_one(principal, video.task_id)
            except PipelineError as e:
                logger.warning("reconcile_poll_error", task_id=video.task_id, error=e.message)
                summary.errors.append({"task_id": video.task_id, "error": e.message})
                summary.in_flight += 1
                continue

            summary.results.append(result)
            if not result.terminal:
                summary.in_flight += 1

        logger.info(
            "project_reconciled",
            project_id=project_id,
            polled=len(seen_scenes),
            in_flight=summary.in_flight,
        )
        return summary
