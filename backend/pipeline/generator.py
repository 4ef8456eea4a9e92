"""
Single-scene generator.

Drives one scene's image or video track through
pending|failed -> processing -> completed|failed, persisting exactly one
artifact on success. Async providers leave the track in processing with a
placeholder artifact; reconciliation finishes the job.
"""

from typing import Callable, Iterable, Optional

import structlog
from pydantic import BaseModel
from sqlalchemy.orm import Session

from models import MediaStatus, Scene, Track
from pipeline.artifact_store import ArtifactStore
from pipeline.error_handler import (
    GenerationInProgressError,
    NoUpstreamArtifactError,
    PipelineError,
    PreconditionError,
)
from pipeline.ledger import StatusLedger
from pipeline.media import MediaPersister
from pipeline.projects import ProjectRepository
from services.providers import (
    GenerationRequest,
    ImmediateResult,
    JobHandle,
    MediaProvider,
    get_image_provider,
    get_video_provider,
)

logger = structlog.get_logger()

SINGLE_ALLOWED_FROM = (MediaStatus.PENDING, MediaStatus.FAILED, MediaStatus.COMPLETED)
BATCH_ALLOWED_FROM = (MediaStatus.PENDING, MediaStatus.FAILED)


class UnitResult(BaseModel):
    """Outcome of one generation attempt"""
    scene_id: str
    track: str
    status: str
    artifact: Optional[dict] = None
    task_id: Optional[str] = None


def _default_enqueue(task_id: str, principal: str) -> bool:
    from redis_client import redis_client
    return redis_client.enqueue_reconcile(task_id, principal)


class SingleUnitGenerator:
    """
    Usage:
        generator = SingleUnitGenerator(db)
        result = await generator.generate("user-1", scene_id, Track.IMAGE)
    """

    def __init__(
        self,
        db: Session,
        image_provider: Optional[MediaProvider] = None,
        video_provider: Optional[MediaProvider] = None,
        media: Optional[MediaPersister] = None,
        enqueue_reconcile: Optional[Callable[[str, str], bool]] = None,
    ):
        self.db = db
        self.projects = ProjectRepository(db)
        self.ledger = StatusLedger(db, self.projects)
        self.artifacts = ArtifactStore(db, self.projects)
        self._image_provider = image_provider
        self._video_provider = video_provider
        self.media = media or MediaPersister()
        self.enqueue_reconcile = enqueue_reconcile or _default_enqueue

    def provider_for(self, track: str) -> MediaProvider:
        if Track.validate(track) == Track.IMAGE:
            if self._image_provider is None:
                self._image_provider = get_image_provider()
            return self._image_provider
        if self._video_provider is None:
            self._video_provider = get_video_provider()
        return self._video_provider

    def _check_preconditions(self, principal: str, scene: Scene, track: str) -> Optional[str]:
        """
        Validate cross-track gating before anything is written.

        Returns:
            Upstream image URL for video generation, else None
        """
        if track == Track.IMAGE:
            if not scene.description_confirmed:
                raise PreconditionError(
                    "Scene description must be confirmed before generating an image",
                    {"scene_id": scene.id},
                )
            return None

        if not scene.image_confirmed:
            raise PreconditionError(
                "Scene image must be confirmed before generating a video",
                {"scene_id": scene.id},
            )
        image = self.artifacts.get_latest(principal, scene.id, Track.IMAGE)
        if image is None or not image.url:
            raise NoUpstreamArtifactError(scene.id)
        return image.url

    async def generate(
        self,
        principal: str,
        scene_id: str,
        track: str,
        allowed_from: Iterable[str] = SINGLE_ALLOWED_FROM,
    ) -> UnitResult:
        """
        Run one generation attempt for a scene's track.

        Raises:
            OwnershipError: Scene missing or not owned by principal
            PreconditionError / NoUpstreamArtifactError: Gating not satisfied (nothing written)
            GenerationInProgressError: Track already processing
            AIGenerationError and other PipelineErrors: Attempt failed; track left as failed
        """
        Track.validate(track)
        scene = self.projects.get_owned_scene(principal, scene_id)
        image_url = self._check_preconditions(principal, scene, track)

        lease = self.ledger.begin_generation(principal, scene_id, track, allowed_from)
        provider = self.provider_for(track)
        log = logger.bind(scene_id=scene_id, track=track, provider=provider.name, lease=lease)

        try:
            request = GenerationRequest(
                prompt=(scene.visual_prompt or scene.description) if track == Track.IMAGE else scene.description,
                style=scene.project.style,
                image_url=image_url,
            )
            outcome = await provider.submit(request)

            if isinstance(outcome, JobHandle):
                return self._record_submitted(principal, scene, track, outcome, log)
            return await self._record_immediate(principal, scene, track, lease, outcome, log)

        except Exception as e:
            message = e.message if isinstance(e, PipelineError) else str(e)
            self.ledger.finish_generation(scene_id, track, lease, MediaStatus.FAILED, message)
            log.error("unit_generation_failed", error=message, error_type=type(e).__name__)
            raise

    async def _record_immediate(
        self,
        principal: str,
        scene: Scene,
        track: str,
        lease: int,
        result: ImmediateResult,
        log,
    ) -> UnitResult:
        version = self.artifacts.next_version(scene.id, track)
        stored = await self.media.persist(result.url, scene.project_id, scene.id, track, version)

        metadata = stored.as_metadata()
        if track == Track.IMAGE:
            metadata.setdefault("width", result.width)
            metadata.setdefault("height", result.height)
        else:
            metadata["duration"] = result.duration

        artifact = self.artifacts.create_artifact(principal, scene.id, track, commit=False, **metadata)
        if not self.ledger.finish_generation(scene.id, track, lease, MediaStatus.COMPLETED):
            # A newer attempt owns the track; the artifact row was rolled back
            await self.media.discard(stored.storage_path)
            raise GenerationInProgressError(scene.id, track)

        log.info("unit_generation_completed", artifact_id=artifact.id, version=artifact.version)
        return UnitResult(
            scene_id=scene.id,
            track=track,
            status=MediaStatus.COMPLETED,
            artifact=artifact.to_dict(),
        )

    def _record_submitted(self, principal: str, scene: Scene, track: str, handle: JobHandle, log) -> UnitResult:
        placeholder = self.artifacts.create_video_placeholder(principal, scene.id, handle.task_id, handle.provider)
        log.info("video_task_submitted", task_id=handle.task_id, version=placeholder.version)

        try:
            self.enqueue_reconcile(handle.task_id, principal)
        except Exception as e:
            # Client-driven polling still resolves the task
            log.warning("reconcile_enqueue_failed", task_id=handle.task_id, error=str(e))

        return UnitResult(
            scene_id=scene.id,
            track=track,
            status=MediaStatus.PROCESSING,
            artifact=placeholder.to_dict(),
            task_id=handle.task_id,
        )
