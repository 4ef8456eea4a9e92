"""
Versioned artifact storage for scene images and videos.

Artifacts are append-only: every generation adds a new version and older
versions are kept as history. The single permitted update is filling in a
video placeholder once its async task resolves, keyed by the task id.
"""

from datetime import datetime, timezone
from typing import List, Optional, Union

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Image, MediaStatus, Project, Scene, Track, Video
from pipeline.error_handler import OwnershipError
from pipeline.projects import ProjectRepository

logger = structlog.get_logger()

Artifact = Union[Image, Video]


class ArtifactStore:
    """
    Usage:
        store = ArtifactStore(db)
        image = store.create_artifact("user-1", scene_id, Track.IMAGE,
                                      storage_path="p/s/images/v1.png", url="...",
                                      width=1280, height=720)
        latest = store.get_latest("user-1", scene_id, Track.IMAGE)
    """

    def __init__(self, db: Session, projects: Optional[ProjectRepository] = None):
        self.db = db
        self.projects = projects or ProjectRepository(db)

    def next_version(self, scene_id: str, track: str) -> int:
        model = Track.model_for(track)
        current = self.db.query(func.max(model.version)).filter(model.scene_id == scene_id).scalar()
        return (current or 0) + 1

    def create_artifact(
        self,
        principal: str,
        scene_id: str,
        track: str,
        commit: bool = True,
        **metadata,
    ) -> Artifact:
        """
        Insert the next version of an artifact for a scene and track.

        Args:
            commit: When False the row is only flushed, so the caller can
                commit it together with a ledger write
            **metadata: Column values (storage_path, url, width, height,
                duration, task_id, provider, submitted_at)
        """
        self.projects.get_owned_scene(principal, scene_id)
        model = Track.model_for(track)

        artifact = model(scene_id=scene_id, version=self.next_version(scene_id, track), **metadata)
        self.db.add(artifact)
        if commit:
            self.db.commit()
            self.db.refresh(artifact)
        else:
            self.db.flush()

        logger.info(
            "artifact_created",
            scene_id=scene_id,
            track=track,
            artifact_id=artifact.id,
            version=artifact.version,
        )
        return artifact

    def create_video_placeholder(self, principal: str, scene_id: str, task_id: str, provider: str) -> Video:
        """Record a submitted video task before its media exists."""
        return self.create_artifact(
            principal,
            scene_id,
            Track.VIDEO,
            storage_path="",
            url="",
            task_id=task_id,
            provider=provider,
            submitted_at=datetime.now(timezone.utc),
        )

    def update_placeholder(
        self,
        task_id: str,
        storage_path: str,
        url: str,
        duration: Optional[float] = None,
        commit: bool = True,
    ) -> Optional[Video]:
        """
        Fill in the location of a resolved video task.

        The UPDATE only matches while the location is still empty, so of two
        racing polls exactly one fills the placeholder.

        Returns:
            The filled video, or None if it was already filled

        Raises:
            OwnershipError: No video carries this task id
        """
        video = self.db.query(Video).filter(Video.task_id == task_id).first()
        if video is None:
            raise OwnershipError("video", task_id)

        values = {Video.storage_path: storage_path, Video.url: url}
        if duration is not None:
            values[Video.duration] = duration
        updated = (
            self.db.query(Video)
            .filter(Video.task_id == task_id, Video.storage_path == "")
            .update(values, synchronize_session=False)
        )

        if updated != 1:
            self.db.rollback()
            logger.warning("video_placeholder_already_filled", task_id=task_id, video_id=video.id)
            return None

        if commit:
            self.db.commit()
        else:
            self.db.flush()
        self.db.refresh(video)

        logger.info("video_placeholder_filled", task_id=task_id, video_id=video.id, version=video.version)
        return video

    def get_latest(self, principal: str, scene_id: str, track: str) -> Optional[Artifact]:
        self.projects.get_owned_scene(principal, scene_id)
        model = Track.model_for(track)
        return (
            self.db.query(model)
            .filter(model.scene_id == scene_id)
            .order_by(model.version.desc())
            .first()
        )

    def list_artifacts(self, principal: str, scene_id: str, track: str) -> List[Artifact]:
        """Full history for a scene and track, newest version first."""
        self.projects.get_owned_scene(principal, scene_id)
        model = Track.model_for(track)
        return (
            self.db.query(model)
            .filter(model.scene_id == scene_id)
            .order_by(model.version.desc())
            .all()
        )

    def get_video_by_task(self, principal: str, task_id: str) -> Video:
        video = (
            self.db.query(Video)
            .join(Scene, Video.scene_id == Scene.id)
            .join(Project, Scene.project_id == Project.id)
            .filter(Video.task_id == task_id, Project.owner_id == principal)
            .first()
        )
        if video is None:
            raise OwnershipError("video task", task_id)
        return video

    def list_pending_videos(self, principal: str, project_id: str) -> List[Video]:
        """Placeholders of a project whose scene is still processing its video."""
        self.projects.get_owned_project(principal, project_id)
        return (
            self.db.query(Video)
            .join(Scene, Video.scene_id == Scene.id)
            .filter(
                Scene.project_id == project_id,
                Scene.video_status == MediaStatus.PROCESSING,
                Video.storage_path == "",
                Video.task_id.isnot(None),
            )
            .order_by(Scene.order_index.asc(), Video.version.desc())
            .all()
        )
