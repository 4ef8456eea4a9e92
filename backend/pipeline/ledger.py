"""
Per-scene status ledger for the image and video tracks.

The ledger is the authoritative store of where each scene's media stands.
Ordinary writes are last-writer-wins; the one exception is the transition
into "processing", which is a compare-and-swap on (status, lease) so that
two concurrent triggers for the same scene and track cannot both proceed.
"""

from typing import Iterable, Optional

import structlog
from pydantic import BaseModel
from sqlalchemy.orm import Session

from models import MediaStatus, Scene, Track
from pipeline.error_handler import GenerationInProgressError, PreconditionError, ValidationError
from pipeline.projects import ProjectRepository

logger = structlog.get_logger()


class TrackSnapshot(BaseModel):
    status: str
    confirmed: bool
    error: Optional[str] = None
    lease: int = 0


class UnitSnapshot(BaseModel):
    """Point-in-time view of one scene's ledger fields"""
    scene_id: str
    project_id: str
    order_index: int
    description_confirmed: bool
    image: TrackSnapshot
    video: TrackSnapshot

    @classmethod
    def from_scene(cls, scene: Scene) -> "UnitSnapshot":
        return cls(
            scene_id=scene.id,
            project_id=scene.project_id,
            order_index=scene.order_index,
            description_confirmed=scene.description_confirmed,
            image=TrackSnapshot(
                status=scene.image_status,
                confirmed=scene.image_confirmed,
                error=scene.image_error,
                lease=scene.image_lease,
            ),
            video=TrackSnapshot(
                status=scene.video_status,
                confirmed=scene.video_confirmed,
                error=scene.video_error,
                lease=scene.video_lease,
            ),
        )

    def track(self, track: str) -> TrackSnapshot:
        return self.image if Track.validate(track) == Track.IMAGE else self.video


def _columns(track: str):
    prefix = Track.validate(track)
    return (
        getattr(Scene, f"{prefix}_status"),
        getattr(Scene, f"{prefix}_confirmed"),
        getattr(Scene, f"{prefix}_error"),
        getattr(Scene, f"{prefix}_lease"),
    )


class StatusLedger:
    """
    Reads and writes scene track status on behalf of a principal.

    Usage:
        ledger = StatusLedger(db)
        lease = ledger.begin_generation("user-1", scene_id, Track.IMAGE)
        ...
        ledger.finish_generation(scene_id, Track.IMAGE, lease, MediaStatus.COMPLETED)
    """

    def __init__(self, db: Session, projects: Optional[ProjectRepository] = None):
        self.db = db
        self.projects = projects or ProjectRepository(db)

    def read(self, principal: str, scene_id: str) -> UnitSnapshot:
        scene = self.projects.get_owned_scene(principal, scene_id)
        self.db.refresh(scene)
        return UnitSnapshot.from_scene(scene)

    def set_status(
        self,
        principal: str,
        scene_id: str,
        track: str,
        status: str,
        error: Optional[str] = None,
    ) -> UnitSnapshot:
        """Unconditional status write (last writer wins)."""
        if status not in MediaStatus.all_statuses():
            raise ValidationError(f"Unknown status: {status}", field="status")

        scene = self.projects.get_owned_scene(principal, scene_id)
        prefix = Track.validate(track)
        setattr(scene, f"{prefix}_status", status)
        setattr(scene, f"{prefix}_error", error if status == MediaStatus.FAILED else None)
        self.db.commit()

        logger.info("track_status_set", scene_id=scene_id, track=track, status=status)
        return UnitSnapshot.from_scene(scene)

    def set_confirmed(self, principal: str, scene_id: str, track: str) -> UnitSnapshot:
        """
        Confirm a completed track.

        Confirming an already-confirmed track is a no-op that still succeeds.
        """
        scene = self.projects.get_owned_scene(principal, scene_id)
        if scene.track_confirmed(track):
            return UnitSnapshot.from_scene(scene)

        if scene.track_status(track) != MediaStatus.COMPLETED:
            raise PreconditionError(
                f"{track.capitalize()} must be completed before it can be confirmed",
                {"scene_id": scene_id, "track": track, "status": scene.track_status(track)},
            )

        setattr(scene, f"{Track.validate(track)}_confirmed", True)
        self.db.commit()

        logger.info("track_confirmed", scene_id=scene_id, track=track)
        return UnitSnapshot.from_scene(scene)

    def confirm_description(self, principal: str, scene_id: str) -> UnitSnapshot:
        """Idempotent; the flag only ever moves from false to true."""
        scene = self.projects.get_owned_scene(principal, scene_id)
        if not scene.description_confirmed:
            scene.description_confirmed = True
            self.db.commit()
            logger.info("description_confirmed", scene_id=scene_id)
        return UnitSnapshot.from_scene(scene)

    def update_description(self, principal: str, scene_id: str, description: str) -> Scene:
        scene = self.projects.get_owned_scene(principal, scene_id)
        if scene.description_confirmed:
            raise PreconditionError(
                "Description is confirmed and can no longer be edited",
                {"scene_id": scene_id},
            )
        if not description or not description.strip():
            raise ValidationError("Description must not be empty", field="description")

        scene.description = description
        self.db.commit()
        return scene

    def begin_generation(
        self,
        principal: str,
        scene_id: str,
        track: str,
        allowed_from: Iterable[str] = (MediaStatus.PENDING, MediaStatus.FAILED, MediaStatus.COMPLETED),
    ) -> int:
        """
        Move a track into "processing" and take its lease.

        The UPDATE only matches if status and lease are still what we read,
        so of two racing triggers exactly one wins. The same write clears the
        track's confirmed flag and previous error.

        Returns:
            The new lease value, to be passed to finish_generation

        Raises:
            GenerationInProgressError: Track already processing, or the swap was lost
            PreconditionError: Current status is not a permitted starting point
        """
        scene = self.projects.get_owned_scene(principal, scene_id)
        self.db.refresh(scene)
        observed_status = scene.track_status(track)
        observed_lease = scene.track_lease(track)

        if observed_status == MediaStatus.PROCESSING:
            raise GenerationInProgressError(scene_id, track)
        if observed_status not in tuple(allowed_from):
            raise PreconditionError(
                f"{track.capitalize()} cannot be generated from status '{observed_status}'",
                {"scene_id": scene_id, "track": track, "status": observed_status},
            )

        status_col, confirmed_col, error_col, lease_col = _columns(track)
        new_lease = observed_lease + 1
        updated = (
            self.db.query(Scene)
            .filter(
                Scene.id == scene_id,
                status_col == observed_status,
                lease_col == observed_lease,
            )
            .update(
                {
                    status_col: MediaStatus.PROCESSING,
                    lease_col: new_lease,
                    confirmed_col: False,
                    error_col: None,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()

        if updated != 1:
            logger.warning("generation_lease_lost", scene_id=scene_id, track=track, lease=observed_lease)
            raise GenerationInProgressError(scene_id, track)

        self.db.refresh(scene)
        logger.info("unit_generation_started", scene_id=scene_id, track=track, lease=new_lease)
        return new_lease

    def finish_generation(
        self,
        scene_id: str,
        track: str,
        lease: int,
        status: str,
        error: Optional[str] = None,
    ) -> bool:
        """
        Leave "processing" for a terminal status, guarded by the lease.

        Anything pending in the session (such as the new artifact) is
        committed with the status change, or rolled back with it when the
        lease is stale.

        Returns:
            False if a newer attempt holds the lease; nothing is written
        """
        if status not in (MediaStatus.COMPLETED, MediaStatus.FAILED):
            raise ValidationError(f"Not a terminal status: {status}", field="status")

        status_col, _, error_col, lease_col = _columns(track)
        updated = (
            self.db.query(Scene)
            .filter(
                Scene.id == scene_id,
                status_col == MediaStatus.PROCESSING,
                lease_col == lease,
            )
            .update(
                {status_col: status, error_col: error if status == MediaStatus.FAILED else None},
                synchronize_session=False,
            )
        )
        if updated != 1:
            self.db.rollback()
            self._refresh_cached(scene_id)
            logger.warning("stale_generation_result", scene_id=scene_id, track=track, lease=lease, status=status)
            return False

        self.db.commit()
        self._refresh_cached(scene_id)
        return True

    def finish_reconciliation(self, scene_id: str, track: str, status: str, error: Optional[str] = None) -> bool:
        """
        Terminal write for an async task resolved by reconciliation.

        Only applies while the track is still processing.
        """
        scene = self.db.query(Scene).filter(Scene.id == scene_id).first()
        if scene is None:
            return False
        self.db.refresh(scene)
        return self.finish_generation(scene_id, track, scene.track_lease(track), status, error)

    def _refresh_cached(self, scene_id: str) -> None:
        # Bulk UPDATEs bypass the identity map
        scene = self.db.get(Scene, scene_id)
        if scene is not None:
            self.db.refresh(scene)
