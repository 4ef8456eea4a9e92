"""
Project and scene data access, scoped by the acting principal.

Every lookup filters on the project's owner; anything missing or owned by
someone else surfaces as OwnershipError.
"""

from typing import Dict, List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Image, MediaStatus, Project, ProjectStage, Scene, Track, Video
from pipeline.error_handler import OwnershipError, PreconditionError, ValidationError

logger = structlog.get_logger()

ELIGIBLE_STATUSES = (MediaStatus.PENDING, MediaStatus.FAILED)


class ProjectRepository:
    """
    Data-access layer for projects and their scenes.

    Usage:
        repo = ProjectRepository(db)
        project = repo.create_project("user-1", "My story", "Once upon...", "anime")
        scenes = repo.get_units_eligible_for("user-1", project.id, Track.IMAGE)
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Ownership-scoped lookups
    # ------------------------------------------------------------------

    def get_owned_project(self, principal: str, project_id: str) -> Project:
        project = (
            self.db.query(Project)
            .filter(Project.id == project_id, Project.owner_id == principal)
            .first()
        )
        if project is None:
            raise OwnershipError("project", project_id)
        return project

    def get_owned_scene(self, principal: str, scene_id: str) -> Scene:
        scene = (
            self.db.query(Scene)
            .join(Project, Scene.project_id == Project.id)
            .filter(Scene.id == scene_id, Project.owner_id == principal)
            .first()
        )
        if scene is None:
            raise OwnershipError("scene", scene_id)
        return scene

    def list_scenes(self, principal: str, project_id: str) -> List[Scene]:
        self.get_owned_project(principal, project_id)
        return (
            self.db.query(Scene)
            .filter(Scene.project_id == project_id)
            .order_by(Scene.order_index.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Project CRUD
    # ------------------------------------------------------------------

    def create_project(self, principal: str, title: str, story: str, style: str) -> Project:
        if not story or not story.strip():
            raise ValidationError("Story must not be empty", field="story")
        if not title or not title.strip():
            raise ValidationError("Title must not be empty", field="title")

        project = Project(
            owner_id=principal,
            title=title.strip(),
            story=story,
            style=style,
            stage=ProjectStage.DRAFT,
        )
        self.db.add(project)
        self.db.commit()
        self.db.refresh(project)

        logger.info("project_created", project_id=project.id, owner_id=principal, style=style)
        return project

    def list_projects(self, principal: str) -> List[Dict]:
        """
        Projects newest first, each with a scene count and a cover image
        (latest image of the first scene, when there is one).
        """
        projects = (
            self.db.query(Project)
            .filter(Project.owner_id == principal)
            .order_by(Project.created_at.desc())
            .all()
        )
        if not projects:
            return []

        project_ids = [p.id for p in projects]
        counts = dict(
            self.db.query(Scene.project_id, func.count(Scene.id))
            .filter(Scene.project_id.in_(project_ids))
            .group_by(Scene.project_id)
            .all()
        )

        summaries = []
        for project in projects:
            summary = project.to_dict()
            summary["scene_count"] = counts.get(project.id, 0)
            summary["cover_url"] = self._cover_url(project.id)
            summaries.append(summary)
        return summaries

    def _cover_url(self, project_id: str) -> Optional[str]:
        first_scene = (
            self.db.query(Scene)
            .filter(Scene.project_id == project_id)
            .order_by(Scene.order_index.asc())
            .first()
        )
        if first_scene is None:
            return None
        image = (
            self.db.query(Image)
            .filter(Image.scene_id == first_scene.id)
            .order_by(Image.version.desc())
            .first()
        )
        return image.url if image else None

    def get_project_detail(self, principal: str, project_id: str) -> Dict:
        """Project with ordered scenes, each carrying its latest image and video."""
        project = self.get_owned_project(principal, project_id)
        detail = project.to_dict()
        detail["scenes"] = []

        for scene in self.list_scenes(principal, project_id):
            scene_dict = scene.to_dict()
            latest_image = (
                self.db.query(Image)
                .filter(Image.scene_id == scene.id)
                .order_by(Image.version.desc())
                .first()
            )
            latest_video = (
                self.db.query(Video)
                .filter(Video.scene_id == scene.id)
                .order_by(Video.version.desc())
                .first()
            )
            scene_dict["image"] = latest_image.to_dict() if latest_image else None
            scene_dict["video"] = latest_video.to_dict() if latest_video else None
            detail["scenes"].append(scene_dict)

        return detail

    def update_project(self, principal: str, project_id: str, title: Optional[str] = None) -> Project:
        project = self.get_owned_project(principal, project_id)
        if title is not None:
            if not title.strip():
                raise ValidationError("Title must not be empty", field="title")
            project.title = title.strip()
        self.db.commit()
        self.db.refresh(project)
        return project

    def delete_project(self, principal: str, project_id: str) -> None:
        """Delete a project; scenes and artifacts go with it."""
        project = self.get_owned_project(principal, project_id)
        self.db.delete(project)
        self.db.commit()
        logger.info("project_deleted", project_id=project_id, owner_id=principal)

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------

    def advance_stage(self, principal: str, project_id: str, stage: str) -> bool:
        """
        Move the project forward to `stage`.

        Targets at or behind the current stage are a no-op; backward moves
        go through reenter_stage only.

        Returns:
            True if the stage changed
        """
        project = self.get_owned_project(principal, project_id)
        if ProjectStage.rank(stage) <= ProjectStage.rank(project.stage):
            return False

        previous = project.stage
        project.stage = stage
        self.db.commit()

        logger.info("project_stage_advanced", project_id=project_id, from_stage=previous, to_stage=stage)
        return True

    def reenter_stage(self, principal: str, project_id: str, stage: str) -> Project:
        """Operator-initiated backward transition to an earlier stage."""
        project = self.get_owned_project(principal, project_id)
        if stage not in ProjectStage.all_stages():
            raise ValidationError(f"Unknown stage: {stage}", field="stage")
        if ProjectStage.rank(stage) >= ProjectStage.rank(project.stage):
            raise PreconditionError(
                f"Cannot re-enter stage '{stage}' from '{project.stage}'; only earlier stages can be re-entered",
                {"project_id": project_id, "current_stage": project.stage, "target_stage": stage},
            )

        previous = project.stage
        project.stage = stage
        self.db.commit()
        self.db.refresh(project)

        logger.info("project_stage_reentered", project_id=project_id, from_stage=previous, to_stage=stage)
        return project

    # ------------------------------------------------------------------
    # Scenes
    # ------------------------------------------------------------------

    def get_units_eligible_for(self, principal: str, project_id: str, track: str) -> List[Scene]:
        """
        Scenes a batch may generate for `track`, in ascending order_index.

        Images need a confirmed description; videos need a confirmed image.
        Only pending or failed tracks are eligible.
        """
        self.get_owned_project(principal, project_id)
        Track.validate(track)

        query = self.db.query(Scene).filter(Scene.project_id == project_id)
        if track == Track.IMAGE:
            query = query.filter(
                Scene.description_confirmed.is_(True),
                Scene.image_status.in_(ELIGIBLE_STATUSES),
            )
        else:
            query = query.filter(
                Scene.image_confirmed.is_(True),
                Scene.video_status.in_(ELIGIBLE_STATUSES),
            )
        return query.order_by(Scene.order_index.asc()).all()

    def replace_scenes(self, principal: str, project_id: str, planned: List[Dict]) -> List[Scene]:
        """
        Replace every scene of a project with a freshly planned set and move
        the project to the scenes stage.

        Args:
            planned: Dicts with order_index, description and visual_prompt

        Returns:
            The new scenes in order
        """
        project = self.get_owned_project(principal, project_id)

        old_scenes = self.db.query(Scene).filter(Scene.project_id == project_id).all()
        for scene in old_scenes:
            self.db.delete(scene)
        self.db.flush()

        scenes = [
            Scene(
                project_id=project_id,
                order_index=item["order_index"],
                description=item["description"],
                visual_prompt=item.get("visual_prompt") or item["description"],
            )
            for item in planned
        ]
        self.db.add_all(scenes)

        previous = project.stage
        project.stage = ProjectStage.SCENES
        self.db.commit()
        self.db.expire(project, ["scenes"])
        for scene in scenes:
            self.db.refresh(scene)

        logger.info(
            "project_scenes_replaced",
            project_id=project_id,
            scene_count=len(scenes),
            from_stage=previous,
        )
        return sorted(scenes, key=lambda s: s.order_index)
