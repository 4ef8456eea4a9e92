"""
SQLAlchemy database models
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey, Text, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value):
    return value.isoformat() if value else None


class Project(Base):
    """
    Project model: one submitted story and its progress through the pipeline

    Owns its scenes; deleting a project cascades to scenes and their media.
    """
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=_new_id)
    owner_id = Column(String, nullable=False, index=True)

    title = Column(String(255), nullable=False)
    story = Column(Text, nullable=False)  # Immutable once created
    style = Column(String(100), nullable=False)
    stage = Column(String(20), nullable=False, default="draft", index=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    scenes = relationship(
        "Scene",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Scene.order_index",
    )

    def __repr__(self):
        return f"<Project(id={self.id}, stage={self.stage}, title={self.title})>"

    def to_dict(self):
        """Convert project to dictionary"""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "story": self.story,
            "style": self.style,
            "stage": self.stage,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


class Scene(Base):
    """
    Scene model: one ordered unit of a project

    Carries the status ledger for both media tracks. The *_lease columns are
    bumped by every transition into "processing" and guard that transition
    with a compare-and-swap.
    """
    __tablename__ = "scenes"
    __table_args__ = (UniqueConstraint("project_id", "order_index", name="uq_scene_order"),)

    id = Column(String, primary_key=True, default=_new_id)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)

    order_index = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    visual_prompt = Column(Text, nullable=True)
    description_confirmed = Column(Boolean, nullable=False, default=False)

    # Image track
    image_status = Column(String(20), nullable=False, default="pending", index=True)
    image_confirmed = Column(Boolean, nullable=False, default=False)
    image_error = Column(Text, nullable=True)
    image_lease = Column(Integer, nullable=False, default=0)

    # Video track
    video_status = Column(String(20), nullable=False, default="pending", index=True)
    video_confirmed = Column(Boolean, nullable=False, default=False)
    video_error = Column(Text, nullable=True)
    video_lease = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    project = relationship("Project", back_populates="scenes")
    images = relationship("Image", back_populates="scene", cascade="all, delete-orphan", passive_deletes=True)
    videos = relationship("Video", back_populates="scene", cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return (
            f"<Scene(id={self.id}, order={self.order_index}, "
            f"image={self.image_status}, video={self.video_status})>"
        )

    def track_status(self, track: str) -> str:
        return getattr(self, f"{Track.validate(track)}_status")

    def track_confirmed(self, track: str) -> bool:
        return getattr(self, f"{Track.validate(track)}_confirmed")

    def track_lease(self, track: str) -> int:
        return getattr(self, f"{Track.validate(track)}_lease")

    def to_dict(self):
        """Convert scene to dictionary"""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "order_index": self.order_index,
            "description": self.description,
            "visual_prompt": self.visual_prompt,
            "description_confirmed": self.description_confirmed,
            "image_status": self.image_status,
            "image_confirmed": self.image_confirmed,
            "image_error": self.image_error,
            "video_status": self.video_status,
            "video_confirmed": self.video_confirmed,
            "video_error": self.video_error,
            "created_at": _isoformat(self.created_at),
        }


class Image(Base):
    """
    Image artifact: one versioned image generation result for a scene
    """
    __tablename__ = "images"
    __table_args__ = (UniqueConstraint("scene_id", "version", name="uq_image_version"),)

    id = Column(String, primary_key=True, default=_new_id)
    scene_id = Column(String, ForeignKey("scenes.id", ondelete="CASCADE"), nullable=False, index=True)

    storage_path = Column(Text, nullable=False)
    url = Column(Text, nullable=False)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    scene = relationship("Scene", back_populates="images")

    def __repr__(self):
        return f"<Image(id={self.id}, scene_id={self.scene_id}, version={self.version})>"

    def to_dict(self):
        """Convert image to dictionary"""
        return {
            "id": self.id,
            "scene_id": self.scene_id,
            "storage_path": self.storage_path,
            "url": self.url,
            "width": self.width,
            "height": self.height,
            "version": self.version,
            "created_at": _isoformat(self.created_at),
        }


class Video(Base):
    """
    Video artifact: one versioned video generation result for a scene

    Created as a placeholder (empty storage_path/url) when the vendor task is
    submitted, then filled in once by reconciliation, keyed by task_id.
    """
    __tablename__ = "videos"
    __table_args__ = (UniqueConstraint("scene_id", "version", name="uq_video_version"),)

    id = Column(String, primary_key=True, default=_new_id)
    scene_id = Column(String, ForeignKey("scenes.id", ondelete="CASCADE"), nullable=False, index=True)

    storage_path = Column(Text, nullable=False, default="")
    url = Column(Text, nullable=False, default="")
    duration = Column(Float, nullable=True)
    task_id = Column(String(255), nullable=True, unique=True, index=True)
    provider = Column(String(50), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    submitted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    scene = relationship("Scene", back_populates="videos")

    def __repr__(self):
        return f"<Video(id={self.id}, scene_id={self.scene_id}, version={self.version}, task={self.task_id})>"

    @property
    def is_placeholder(self) -> bool:
        return not self.storage_path

    def to_dict(self):
        """Convert video to dictionary"""
        return {
            "id": self.id,
            "scene_id": self.scene_id,
            "storage_path": self.storage_path,
            "url": self.url,
            "duration": self.duration,
            "task_id": self.task_id,
            "provider": self.provider,
            "version": self.version,
            "submitted_at": _isoformat(self.submitted_at),
            "created_at": _isoformat(self.created_at),
        }


# Project stage constants
class ProjectStage:
    """Constants for project stages, in pipeline order"""
    DRAFT = "draft"
    SCENES = "scenes"
    IMAGES = "images"
    VIDEOS = "videos"
    COMPLETED = "completed"

    @classmethod
    def all_stages(cls):
        """Get list of all stages in order"""
        return [cls.DRAFT, cls.SCENES, cls.IMAGES, cls.VIDEOS, cls.COMPLETED]

    @classmethod
    def rank(cls, stage: str) -> int:
        """Position of a stage in the pipeline order"""
        try:
            return cls.all_stages().index(stage)
        except ValueError:
            raise ValueError(f"Unknown stage: {stage}")


# Media status constants
class MediaStatus:
    """Constants for per-track status values"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def all_statuses(cls):
        return [cls.PENDING, cls.PROCESSING, cls.COMPLETED, cls.FAILED]


# Media track constants
class Track:
    """Constants for the two media tracks of a scene"""
    IMAGE = "image"
    VIDEO = "video"

    # Stage a project reaches once a batch for the track has a success
    STAGE_FOR_TRACK = {
        IMAGE: ProjectStage.IMAGES,
        VIDEO: ProjectStage.VIDEOS,
    }

    @classmethod
    def all_tracks(cls):
        return [cls.IMAGE, cls.VIDEO]

    @classmethod
    def validate(cls, track: str) -> str:
        if track not in (cls.IMAGE, cls.VIDEO):
            raise ValueError(f"Unknown track: {track}")
        return track

    @classmethod
    def model_for(cls, track: str):
        """Artifact model class for a track"""
        return Image if cls.validate(track) == cls.IMAGE else Video
