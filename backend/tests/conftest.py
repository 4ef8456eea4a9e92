"""
Shared pytest fixtures.

Settings are read from the environment when config is first imported, so the
test environment is set up here before any application module is loaded.
"""

import os
import sys
import tempfile
from itertools import count
from typing import List, Optional

_backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

_media_dir = tempfile.mkdtemp(prefix="story-video-media-")

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["LOCAL_STORAGE_DIR"] = _media_dir
os.environ["PUBLIC_BASE_URL"] = "http://testserver/media"
os.environ["PROVIDER_RETRY_DELAY"] = "0"
os.environ["PROVIDER_MAX_RETRIES"] = "3"
os.environ["API_KEY"] = ""
os.environ["DEBUG"] = "false"

import pytest
from unittest.mock import AsyncMock, Mock

from database import Base, SessionLocal, engine
from models import MediaStatus, Project, ProjectStage, Scene
from pipeline.error_handler import AIGenerationError
from pipeline.media import MediaPersister, StoredMedia
from services.providers import (
    GenerationRequest,
    ImmediateResult,
    JobHandle,
    JobResult,
    JobStatus,
    MediaProvider,
    reset_providers,
)
from services.storage_backend import reset_storage_backend


class FakeImageProvider(MediaProvider):
    """Synchronous image provider; fails for prompts listed in fail_prompts."""

    name = "fake-image"

    def __init__(self, fail_prompts=()):
        self.fail_prompts = set(fail_prompts)
        self.requests: List[GenerationRequest] = []

    async def submit(self, request: GenerationRequest):
        self.requests.append(request)
        if request.prompt in self.fail_prompts:
            raise AIGenerationError(self.name, "submit failed: vendor unavailable")
        return ImmediateResult(url=f"https://vendor.example/{len(self.requests)}.png", width=1280, height=720)

    async def query(self, task_id: str) -> JobResult:
        return JobResult(task_id=task_id, status=JobStatus.COMPLETED)


class FakeVideoProvider(MediaProvider):
    """Asynchronous video provider whose job outcomes are set by the test."""

    name = "fake-video"

    def __init__(self):
        self._ids = count(1)
        self.requests: List[GenerationRequest] = []
        self.outcomes = {}
        self.default_status = JobStatus.PROCESSING

    async def submit(self, request: GenerationRequest):
        self.requests.append(request)
        return JobHandle(task_id=f"task-{next(self._ids)}", provider=self.name)

    def resolve(self, task_id: str, status: JobStatus, url: Optional[str] = None, error: Optional[str] = None):
        self.outcomes[task_id] = JobResult(task_id=task_id, status=status, url=url, error=error, duration=5.0)

    async def query(self, task_id: str) -> JobResult:
        return self.outcomes.get(task_id, JobResult(task_id=task_id, status=self.default_status))


@pytest.fixture(autouse=True)
def _reset_cached_singletons():
    reset_providers()
    reset_storage_backend()
    yield
    reset_providers()
    reset_storage_backend()


@pytest.fixture
def db():
    """Fresh schema per test on the shared in-memory database"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def principal():
    return "user-1"


@pytest.fixture
def other_principal():
    return "user-2"


@pytest.fixture
def make_project(db, principal):
    def _make(owner: Optional[str] = None, stage: str = ProjectStage.DRAFT, style: str = "watercolor") -> Project:
        project = Project(
            owner_id=owner or principal,
            title="The Lighthouse Keeper",
            story="An old keeper finds a message in a bottle.",
            style=style,
            stage=stage,
        )
        db.add(project)
        db.commit()
        return project
    return _make


@pytest.fixture
def make_scenes(db):
    def _make(project: Project, n: int = 3, **fields) -> List[Scene]:
        scenes = [
            Scene(
                project_id=project.id,
                order_index=i + 1,
                description=f"Scene {i + 1}",
                visual_prompt=f"visual {i + 1}",
                **fields,
            )
            for i in range(n)
        ]
        db.add_all(scenes)
        db.commit()
        return scenes
    return _make


@pytest.fixture
def image_provider():
    return FakeImageProvider()


@pytest.fixture
def video_provider():
    return FakeVideoProvider()


@pytest.fixture
def media():
    """MediaPersister that stores nothing and returns deterministic locations"""
    persister = Mock(spec=MediaPersister)

    async def persist(url, project_id, scene_id, track, version):
        folder = "images" if track == "image" else "videos"
        ext = "png" if track == "image" else "mp4"
        path = f"{project_id}/{scene_id}/{folder}/v{version}.{ext}"
        return StoredMedia(path, f"http://testserver/media/{path}")

    persister.persist = AsyncMock(side_effect=persist)
    persister.remove_scene_media = AsyncMock(return_value=0)
    persister.remove_project_media = AsyncMock(return_value=0)
    persister.discard = AsyncMock(return_value=True)
    return persister


@pytest.fixture
def enqueue():
    return Mock(return_value=True)


@pytest.fixture
def generator(db, image_provider, video_provider, media, enqueue):
    from pipeline.generator import SingleUnitGenerator
    return SingleUnitGenerator(
        db,
        image_provider=image_provider,
        video_provider=video_provider,
        media=media,
        enqueue_reconcile=enqueue,
    )


@pytest.fixture
def ready_for_video(db, make_project, make_scenes):
    """A project whose scenes all have a confirmed, completed image"""
    from models import Image

    def _make(n: int = 1):
        project = make_project(stage=ProjectStage.IMAGES)
        scenes = make_scenes(
            project,
            n,
            description_confirmed=True,
            image_status=MediaStatus.COMPLETED,
            image_confirmed=True,
        )
        for scene in scenes:
            db.add(Image(
                scene_id=scene.id,
                storage_path=f"{project.id}/{scene.id}/images/v1.png",
                url=f"http://testserver/media/{scene.id}.png",
                width=1280,
                height=720,
                version=1,
            ))
        db.commit()
        return project, scenes
    return _make
