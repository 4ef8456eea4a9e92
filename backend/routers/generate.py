"""
Generation endpoint router

Scene planning, single-scene and batch image/video generation, and
reconciliation of async video tasks. Errors are PipelineErrors and are
turned into responses by the handler registered in main.py:
400 precondition, 404 ownership, 409 in progress, 502 provider.
"""

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db
from models import Track
from pipeline.generator import SingleUnitGenerator, UnitResult
from pipeline.orchestrator import BatchOrchestrator, BatchResult
from pipeline.reconciler import PollResult, ReconcileSummary, Reconciler
from pipeline.scene_planner import ScenePlanner
from schemas import ErrorResponse, ProjectIdRequest, ScenesResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/api/generate", tags=["Generation"])

GENERATION_ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


# Dependency providers; tests override these with fakes


def get_scene_planner(db: Session = Depends(get_db)) -> ScenePlanner:
    return ScenePlanner(db)


def get_generator(db: Session = Depends(get_db)) -> SingleUnitGenerator:
    return SingleUnitGenerator(db)


def get_orchestrator(generator: SingleUnitGenerator = Depends(get_generator)) -> BatchOrchestrator:
    return BatchOrchestrator(generator.db, generator)


def get_reconciler(db: Session = Depends(get_db)) -> Reconciler:
    return Reconciler(db)


# ===== Scene planning =====


@router.post(
    "/scenes",
    response_model=ScenesResponse,
    status_code=201,
    summary="Generate Scenes",
    description="""
Split the project's story into ordered scenes.

Replaces any existing scenes (and their artifacts) and moves the project to
the `scenes` stage.
""",
    responses=GENERATION_ERRORS,
)
async def generate_scenes(
    request: ProjectIdRequest,
    principal: str = Depends(get_current_user),
    planner: ScenePlanner = Depends(get_scene_planner),
):
    scenes = await planner.generate_scenes(principal, request.project_id)
    return ScenesResponse(
        project_id=request.project_id,
        scenes=[scene.to_dict() for scene in scenes],
        message=f"Generated {len(scenes)} scenes",
    )


@router.post(
    "/scenes/regenerate",
    response_model=ScenesResponse,
    status_code=201,
    summary="Regenerate Scenes",
    description="Same as /scenes, asking the model for a different take on the story.",
    responses=GENERATION_ERRORS,
)
async def regenerate_scenes(
    request: ProjectIdRequest,
    principal: str = Depends(get_current_user),
    planner: ScenePlanner = Depends(get_scene_planner),
):
    scenes = await planner.regenerate_scenes(principal, request.project_id)
    return ScenesResponse(
        project_id=request.project_id,
        scenes=[scene.to_dict() for scene in scenes],
        message=f"Regenerated {len(scenes)} scenes",
    )


# ===== Single scene =====


@router.post(
    "/image/{scene_id}",
    response_model=UnitResult,
    summary="Generate Scene Image",
    description="Generate (or regenerate) one scene's image. Requires a confirmed description.",
    responses=GENERATION_ERRORS,
)
async def generate_image(
    scene_id: str,
    principal: str = Depends(get_current_user),
    generator: SingleUnitGenerator = Depends(get_generator),
):
    return await generator.generate(principal, scene_id, Track.IMAGE)


@router.post(
    "/video/{scene_id}",
    response_model=UnitResult,
    summary="Generate Scene Video",
    description="""
Generate (or regenerate) one scene's video from its confirmed image.

Async providers return `status: processing` with a `task_id`; poll
`/api/generate/video/status/{task_id}` until it is terminal.
""",
    responses=GENERATION_ERRORS,
)
async def generate_video(
    scene_id: str,
    principal: str = Depends(get_current_user),
    generator: SingleUnitGenerator = Depends(get_generator),
):
    return await generator.generate(principal, scene_id, Track.VIDEO)


# ===== Batch =====


@router.post(
    "/images",
    response_model=BatchResult,
    summary="Generate All Images",
    description="""
Generate images for every scene whose description is confirmed and whose
image is pending or failed. Scenes run one at a time; per-scene failures are
reported in `results`, never raised.
""",
    responses={404: {"model": ErrorResponse}},
)
async def generate_images(
    request: ProjectIdRequest,
    principal: str = Depends(get_current_user),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.run_batch(principal, request.project_id, Track.IMAGE)


@router.post(
    "/videos",
    response_model=BatchResult,
    summary="Generate All Videos",
    description="Batch video generation for every scene with a confirmed image.",
    responses={404: {"model": ErrorResponse}},
)
async def generate_videos(
    request: ProjectIdRequest,
    principal: str = Depends(get_current_user),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.run_batch(principal, request.project_id, Track.VIDEO)


# ===== Reconciliation =====


@router.get(
    "/video/status/{task_id}",
    response_model=PollResult,
    summary="Poll Video Task",
    description="""
Query the provider once for an async video task and apply the outcome.

`terminal: false` means the task is still running; poll again in about
five seconds.
""",
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def video_status(
    task_id: str,
    principal: str = Depends(get_current_user),
    reconciler: Reconciler = Depends(get_reconciler),
):
    return await reconciler.poll_one(principal, task_id)


@router.post(
    "/reconcile/{project_id}",
    response_model=ReconcileSummary,
    summary="Reconcile Project",
    description="Poll every in-flight video task of a project once.",
    responses={404: {"model": ErrorResponse}},
)
async def reconcile_project(
    project_id: str,
    principal: str = Depends(get_current_user),
    reconciler: Reconciler = Depends(get_reconciler),
):
    return await reconciler.reconcile_project(principal, project_id)
