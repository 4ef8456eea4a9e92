"""
Scenes API Router.

Description editing, per-scene confirmation, bulk confirmation and artifact
history.
"""

import structlog
from fastapi import APIRouter, Depends
from typing import List
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db
from models import Track
from pipeline.artifact_store import ArtifactStore
from pipeline.error_handler import ValidationError
from pipeline.ledger import StatusLedger
from pipeline.orchestrator import BatchOrchestrator
from pipeline.projects import ProjectRepository
from schemas import (
    ConfirmAllResponse,
    ErrorResponse,
    ProjectIdRequest,
    SceneResponse,
    SceneUpdateRequest,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/scenes", tags=["Scenes"])

NOT_FOUND = {404: {"model": ErrorResponse}}
PRECONDITION = {400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}


def _scene_payload(db: Session, principal: str, scene_id: str) -> dict:
    scene = ProjectRepository(db).get_owned_scene(principal, scene_id)
    db.refresh(scene)
    return scene.to_dict()


# Bulk routes are declared before /{scene_id} routes so their paths win


@router.post(
    "/confirm-all-descriptions",
    response_model=ConfirmAllResponse,
    summary="Confirm All Descriptions",
    responses=NOT_FOUND,
)
async def confirm_all_descriptions(
    request: ProjectIdRequest,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    count = BatchOrchestrator(db).confirm_all_descriptions(principal, request.project_id)
    return ConfirmAllResponse(project_id=request.project_id, confirmed_count=count)


@router.post(
    "/confirm-all-images",
    response_model=ConfirmAllResponse,
    summary="Confirm All Images",
    description="Confirm every completed, unconfirmed scene image of a project.",
    responses=NOT_FOUND,
)
async def confirm_all_images(
    request: ProjectIdRequest,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    count = BatchOrchestrator(db).confirm_all(principal, request.project_id, Track.IMAGE)
    return ConfirmAllResponse(project_id=request.project_id, confirmed_count=count)


@router.post(
    "/confirm-all-videos",
    response_model=ConfirmAllResponse,
    summary="Confirm All Videos",
    description="""
Confirm every scene video and mark the project completed.

Every scene's video must be completed; otherwise nothing is confirmed and
400 is returned.
""",
    responses=PRECONDITION,
)
async def confirm_all_videos(
    request: ProjectIdRequest,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    count = BatchOrchestrator(db).confirm_all_videos(principal, request.project_id)
    stage = ProjectRepository(db).get_owned_project(principal, request.project_id).stage
    return ConfirmAllResponse(project_id=request.project_id, confirmed_count=count, stage=stage)


@router.patch(
    "/{scene_id}",
    response_model=SceneResponse,
    summary="Update Scene Description",
    responses=PRECONDITION,
)
async def update_scene(
    scene_id: str,
    request: SceneUpdateRequest,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Edit a description; rejected once the description is confirmed."""
    StatusLedger(db).update_description(principal, scene_id, request.description)
    return _scene_payload(db, principal, scene_id)


@router.post(
    "/{scene_id}/confirm-description",
    response_model=SceneResponse,
    summary="Confirm Scene Description",
    responses=NOT_FOUND,
)
async def confirm_description(
    scene_id: str,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    StatusLedger(db).confirm_description(principal, scene_id)
    return _scene_payload(db, principal, scene_id)


@router.post(
    "/{scene_id}/confirm-image",
    response_model=SceneResponse,
    summary="Confirm Scene Image",
    responses=PRECONDITION,
)
async def confirm_image(
    scene_id: str,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    StatusLedger(db).set_confirmed(principal, scene_id, Track.IMAGE)
    return _scene_payload(db, principal, scene_id)


@router.post(
    "/{scene_id}/confirm-video",
    response_model=SceneResponse,
    summary="Confirm Scene Video",
    responses=PRECONDITION,
)
async def confirm_video(
    scene_id: str,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    StatusLedger(db).set_confirmed(principal, scene_id, Track.VIDEO)
    return _scene_payload(db, principal, scene_id)


@router.get(
    "/{scene_id}/artifacts/{track}",
    response_model=List[dict],
    summary="List Artifact History",
    description="Every generated version for a scene's image or video track, newest first.",
    responses=PRECONDITION,
)
async def list_artifacts(
    scene_id: str,
    track: str,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if track not in Track.all_tracks():
        raise ValidationError(f"Unknown track: {track}", field="track")
    artifacts = ArtifactStore(db).list_artifacts(principal, scene_id, track)
    return [artifact.to_dict() for artifact in artifacts]
