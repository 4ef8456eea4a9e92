"""
Projects API Router.

CRUD endpoints for story projects plus the stage re-entry action.
"""

import structlog
from fastapi import APIRouter, Depends, Response
from typing import List
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db
from pipeline.media import MediaPersister
from pipeline.projects import ProjectRepository
from schemas import (
    ErrorResponse,
    ProjectCreateRequest,
    ProjectDetailResponse,
    ProjectResponse,
    ProjectUpdateRequest,
    StageUpdateRequest,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["Projects"])


def get_media_persister() -> MediaPersister:
    return MediaPersister()


@router.post(
    "/projects",
    response_model=ProjectResponse,
    status_code=201,
    summary="Create Project",
    responses={400: {"model": ErrorResponse}},
)
async def create_project(
    request: ProjectCreateRequest,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a project in the draft stage."""
    project = ProjectRepository(db).create_project(principal, request.title, request.story, request.style)
    return project.to_dict()


@router.get(
    "/projects",
    response_model=List[ProjectResponse],
    summary="List Projects",
)
async def list_projects(
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Projects of the caller, newest first, with scene counts and covers."""
    return ProjectRepository(db).list_projects(principal)


@router.get(
    "/projects/{project_id}",
    response_model=ProjectDetailResponse,
    summary="Get Project",
    responses={404: {"model": ErrorResponse}},
)
async def get_project(
    project_id: str,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Project with its scenes in order, each with the latest image and video."""
    return ProjectRepository(db).get_project_detail(principal, project_id)


@router.patch(
    "/projects/{project_id}",
    response_model=ProjectResponse,
    summary="Update Project",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_project(
    project_id: str,
    update_data: ProjectUpdateRequest,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = ProjectRepository(db).update_project(principal, project_id, title=update_data.title)
    return project.to_dict()


@router.delete(
    "/projects/{project_id}",
    status_code=204,
    summary="Delete Project",
    responses={404: {"model": ErrorResponse}},
)
async def delete_project(
    project_id: str,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    media: MediaPersister = Depends(get_media_persister),
):
    """Delete a project with its scenes, artifacts and stored media."""
    ProjectRepository(db).delete_project(principal, project_id)

    try:
        removed = await media.remove_project_media(project_id)
        logger.info("project_media_removed", project_id=project_id, files=removed)
    except Exception as e:
        # Rows are gone either way; leftover files are only wasted space
        logger.warning("project_media_cleanup_failed", project_id=project_id, error=str(e))

    return Response(status_code=204)


@router.patch(
    "/projects/{project_id}/stage",
    response_model=ProjectResponse,
    summary="Re-enter Stage",
    description="""
Move a project back to an earlier stage.

This is the only backward stage transition. Targets at or ahead of the
current stage are rejected with 400.
""",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def reenter_stage(
    project_id: str,
    request: StageUpdateRequest,
    principal: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = ProjectRepository(db).reenter_stage(principal, project_id, request.stage)
    return project.to_dict()
