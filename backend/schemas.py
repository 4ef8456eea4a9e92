"""
Pydantic schemas for request/response validation
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class ProjectCreateRequest(BaseModel):
    """Request model for project creation"""
    title: str = Field(..., min_length=1, max_length=200, description="Project title")
    story: str = Field(..., min_length=1, description="Story text to turn into a video (immutable)")
    style: str = Field(..., min_length=1, max_length=50, description="Visual style tag (e.g. 'realistic', 'anime')")

    class Config:
        json_schema_extra = {
            "example": {
                "title": "The Lighthouse Keeper",
                "story": "An old keeper finds a message in a bottle and sails to answer it...",
                "style": "watercolor"
            }
        }


class ProjectUpdateRequest(BaseModel):
    """Request model for project update; the story cannot be changed"""
    title: Optional[str] = Field(None, min_length=1, max_length=200)


class StageUpdateRequest(BaseModel):
    """Request model for re-entering an earlier stage"""
    stage: str = Field(..., description="Target stage: draft, scenes, images or videos")

    class Config:
        json_schema_extra = {"example": {"stage": "images"}}


class ProjectIdRequest(BaseModel):
    """Request body naming a project"""
    project_id: str = Field(..., min_length=1, description="Project identifier")


class SceneUpdateRequest(BaseModel):
    """Request model for editing an unconfirmed scene description"""
    description: str = Field(..., min_length=1, description="New scene description")


class ProjectResponse(BaseModel):
    """Project summary"""
    id: str
    owner_id: str
    title: str
    story: str
    style: str
    stage: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    scene_count: Optional[int] = None
    cover_url: Optional[str] = None


class SceneResponse(BaseModel):
    """Scene with its ledger fields and latest artifacts"""
    id: str
    project_id: str
    order_index: int
    description: str
    visual_prompt: Optional[str] = None
    description_confirmed: bool
    image_status: str
    image_confirmed: bool
    image_error: Optional[str] = None
    video_status: str
    video_confirmed: bool
    video_error: Optional[str] = None
    created_at: Optional[str] = None
    image: Optional[Dict[str, Any]] = None
    video: Optional[Dict[str, Any]] = None


class ProjectDetailResponse(ProjectResponse):
    """Project with ordered scenes"""
    scenes: List[SceneResponse] = Field(default_factory=list)


class ScenesResponse(BaseModel):
    """Response for scene planning endpoints"""
    success: bool = True
    project_id: str
    scenes: List[SceneResponse]
    message: Optional[str] = None


class ConfirmAllResponse(BaseModel):
    """Response for bulk confirmation endpoints"""
    success: bool = True
    project_id: str
    confirmed_count: int
    stage: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    user_message: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "error": "PRECONDITION_FAILED",
                "message": "Scene image must be confirmed before generating a video",
                "details": {"scene_id": "8a6e0804-2bd0-4672-b79d-d97027f9071a"},
                "user_message": "This step is not available yet. Finish and confirm the previous step first."
            }
        }
