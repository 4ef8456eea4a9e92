"""
Model Configuration API Router

Provides endpoints for:
- Listing the AI tasks and the provider/model currently selected for each
- Listing available models for a task with their estimated cost per run
"""

from typing import List, Optional, Tuple

import structlog
from fastapi import APIRouter
from pydantic import BaseModel

from config import settings
from pipeline.error_handler import ValidationError
from services.model_registry import ModelRegistry, ModelTask

logger = structlog.get_logger()

router = APIRouter(prefix="/api/models", tags=["Models"])


class ModelInfo(BaseModel):
    """Model information response"""
    name: str
    model_id: str
    provider: str
    display_name: str
    description: str
    cost_per_run: float
    avg_duration: float
    is_active: bool


class TaskInfo(BaseModel):
    task: str
    provider: str
    model_name: str
    estimated_cost: float


class TaskModelsResponse(BaseModel):
    """Response containing available models for a task"""
    task: str
    active: TaskInfo
    models: List[ModelInfo]


def _selection(task: ModelTask) -> Tuple[str, Optional[str]]:
    """Provider and model name chosen by settings for a task"""
    if task == ModelTask.SCENE_PLANNING:
        return settings.SCENE_PROVIDER.lower(), settings.SCENE_MODEL
    if task == ModelTask.IMAGE:
        return settings.IMAGE_PROVIDER.lower(), settings.IMAGE_MODEL
    return settings.VIDEO_PROVIDER.lower(), settings.VIDEO_MODEL


def _active(task: ModelTask) -> TaskInfo:
    provider, model_name = _selection(task)
    model_name = model_name or ModelRegistry.DEFAULT_MODELS[task].get(provider, "")
    return TaskInfo(
        task=task.value,
        provider=provider,
        model_name=model_name,
        estimated_cost=ModelRegistry.estimate_cost(task, provider, model_name),
    )


@router.get(
    "/tasks",
    response_model=List[TaskInfo],
    summary="List Tasks",
    description="Get every AI task with the provider and model currently selected for it"
)
async def list_tasks():
    return [_active(task) for task in ModelTask]


@router.get(
    "/tasks/{task}/models",
    response_model=TaskModelsResponse,
    summary="List Available Models for Task",
    description="Get all available models for a specific AI task (scene_planning, image, video)"
)
async def list_task_models(task: str):
    """
    List all available models for a specific task.

    **Path Parameters:**
    - **task**: Task type (scene_planning, image, video)
    """
    try:
        task_enum = ModelTask(task)
    except ValueError:
        raise ValidationError(
            f"Invalid task type: {task}",
            field="task",
            details={"valid_tasks": [t.value for t in ModelTask]},
        )

    active = _active(task_enum)
    models = [
        ModelInfo(
            name=name,
            model_id=config.model_id,
            provider=config.provider,
            display_name=config.display_name,
            description=config.description,
            cost_per_run=config.cost_per_run,
            avg_duration=config.avg_duration,
            is_active=(name == active.model_name),
        )
        for name, config in ModelRegistry.list_models(task_enum).items()
    ]

    logger.info("models_listed", task=task, count=len(models))
    return TaskModelsResponse(task=task, active=active, models=models)
