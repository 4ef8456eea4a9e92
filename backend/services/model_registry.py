"""
Model Registry - Centralized configuration for all AI models

This module provides a single source of truth for the models behind each
provider adapter, supporting runtime model selection through settings.
"""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel
import structlog

logger = structlog.get_logger()


class ModelTask(str, Enum):
    """AI task types, one per provider variant"""
    SCENE_PLANNING = "scene_planning"
    IMAGE = "image"
    VIDEO = "video"


class ModelConfig(BaseModel):
    """Configuration for a specific AI model"""
    model_id: str  # Vendor model ID (e.g., "black-forest-labs/flux-schnell", "wanx-v1")
    provider: str  # Provider adapter that can run it
    version: Optional[str] = None  # Specific version hash (optional)
    display_name: str
    description: str
    default_params: Dict[str, Any] = {}
    cost_per_run: float = 0.0  # Estimated cost in USD
    avg_duration: float = 0.0  # Average duration in seconds


class ModelRegistry:
    """
    Registry of all available AI models organized by task type.

    Provides:
    - Model discovery and selection
    - Per-provider default models
    - Cost estimation
    """

    # Scene Planning Models (story text -> structured scenes)
    SCENE_MODELS: Dict[str, ModelConfig] = {
        "llama-3-70b": ModelConfig(
            model_id="meta/meta-llama-3-70b-instruct",
            provider="replicate",
            display_name="Llama 3 70B Instruct",
            description="Fast, cost-effective scene planning",
            default_params={
                "max_tokens": 4096,
                "temperature": 0.8,
                "top_p": 0.9,
            },
            cost_per_run=0.0025,
            avg_duration=6.0
        ),
        "glm-4-flash": ModelConfig(
            model_id="glm-4-flash",
            provider="zhipu",
            display_name="GLM-4 Flash",
            description="Zhipu chat model with strong Chinese story understanding",
            default_params={
                "max_tokens": 4096,
                "temperature": 0.8,
                "top_p": 0.9,
            },
            cost_per_run=0.0,
            avg_duration=8.0
        ),
    }

    # Image Generation Models
    IMAGE_MODELS: Dict[str, ModelConfig] = {
        "flux-schnell": ModelConfig(
            model_id="black-forest-labs/flux-schnell",
            provider="replicate",
            display_name="FLUX.1 Schnell",
            description="Ultra-fast image generation (2-5s)",
            default_params={
                "num_outputs": 1,
                "aspect_ratio": "16:9",
                "output_format": "png",
            },
            cost_per_run=0.003,
            avg_duration=3.0
        ),
        "flux-dev": ModelConfig(
            model_id="black-forest-labs/flux-dev",
            provider="replicate",
            display_name="FLUX.1 Dev",
            description="Higher quality, slower generation",
            default_params={
                "num_outputs": 1,
                "aspect_ratio": "16:9",
                "output_format": "png",
            },
            cost_per_run=0.0055,
            avg_duration=8.0
        ),
        "wanx-v1": ModelConfig(
            model_id="wanx-v1",
            provider="dashscope",
            display_name="Tongyi Wanxiang v1",
            description="DashScope text-to-image with style tags",
            default_params={
                "size": "1280*720",
                "n": 1,
                "prompt_extend": True,
                "watermark": False,
            },
            cost_per_run=0.02,
            avg_duration=15.0
        ),
    }

    # Image-to-Video Models
    VIDEO_MODELS: Dict[str, ModelConfig] = {
        "minimax-video-01": ModelConfig(
            model_id="minimax/video-01",
            provider="replicate",
            display_name="Minimax Video-01",
            description="High-quality image-to-video generation (6s clips)",
            default_params={
                "prompt_optimizer": True,
            },
            cost_per_run=0.5,
            avg_duration=180.0
        ),
        "wanx2.1-i2v-plus": ModelConfig(
            model_id="wanx2.1-i2v-plus",
            provider="dashscope",
            display_name="Tongyi Wanxiang 2.1 I2V Plus",
            description="DashScope image-to-video (5s, 720P)",
            default_params={
                "duration": 5,
                "resolution": "720P",
                "prompt_extend": True,
                "watermark": False,
            },
            cost_per_run=0.35,
            avg_duration=240.0
        ),
    }

    # Default models for each task, per provider
    DEFAULT_MODELS: Dict[ModelTask, Dict[str, str]] = {
        ModelTask.SCENE_PLANNING: {"replicate": "llama-3-70b", "zhipu": "glm-4-flash"},
        ModelTask.IMAGE: {"replicate": "flux-schnell", "dashscope": "wanx-v1"},
        ModelTask.VIDEO: {"replicate": "minimax-video-01", "dashscope": "wanx2.1-i2v-plus"},
    }

    @classmethod
    def _registry_for(cls, task: ModelTask) -> Dict[str, ModelConfig]:
        registry_map = {
            ModelTask.SCENE_PLANNING: cls.SCENE_MODELS,
            ModelTask.IMAGE: cls.IMAGE_MODELS,
            ModelTask.VIDEO: cls.VIDEO_MODELS,
        }
        registry = registry_map.get(task)
        if registry is None:
            raise ValueError(f"Unknown task type: {task}")
        return registry

    @classmethod
    def get_model(
        cls,
        task: ModelTask,
        provider: str,
        model_name: Optional[str] = None
    ) -> ModelConfig:
        """
        Get model configuration for a task and provider.

        Args:
            task: The AI task type
            provider: Provider adapter name ("replicate", "zhipu", "dashscope")
            model_name: Specific model name (optional, uses provider default if None)

        Returns:
            ModelConfig for the requested model

        Raises:
            ValueError: If the model is unknown or belongs to another provider
        """
        registry = cls._registry_for(task)

        if model_name is None:
            model_name = cls.DEFAULT_MODELS[task].get(provider)
            if model_name is None:
                raise ValueError(f"No default {task.value} model for provider '{provider}'")

        model_config = registry.get(model_name)
        if not model_config:
            available = list(registry.keys())
            raise ValueError(
                f"Model '{model_name}' not found for task '{task.value}'. "
                f"Available models: {available}"
            )
        if model_config.provider != provider:
            raise ValueError(
                f"Model '{model_name}' runs on '{model_config.provider}', not '{provider}'"
            )

        logger.info(
            "model_selected",
            task=task.value,
            provider=provider,
            model_name=model_name,
            model_id=model_config.model_id,
            cost=model_config.cost_per_run
        )

        return model_config

    @classmethod
    def list_models(cls, task: ModelTask) -> Dict[str, ModelConfig]:
        """List all available models for a task."""
        return dict(cls._registry_for(task))

    @classmethod
    def estimate_cost(cls, task: ModelTask, provider: str, model_name: Optional[str] = None) -> float:
        """Estimate cost in USD for one run."""
        return cls.get_model(task, provider, model_name).cost_per_run
