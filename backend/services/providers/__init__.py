"""
Provider adapters and the factory that selects them from settings.

Call sites ask for a capability (text, image, video) and never branch on the
vendor themselves.
"""

from typing import Dict, Optional

from config import settings
from services.model_registry import ModelRegistry, ModelTask
from services.providers.base import (
    GenerationRequest,
    ImmediateResult,
    JobHandle,
    JobResult,
    JobStatus,
    MediaProvider,
    PlannedScene,
    ScenePlan,
    TextProvider,
    call_with_retries,
)
from services.providers.dashscope_provider import DashScopeImageProvider, DashScopeVideoProvider
from services.providers.replicate_provider import (
    ReplicateImageProvider,
    ReplicateTextProvider,
    ReplicateVideoProvider,
)
from services.providers.zhipu_provider import ZhipuTextProvider

TEXT_PROVIDERS = {
    "replicate": ReplicateTextProvider,
    "zhipu": ZhipuTextProvider,
}

IMAGE_PROVIDERS = {
    "replicate": ReplicateImageProvider,
    "dashscope": DashScopeImageProvider,
}

VIDEO_PROVIDERS = {
    "replicate": ReplicateVideoProvider,
    "dashscope": DashScopeVideoProvider,
}

_instances: Dict[str, object] = {}


def _build(kind: str, registry: dict, task: ModelTask, name: str, model_name: Optional[str]):
    key = f"{kind}:{name}:{model_name or ''}"
    if key not in _instances:
        provider_cls = registry.get(name)
        if provider_cls is None:
            raise ValueError(f"Unknown {kind} provider: {name}. Options: {sorted(registry)}")
        _instances[key] = provider_cls(model=ModelRegistry.get_model(task, name, model_name))
    return _instances[key]


def get_text_provider(name: Optional[str] = None) -> TextProvider:
    """Scene planning provider named by SCENE_PROVIDER (or an explicit name)."""
    name = (name or settings.SCENE_PROVIDER).lower()
    model = settings.SCENE_MODEL if name == settings.SCENE_PROVIDER.lower() else None
    return _build("text", TEXT_PROVIDERS, ModelTask.SCENE_PLANNING, name, model)


def get_image_provider(name: Optional[str] = None) -> MediaProvider:
    """Image provider named by IMAGE_PROVIDER (or an explicit name)."""
    name = (name or settings.IMAGE_PROVIDER).lower()
    model = settings.IMAGE_MODEL if name == settings.IMAGE_PROVIDER.lower() else None
    return _build("image", IMAGE_PROVIDERS, ModelTask.IMAGE, name, model)


def get_video_provider(name: Optional[str] = None) -> MediaProvider:
    """
    Video provider named by VIDEO_PROVIDER.

    Reconciliation passes the provider recorded on the video so tasks keep
    resolving after the configured provider changes.
    """
    name = (name or settings.VIDEO_PROVIDER).lower()
    model = settings.VIDEO_MODEL if name == settings.VIDEO_PROVIDER.lower() else None
    return _build("video", VIDEO_PROVIDERS, ModelTask.VIDEO, name, model)


def reset_providers() -> None:
    """Forget cached adapters so the next lookup re-reads settings."""
    _instances.clear()


__all__ = [
    "GenerationRequest",
    "ImmediateResult",
    "JobHandle",
    "JobResult",
    "JobStatus",
    "MediaProvider",
    "PlannedScene",
    "ScenePlan",
    "TextProvider",
    "call_with_retries",
    "get_text_provider",
    "get_image_provider",
    "get_video_provider",
    "reset_providers",
]
