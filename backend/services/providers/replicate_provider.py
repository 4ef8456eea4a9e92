"""
Replicate provider adapters.

Scene planning and images run to completion inside submit(); image-to-video
jobs are created as background predictions and resolved through query().
"""

from typing import Any, Optional, Union

import structlog
from replicate.exceptions import ModelError, ReplicateError

from config import settings
from pipeline.error_handler import AIGenerationError, TransientProviderError
from services.model_registry import ModelConfig, ModelRegistry, ModelTask
from services.replicate_client import ReplicateClient, get_replicate_client, normalize_output
from services.providers.base import (
    GenerationRequest,
    ImmediateResult,
    JobHandle,
    JobResult,
    JobStatus,
    MediaProvider,
    TextProvider,
    call_with_retries,
)

logger = structlog.get_logger(__name__)

PROVIDER_NAME = "replicate"

# Replicate prediction statuses -> JobStatus
STATUS_MAP = {
    "starting": JobStatus.PENDING,
    "processing": JobStatus.PROCESSING,
    "succeeded": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.FAILED,
    "aborted": JobStatus.FAILED,
}


def map_prediction_status(status: Optional[str]) -> JobStatus:
    """Anything unrecognised is treated as not started yet."""
    return STATUS_MAP.get((status or "").lower(), JobStatus.PENDING)


def first_url(output: Any) -> Optional[str]:
    output = normalize_output(output)
    if isinstance(output, str):
        return output or None
    if isinstance(output, list) and output:
        return str(output[0])
    return None


class _ReplicateBase:
    name = PROVIDER_NAME

    def __init__(self, client: Optional[ReplicateClient] = None):
        self._client = client

    @property
    def client(self) -> ReplicateClient:
        if self._client is None:
            if not settings.REPLICATE_API_TOKEN:
                raise AIGenerationError(PROVIDER_NAME, "REPLICATE_API_TOKEN is not configured")
            self._client = get_replicate_client()
        return self._client

    async def _call(self, operation: str, func, timeout: float):
        async def guarded():
            try:
                return await func()
            except ModelError as e:
                raise AIGenerationError(
                    PROVIDER_NAME,
                    f"Model run failed: {getattr(e.prediction, 'error', None) or e}",
                    cause=e,
                )
            except ReplicateError as e:
                status = getattr(e, "status", None)
                if status is not None and (status == 429 or status >= 500):
                    raise TransientProviderError(str(e), status_code=status) from e
                raise AIGenerationError(PROVIDER_NAME, str(e), cause=e)

        return await call_with_retries(PROVIDER_NAME, operation, guarded, timeout=timeout)


class ReplicateTextProvider(_ReplicateBase, TextProvider):
    """Language model on Replicate, used for story-to-scenes planning."""

    def __init__(self, model: Optional[ModelConfig] = None, client: Optional[ReplicateClient] = None):
        super().__init__(client)
        self.model = model or ModelRegistry.get_model(ModelTask.SCENE_PLANNING, PROVIDER_NAME)

    async def complete(self, system_prompt: str, user_prompt: str, temperature: float = 0.8) -> str:
        params = {
            **self.model.default_params,
            "system_prompt": system_prompt,
            "prompt": user_prompt,
            "temperature": temperature,
        }
        output = await self._call(
            "complete",
            lambda: self.client.run_model_async(self.model.model_id, params),
            timeout=settings.TEXT_SUBMIT_TIMEOUT,
        )
        return output if isinstance(output, str) else "".join(str(part) for part in output or [])


class ReplicateImageProvider(_ReplicateBase, MediaProvider):
    """Text-to-image on Replicate; runs synchronously and returns the result URL."""

    def __init__(self, model: Optional[ModelConfig] = None, client: Optional[ReplicateClient] = None):
        super().__init__(client)
        self.model = model or ModelRegistry.get_model(ModelTask.IMAGE, PROVIDER_NAME)

    async def submit(self, request: GenerationRequest) -> Union[ImmediateResult, JobHandle]:
        prompt = request.prompt if not request.style else f"{request.prompt}, {request.style} style, high quality, detailed"
        params = {**self.model.default_params, "prompt": prompt}

        output = await self._call(
            "submit",
            lambda: self.client.run_model_async(self.model.model_id, params),
            timeout=settings.IMAGE_SUBMIT_TIMEOUT,
        )
        url = first_url(output)
        if not url:
            raise AIGenerationError(PROVIDER_NAME, "Image generation returned no output URL")

        logger.info("replicate_image_generated", model_id=self.model.model_id)
        return ImmediateResult(url=url)

    async def query(self, task_id: str) -> JobResult:
        return await _query_prediction(self, task_id)


class ReplicateVideoProvider(_ReplicateBase, MediaProvider):
    """Image-to-video on Replicate as a background prediction."""

    def __init__(self, model: Optional[ModelConfig] = None, client: Optional[ReplicateClient] = None):
        super().__init__(client)
        self.model = model or ModelRegistry.get_model(ModelTask.VIDEO, PROVIDER_NAME)

    async def submit(self, request: GenerationRequest) -> Union[ImmediateResult, JobHandle]:
        if not request.image_url:
            raise AIGenerationError(PROVIDER_NAME, "Image-to-video requires an image URL")

        params = {
            **self.model.default_params,
            "prompt": request.prompt,
            "first_frame_image": request.image_url,
        }
        prediction = await self._call(
            "submit",
            lambda: self.client.create_prediction_async(
                self.model.model_id, params, version_id=self.model.version
            ),
            timeout=settings.VIDEO_SUBMIT_TIMEOUT,
        )

        logger.info("replicate_video_task_created", task_id=prediction.id, model_id=self.model.model_id)
        return JobHandle(task_id=prediction.id, provider=PROVIDER_NAME)

    async def query(self, task_id: str) -> JobResult:
        return await _query_prediction(self, task_id)


async def _query_prediction(provider: _ReplicateBase, task_id: str) -> JobResult:
    prediction = await provider._call(
        "query",
        lambda: provider.client.get_prediction_async(task_id),
        timeout=settings.QUERY_TIMEOUT,
    )
    status = map_prediction_status(prediction.status)
    result = JobResult(task_id=task_id, status=status)

    if status == JobStatus.COMPLETED:
        result.url = first_url(prediction.output)
        if not result.url:
            result.status = JobStatus.FAILED
            result.error = "Prediction succeeded but returned no output URL"
    elif status == JobStatus.FAILED:
        result.error = str(prediction.error or prediction.status)

    return result
